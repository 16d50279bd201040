"""Delete and update operations against the image API, kept in step with the cache.

Deletes are optimistic: the image disappears from every cached listing
before the request is sent, and reappears exactly as it was if the request
fails.  Updates are not optimistic; a tag change can move an image between
filtered listings, so after a successful update every listing is marked stale
and reloaded from the server on next read.

Optimistic protocol
-------------------
:meth:`ImageMutations.begin_delete` performs, without yielding to the event
loop at any point:

1. cancel in-flight listing fetches so none can land on top of the edit;
2. snapshot every cached listing entry;
3. rewrite every cached listing entry without the image.

It returns an :class:`OptimisticUpdate` holding the snapshots.  Because all
cached values are frozen and writes replace whole values, the snapshots stay
exactly as captured, and :meth:`OptimisticUpdate.rollback` writes them back
verbatim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from picvault.core import query_keys
from picvault.core.cache_store import QueryCache
from picvault.core.config import config
from picvault.core.exceptions import ApiError, MutationError
from picvault.core.http import ApiClient
from picvault.core.listing import LIST_PATH
from picvault.core.models import ImageRecord, InfiniteData, ListingPage, compute_total_pages

logger = logging.getLogger(__name__)


def _page_without(page: ListingPage, image_id: str, limit: int) -> ListingPage:
    # Each page's total drops by one whether or not the image was on it;
    # the next refetch brings back the server's count.
    total = max(0, page.total - 1)
    return page.model_copy(
        update={
            "images": tuple(image for image in page.images if image.id != image_id),
            "total": total,
            "total_pages": compute_total_pages(total, limit),
        }
    )


def listing_limit(key: query_keys.QueryKey) -> int:
    """Return the page size encoded in a listing key, or the configured default."""
    filters = key[-1] if key and isinstance(key[-1], tuple) else ()
    return dict(filters).get("limit") or config.page_size


def remove_image_from_listing(data: Any, image_id: str, limit: int | None = None) -> Any:
    """Return *data* with *image_id* removed from every page it holds.

    Handles both cache shapes: a single :class:`ListingPage` (paged
    listings) and :class:`InfiniteData` (infinite listings).  Anything else
    is returned unchanged.  ``total_pages`` is recomputed from the reduced
    total using *limit* (``config.page_size`` when omitted).
    """
    limit = limit or config.page_size
    if isinstance(data, InfiniteData):
        return data.model_copy(
            update={"pages": tuple(_page_without(page, image_id, limit) for page in data.pages)}
        )
    if isinstance(data, ListingPage):
        return _page_without(data, image_id, limit)
    return data


@dataclass(frozen=True)
class OptimisticUpdate:
    """A speculative cache write and the means to undo it.

    Attributes:
        store: Cache the write was applied to.
        snapshots: ``(key, value)`` pairs captured before the write.
    """

    store: QueryCache
    snapshots: tuple[tuple[query_keys.QueryKey, Any], ...]

    def rollback(self) -> None:
        """Restore every snapshotted entry to its captured value."""
        for key, data in self.snapshots:
            self.store.set_query_data(key, lambda _old, data=data: data)
        logger.warning(f"Rolled back optimistic update of {len(self.snapshots)} listing entries")


class ImageMutations:
    """Delete/update operations bound to one cache and one API client."""

    def __init__(self, store: QueryCache, client: ApiClient) -> None:
        self.store = store
        self.client = client

    def begin_delete(self, image_id: str) -> OptimisticUpdate:
        """Remove *image_id* from every cached listing and return the undo record."""
        lists_prefix = query_keys.images.lists()

        self.store.cancel_queries(lists_prefix)
        snapshots = tuple(self.store.get_queries_data(lists_prefix))
        for key, data in snapshots:
            updated = remove_image_from_listing(data, image_id, listing_limit(key))
            if updated is not data:
                self.store.set_query_data(key, lambda _old, updated=updated: updated)

        logger.debug(f"Optimistically removed {image_id} from {len(snapshots)} listing entries")
        return OptimisticUpdate(store=self.store, snapshots=snapshots)

    async def delete_image(self, image_id: str) -> str:
        """Delete an image, updating cached listings ahead of the server.

        Args:
            image_id: Image to delete.

        Returns:
            The deleted image's id.

        Raises:
            MutationError: If the request fails or the server reports
                ``success: false``.  Every cached listing is restored first.

        Any other exception, including cancellation of the calling task,
        also restores every cached listing before it propagates.
        """
        update = self.begin_delete(image_id)

        try:
            body = await self.client.delete(f"{LIST_PATH}/{image_id}")
        except ApiError as exc:
            update.rollback()
            raise MutationError(f"Failed to delete image {image_id}: {exc}") from exc
        except BaseException:
            update.rollback()
            raise

        if not isinstance(body, dict) or not body.get("success"):
            update.rollback()
            message = body.get("message") if isinstance(body, dict) else None
            raise MutationError(message or "Failed to delete image")

        self.store.remove_queries(query_keys.images.detail(image_id))
        logger.info(f"Deleted image {image_id}")
        return image_id

    async def update_image(
        self,
        image_id: str,
        *,
        tags: list[str] | None = None,
        expiry_minutes: int | None = None,
    ) -> ImageRecord:
        """Update an image's tags and/or expiry.

        On success the detail cache receives the server's record, and every
        listing plus the tag list is marked stale.  On failure nothing in the
        cache changes.

        Raises:
            MutationError: If the request fails or the server reports
                ``success: false``.
        """
        payload: dict[str, Any] = {}
        if tags is not None:
            payload["tags"] = list(tags)
        if expiry_minutes is not None:
            payload["expiryMinutes"] = expiry_minutes

        try:
            body = await self.client.put(f"{LIST_PATH}/{image_id}", payload)
        except ApiError as exc:
            raise MutationError(f"Failed to update image {image_id}: {exc}") from exc

        if not isinstance(body, dict) or not body.get("success") or "image" not in body:
            raise MutationError("Failed to update image")

        image = ImageRecord.model_validate(body["image"])
        self.store.set_query_data(query_keys.images.detail(image.id), image)
        self.store.invalidate_queries(query_keys.images.lists())
        self.store.invalidate_queries(query_keys.tags.list())
        logger.info(f"Updated image {image.id}")
        return image

    def invalidate_images(self) -> None:
        """Mark every cached listing stale, e.g. after an upload completes."""
        self.store.invalidate_queries(query_keys.images.lists())
