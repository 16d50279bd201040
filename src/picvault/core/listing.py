"""Listing cache controllers for the image gallery.

Two controllers read ``GET /api/images`` through the shared
:class:`~picvault.core.cache_store.QueryCache`:

- :class:`ImageListQuery` — one page of a paged listing.
- :class:`InfiniteImageListQuery` — an infinitely scrolled listing that
  accumulates pages under a single cache entry.

Both apply the same reconciliation with the recent-uploads overlay (see
:mod:`picvault.core.overlay`).  The stored pages are always the server's
pages verbatim; the overlay is folded in by :func:`project_page` and
:func:`project_pages` each time a controller builds a view, using the
overlay as it is *at read time*.  Nothing derived from the overlay is ever
written back to the cache.

While the first fetch is in flight, a controller for page one can serve the
matching overlay records as placeholder content so the gallery is never
empty right after an upload.

:class:`ImageDetailQuery` caches single records from
``GET /api/images/{id}``.

Failure handling
----------------
A failed fetch raises to the caller of ``load()`` / ``refetch()`` /
``fetch_next_page()``, is remembered on the controller so views can report
it, and leaves whatever was cached before untouched.  Nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from picvault.core import query_keys
from picvault.core.cache_store import QueryCache
from picvault.core.config import config
from picvault.core.exceptions import ApiError
from picvault.core.http import ApiClient
from picvault.core.models import (
    ImageRecord,
    InfiniteData,
    ListingPage,
    compute_total_pages,
)
from picvault.core.overlay import merge_first_page, overlay_matches

logger = logging.getLogger(__name__)

LIST_PATH = "/api/images"


# ---------------------------------------------------------------------------
# Read-time projections.
# ---------------------------------------------------------------------------


def project_page(
    data: ListingPage,
    candidates: Sequence[ImageRecord],
    *,
    page: int,
    limit: int,
) -> ListingPage:
    """Fold overlay records into a fetched page of a paged listing.

    Only page one is touched; the overlay has no defined position further
    in.  ``total`` grows by the number of candidates the page lacks, which
    can overstate the visible count when more candidates exist than fit on
    the page.

    Args:
        data: Page as fetched from the server.
        candidates: Overlay records already filtered for this listing.
        page: Page number the listing asked for.
        limit: Page size.

    Returns:
        *data* itself when nothing applies, otherwise a new page.
    """
    if page != 1 or not candidates:
        return data

    existing_ids = data.ids()
    missing = [image for image in candidates if image.id and image.id not in existing_ids]
    total = max(data.total, data.total + len(missing))
    merged = merge_first_page(data.images, candidates, limit).images

    return data.model_copy(
        update={
            "images": tuple(merged),
            "total": total,
            "total_pages": compute_total_pages(total, limit),
        }
    )


def project_pages(
    data: InfiniteData,
    candidates: Sequence[ImageRecord],
    *,
    limit: int,
) -> InfiniteData:
    """Fold overlay records into the accumulated pages of an infinite listing.

    Candidates already present on *any* loaded page are not counted as
    missing.  Only the first page's records are merged; every page gets the
    adjusted ``total`` and ``total_pages`` so the pages agree with each other.
    """
    if not candidates or not data.pages:
        return data

    all_ids = {image.id for image in data.iter_images() if image.id}
    missing = [image for image in candidates if image.id and image.id not in all_ids]

    first = data.pages[0]
    total = max(first.total, first.total + len(missing))
    total_pages = compute_total_pages(total, limit)
    merged = merge_first_page(first.images, candidates, limit).images

    pages = [first.model_copy(update={"images": tuple(merged), "total": total, "total_pages": total_pages})]
    pages.extend(
        page.model_copy(update={"total": total, "total_pages": total_pages})
        for page in data.pages[1:]
    )
    return data.model_copy(update={"pages": tuple(pages)})


def get_next_page_param(last_page: ListingPage) -> int | None:
    """Return the cursor after *last_page*, or ``None`` at the end."""
    if last_page.page < last_page.total_pages:
        return last_page.page + 1
    return None


# ---------------------------------------------------------------------------
# Views handed to callers.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ListingView:
    """Snapshot of a paged listing as a caller should display it."""

    images: tuple[ImageRecord, ...] = ()
    total: int = 0
    total_pages: int = 0
    current_page: int = 1
    is_placeholder: bool = False
    is_loading: bool = False
    error: BaseException | None = None


@dataclass(frozen=True)
class InfiniteListingView:
    """Snapshot of an infinite listing, flattened across loaded pages."""

    images: tuple[ImageRecord, ...] = ()
    total: int = 0
    has_next_page: bool = False
    is_placeholder: bool = False
    is_loading: bool = False
    is_fetching_next_page: bool = False
    error: BaseException | None = None
    data: InfiniteData | None = None


# ---------------------------------------------------------------------------
# Controllers.
# ---------------------------------------------------------------------------


async def fetch_listing_page(
    client: ApiClient,
    *,
    page: int,
    limit: int,
    tag: str = "",
    orientation: str = "",
) -> ListingPage:
    """Request one page from the listing endpoint.

    Raises:
        ApiError: If the request fails or the body reports ``success: false``.
    """
    params = {"page": str(page), "limit": str(limit)}
    if tag:
        params["tag"] = tag
    if orientation:
        params["orientation"] = orientation

    body = await client.get(LIST_PATH, params)
    if isinstance(body, dict) and body.get("success") is False:
        raise ApiError(body.get("message") or f"Listing page {page} was rejected")
    return ListingPage.model_validate(body)


class _ListingQuery:
    """State shared by the paged and infinite listing controllers."""

    def __init__(
        self,
        store: QueryCache,
        client: ApiClient,
        *,
        tag: str = "",
        orientation: str = "",
        limit: int | None = None,
        stale_time: float | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.tag = tag
        self.orientation = orientation
        self.limit = limit or config.page_size
        self.stale_time = config.list_stale_seconds if stale_time is None else stale_time
        self.error: BaseException | None = None

    @property
    def key(self) -> query_keys.QueryKey:
        raise NotImplementedError

    def candidates(self) -> list[ImageRecord]:
        """Overlay records matching this listing's filters, read right now."""
        return overlay_matches(self.store, self.tag, self.orientation)

    async def _fetch_into_cache(self, fetcher) -> None:
        try:
            await self.store.fetch_query(self.key, fetcher)
        except Exception as exc:
            self.error = exc
            logger.warning(f"Listing fetch for {self.key!r} failed: {exc}")
            raise
        self.error = None


class ImageListQuery(_ListingQuery):
    """One page of a paged image listing.

    Args:
        store: Shared query cache.
        client: API client used for fetches.
        page: One-based page number.
        tag: Optional tag filter (empty for none).
        orientation: Optional orientation filter (empty for none).
        limit: Page size; defaults to ``config.page_size``.
        stale_time: Freshness window in seconds; defaults to
            ``config.list_stale_seconds``.
    """

    def __init__(self, store: QueryCache, client: ApiClient, *, page: int = 1, **kwargs) -> None:
        super().__init__(store, client, **kwargs)
        self.page = page

    @property
    def key(self) -> query_keys.QueryKey:
        return query_keys.images.list(
            page=self.page, limit=self.limit, tag=self.tag, orientation=self.orientation
        )

    def placeholder(self) -> ListingPage | None:
        """Overlay-only content to show while page one loads."""
        if self.page != 1:
            return None
        matches = self.candidates()[: self.limit]
        if not matches:
            return None
        return ListingPage(images=tuple(matches), page=1, total=len(matches), total_pages=1)

    def current(self) -> ListingView:
        """Build the view from what is cached now, without fetching."""
        data: ListingPage | None = self.store.get_query_data(self.key)
        is_loading = data is None and self.store.is_fetching(self.key)

        if data is None:
            placeholder = self.placeholder()
            if placeholder is None:
                return ListingView(current_page=self.page, is_loading=is_loading, error=self.error)
            return ListingView(
                images=placeholder.images,
                total=placeholder.total,
                total_pages=placeholder.total_pages,
                current_page=placeholder.page,
                is_placeholder=True,
                is_loading=is_loading,
                error=self.error,
            )

        projected = project_page(data, self.candidates(), page=self.page, limit=self.limit)
        return ListingView(
            images=projected.images,
            total=projected.total,
            total_pages=projected.total_pages,
            current_page=projected.page,
            error=self.error,
        )

    async def load(self) -> ListingView:
        """Fetch the page if it is missing or stale, then return the view."""
        if self.store.is_stale(self.key, self.stale_time):
            await self._fetch_into_cache(self._fetch)
        return self.current()

    async def refetch(self) -> ListingView:
        """Fetch the page regardless of freshness."""
        await self._fetch_into_cache(self._fetch)
        return self.current()

    async def _fetch(self) -> ListingPage:
        return await fetch_listing_page(
            self.client,
            page=self.page,
            limit=self.limit,
            tag=self.tag,
            orientation=self.orientation,
        )


class InfiniteImageListQuery(_ListingQuery):
    """An infinitely scrolled image listing.

    All loaded pages live in one cache entry as :class:`InfiniteData`.
    Pages are requested from cursor 1 upward while the last page reports
    ``page < total_pages``.
    """

    def __init__(self, store: QueryCache, client: ApiClient, **kwargs) -> None:
        super().__init__(store, client, **kwargs)
        self.is_fetching_next_page = False

    @property
    def key(self) -> query_keys.QueryKey:
        return query_keys.images.list(limit=self.limit, tag=self.tag, orientation=self.orientation)

    def placeholder(self) -> InfiniteData | None:
        matches = self.candidates()[: self.limit]
        if not matches:
            return None
        first = ListingPage(images=tuple(matches), page=1, total=len(matches), total_pages=1)
        return InfiniteData(pages=(first,), page_params=(1,))

    def current(self) -> InfiniteListingView:
        """Build the flattened view from what is cached now, without fetching."""
        data: InfiniteData | None = self.store.get_query_data(self.key)
        is_placeholder = False
        has_next_page = False

        if data is None:
            data = self.placeholder()
            is_placeholder = data is not None
        elif data.pages:
            has_next_page = get_next_page_param(data.pages[-1]) is not None
            data = project_pages(data, self.candidates(), limit=self.limit)

        if data is None or not data.pages:
            return InfiniteListingView(
                is_loading=self.store.is_fetching(self.key),
                error=self.error,
                data=data,
            )

        return InfiniteListingView(
            images=tuple(data.iter_images()),
            total=data.pages[0].total,
            has_next_page=has_next_page,
            is_placeholder=is_placeholder,
            is_loading=is_placeholder and self.store.is_fetching(self.key),
            is_fetching_next_page=self.is_fetching_next_page,
            error=self.error,
            data=data,
        )

    @property
    def has_next_page(self) -> bool:
        data: InfiniteData | None = self.store.get_query_data(self.key)
        return bool(data and data.pages and get_next_page_param(data.pages[-1]) is not None)

    async def load(self) -> InfiniteListingView:
        """Fetch page one if the listing is missing or stale."""
        if self.store.is_stale(self.key, self.stale_time):
            await self._fetch_into_cache(self._fetch_first_page)
        return self.current()

    async def fetch_next_page(self) -> InfiniteListingView:
        """Append the next page; does nothing when no further page exists."""
        data: InfiniteData | None = self.store.get_query_data(self.key)
        if data is None or not data.pages:
            return await self.load()

        next_param = get_next_page_param(data.pages[-1])
        if next_param is None:
            return self.current()

        self.is_fetching_next_page = True
        try:
            await self._fetch_into_cache(lambda: self._fetch_and_append(next_param))
        finally:
            self.is_fetching_next_page = False
        return self.current()

    async def refetch(self) -> InfiniteListingView:
        """Mark every listing stale and reload this one from page one.

        Pages loaded so far are replaced by the fresh first page.
        """
        self.store.invalidate_queries(query_keys.images.lists())
        self.store.cancel_queries(self.key)
        await self._fetch_into_cache(self._fetch_first_page)
        return self.current()

    async def _fetch_page(self, page: int) -> ListingPage:
        return await fetch_listing_page(
            self.client,
            page=page,
            limit=self.limit,
            tag=self.tag,
            orientation=self.orientation,
        )

    async def _fetch_first_page(self) -> InfiniteData:
        first = await self._fetch_page(1)
        return InfiniteData(pages=(first,), page_params=(1,))

    async def _fetch_and_append(self, page_param: int) -> InfiniteData:
        page = await self._fetch_page(page_param)
        # Re-read after the await: the entry may have been rewritten meanwhile.
        base: InfiniteData = self.store.get_query_data(self.key) or InfiniteData()
        return base.model_copy(
            update={
                "pages": (*base.pages, page),
                "page_params": (*base.page_params, page_param),
            }
        )


class ImageDetailQuery:
    """Cached detail record for a single image.

    Args:
        store: Shared query cache.
        client: API client used for fetches.
        image_id: Image to load.  ``None`` or empty disables the query.
        stale_time: Freshness window in seconds; defaults to
            ``config.detail_stale_seconds``.
    """

    def __init__(
        self,
        store: QueryCache,
        client: ApiClient,
        image_id: str | None,
        *,
        stale_time: float | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.image_id = image_id
        self.stale_time = config.detail_stale_seconds if stale_time is None else stale_time

    @property
    def enabled(self) -> bool:
        return bool(self.image_id)

    @property
    def key(self) -> query_keys.QueryKey:
        return query_keys.images.detail(self.image_id or "")

    def current(self) -> ImageRecord | None:
        return self.store.get_query_data(self.key) if self.enabled else None

    async def load(self) -> ImageRecord:
        """Return the cached record, fetching it if missing or stale.

        Raises:
            ValueError: If the query has no image id.
            ApiError: If the request fails.
        """
        if not self.enabled:
            raise ValueError("ImageDetailQuery has no image id")
        if self.store.is_stale(self.key, self.stale_time):
            return await self.store.fetch_query(self.key, self._fetch)
        return self.store.get_query_data(self.key)

    async def _fetch(self) -> ImageRecord:
        body = await self.client.get(f"{LIST_PATH}/{self.image_id}")
        if not isinstance(body, dict) or not body.get("success") or "image" not in body:
            raise ApiError(f"Image {self.image_id} could not be loaded")
        return ImageRecord.model_validate(body["image"])
