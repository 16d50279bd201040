"""Value types shared by the listing cache, mutations, and the API client.

Every model here is frozen.  Cached values are replaced wholesale, never
edited in place, so a snapshot taken before an optimistic write keeps
describing the pre-write state no matter what happens to the cache later.

The wire format is camelCase (``totalPages``, ``uploadTime``); attributes are
snake_case.  Fields the cache layer does not interpret (``url``, ``size``,
``uploadTime`` ...) are kept as pydantic extras so a record survives a
parse/serialise cycle unchanged.

Models
------
ImageRecord
    One stored image.  Identity is ``id``; an empty id marks an unidentified
    record that listings drop.
ListingPage
    One page of ``GET /api/images``.
InfiniteData
    The ordered pages and page cursors of an infinitely scrolled listing.
"""

from __future__ import annotations

import math
from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def compute_total_pages(total: int, page_size: int) -> int:
    """Return ``max(1, ceil(total / page_size))``.

    Args:
        total: Item count across all pages.
        page_size: Items per page (must be positive).

    Returns:
        Number of pages, never less than one.
    """
    return max(1, math.ceil(total / page_size))


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """Serialise using camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")


class ImageRecord(_WireModel):
    """A single stored image as seen by the client.

    Attributes:
        id: Stable unique identifier.  Empty when the server omitted it.
        tags: Unordered tag set, kept as a tuple so the record stays hashable.
        orientation: ``"landscape"``, ``"portrait"``, ``"square"`` or empty.
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    tags: tuple[str, ...] = ()
    orientation: str = ""


class ListingPage(_WireModel):
    """One page of a paginated listing.

    Attributes:
        images: Records on this page, in server order.
        page: One-based page number.
        total: Item count across all pages as last reported.
        total_pages: Page count derived from ``total`` and the page size.
    """

    images: tuple[ImageRecord, ...] = ()
    page: int = 1
    total: int = 0
    total_pages: int = 1

    def ids(self) -> set[str]:
        """Return the non-empty ids present on this page."""
        return {image.id for image in self.images if image.id}


class InfiniteData(_WireModel):
    """Pages fetched so far by an infinitely scrolled listing.

    ``page_params[i]`` is the cursor that produced ``pages[i]``.
    """

    pages: tuple[ListingPage, ...] = ()
    page_params: tuple[int, ...] = Field(default=())

    def iter_images(self) -> Iterator[ImageRecord]:
        for page in self.pages:
            yield from page.images
