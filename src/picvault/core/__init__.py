"""Client-side data layer for the Picvault gallery.

This package keeps paginated listings fetched from ``/api/images`` coherent
with images the current session has just uploaded, and applies deletes and
updates to every cached listing at once.

Architecture Overview
---------------------
1. **Configuration** (config.py): Pydantic Settings, ``PICVAULT_`` prefix.
2. **Cache keys** (query_keys.py): hierarchical tuple keys.
3. **Query cache** (cache_store.py): key-addressed async store with
   prefix invalidation and in-flight fetch cancellation.
4. **HTTP client** (http.py): httpx-based JSON client.
5. **Overlay merge** (overlay.py): pure merge of recent uploads into page one.
6. **Listing controllers** (listing.py): paged, infinite and detail queries.
7. **Mutations** (mutations.py): optimistic delete with rollback, update,
   listing invalidation.

Usage Example
-------------
::

    from picvault.core import ApiClient, ImageListQuery, ImageMutations, QueryCache

    store = QueryCache()
    async with ApiClient() as client:
        listing = ImageListQuery(store, client, page=1, tag="cats")
        view = await listing.load()
        await ImageMutations(store, client).delete_image(view.images[0].id)
"""

from picvault.core.cache_store import QueryCache
from picvault.core.config import PicvaultConfig, config
from picvault.core.exceptions import ApiError, MutationError, PicvaultError
from picvault.core.http import ApiClient
from picvault.core.listing import (
    ImageDetailQuery,
    ImageListQuery,
    InfiniteImageListQuery,
)
from picvault.core.models import ImageRecord, InfiniteData, ListingPage
from picvault.core.mutations import ImageMutations
from picvault.core.overlay import matches_filters, merge_first_page

__all__ = [
    "ApiClient",
    "ApiError",
    "ImageDetailQuery",
    "ImageListQuery",
    "ImageMutations",
    "ImageRecord",
    "InfiniteData",
    "InfiniteImageListQuery",
    "ListingPage",
    "MutationError",
    "PicvaultConfig",
    "PicvaultError",
    "QueryCache",
    "config",
    "matches_filters",
    "merge_first_page",
]
