"""Merging of just-uploaded images into server listing pages.

Freshly uploaded images can take a while to show up in the server's
pagination.  The upload flow therefore keeps its own list of recent uploads
in the query cache under ``images.recent_uploads()``; the listing controllers
read that overlay and fold it into page one of every matching listing.

Everything here is pure: inputs are never modified and identical inputs give
identical outputs, so the controllers can re-run the merge on every read
instead of storing merged state.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import NamedTuple

from picvault.core import query_keys
from picvault.core.cache_store import QueryCache
from picvault.core.models import ImageRecord


class MergeResult(NamedTuple):
    images: list[ImageRecord]
    added_count: int


def matches_filters(image: ImageRecord, tag: str, orientation: str) -> bool:
    """Return True if *image* passes the listing's tag and orientation filters.

    An empty filter value matches everything.
    """
    tag_ok = not tag or tag in image.tags
    orientation_ok = not orientation or image.orientation == orientation
    return tag_ok and orientation_ok


def merge_first_page(
    existing: Sequence[ImageRecord],
    additions: Sequence[ImageRecord],
    limit: int,
) -> MergeResult:
    """Combine overlay records with a fetched first page.

    Additions are scanned before existing records, so recent uploads lead the
    page.  Records without an id, and repeats of an id already taken, are
    skipped.  Scanning stops once *limit* records are collected.

    Args:
        existing: Records the server returned for the page.
        additions: Overlay records matching the page's filters.
        limit: Page size.

    Returns:
        The merged records, and how many additions were absent from
        *existing* (counted before truncation to *limit*).
    """
    seen: set[str] = set()
    merged: list[ImageRecord] = []

    for image in (*additions, *existing):
        if len(merged) >= limit:
            break
        if not image.id or image.id in seen:
            continue
        seen.add(image.id)
        merged.append(image)

    existing_ids = {image.id for image in existing}
    added_count = sum(1 for image in additions if image.id and image.id not in existing_ids)

    return MergeResult(merged, added_count)


def read_recent_uploads(store: QueryCache) -> tuple[ImageRecord, ...]:
    """Return the overlay as currently held in *store* (empty if unset).

    The overlay may be stored either as a sequence of records or as a
    mapping of id to record.
    """
    overlay = store.get_query_data(query_keys.images.recent_uploads()) or ()
    if isinstance(overlay, Mapping):
        overlay = overlay.values()
    return tuple(overlay)


def filter_overlay(
    overlay: Iterable[ImageRecord],
    tag: str,
    orientation: str,
) -> list[ImageRecord]:
    return [image for image in overlay if matches_filters(image, tag, orientation)]


def overlay_matches(store: QueryCache, tag: str, orientation: str) -> list[ImageRecord]:
    """Return the recent uploads in *store* that pass the given filters."""
    return filter_overlay(read_recent_uploads(store), tag, orientation)
