"""Gallery metadata storage helpers for the Picvault API.

This module isolates the gallery JSON persistence logic from
``picvault.api.main`` so route handlers can focus on HTTP concerns while the
file-backed gallery store remains testable as a small unit.

The gallery is intentionally simple:

- metadata lives in a single ``gallery.json`` file
- image files (original plus optional ``.webp``/``.avif`` variants) live in
  the gallery directory
- list order is reverse-chronological (newest first)

Entries are plain dictionaries with camelCase keys, matching the JSON the
API returns.  Besides manual removal of files, entries can expire: an entry
whose ``expiryTime`` has passed is pruned, and its files deleted, the next
time the gallery is loaded.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Keys of an entry that name files in the gallery directory.
FILE_KEYS = ("filename", "webpFilename", "avifFilename")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expired(entry: dict, now: datetime) -> bool:
    """Return True if the entry carries an expiry time that has passed."""
    expiry = entry.get("expiryTime")
    if not expiry:
        return False
    try:
        return datetime.fromisoformat(expiry) <= now
    except (TypeError, ValueError):
        # An unreadable expiry is treated as "never expires".
        return False


def orientation_for(width: int, height: int) -> str:
    """Classify image dimensions as landscape, portrait, or square."""
    if width > height:
        return "landscape"
    if height > width:
        return "portrait"
    return "square"


def delete_entry_files(entry: dict, gallery_dir: Path) -> None:
    """Remove every file an entry refers to, ignoring ones already gone."""
    for key in FILE_KEYS:
        filename = entry.get(key)
        if filename:
            (gallery_dir / filename).unlink(missing_ok=True)


def load_gallery_entries(
    gallery_db: Path,
    gallery_dir: Path,
    now: datetime | None = None,
) -> list[dict]:
    """Load the gallery metadata and reconcile it against files on disk.

    The reconciliation rule is intentionally conservative:

    - if the JSON file is missing or invalid, return an empty gallery
    - if an entry has no id or filename, drop it
    - if the referenced image file does not exist, drop the entry
    - if the entry has expired, drop it and delete its files

    When entries are removed, the cleaned list is persisted immediately so
    future reads observe the corrected counts and pagination.

    Args:
        gallery_db: Path to ``gallery.json``.
        gallery_dir: Directory that should contain the image files.
        now: Reference time for expiry checks (defaults to current UTC time).

    Returns:
        List of surviving gallery entry dictionaries in persisted order.
    """
    now = now or utcnow()

    if gallery_db.exists():
        try:
            with open(gallery_db, encoding="utf-8") as handle:
                raw_entries = json.load(handle)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {gallery_db}: {e}")
            raw_entries = []
    else:
        raw_entries = []

    if not isinstance(raw_entries, list):
        raw_entries = []

    cleaned_entries: list[dict] = []

    for entry in raw_entries:
        if not isinstance(entry, dict):
            continue

        filename = entry.get("filename")
        if not entry.get("id") or not filename:
            continue

        if not (gallery_dir / filename).exists():
            continue

        if is_expired(entry, now):
            logger.info(f"Pruning expired image {entry['id']}")
            delete_entry_files(entry, gallery_dir)
            continue

        cleaned_entries.append(entry)

    if cleaned_entries != raw_entries:
        save_gallery_entries(gallery_db, cleaned_entries)

    return cleaned_entries


def save_gallery_entries(gallery_db: Path, entries: list[dict]) -> None:
    """Persist the gallery metadata list to disk.

    Args:
        gallery_db: Path to ``gallery.json``.
        entries: Gallery entry dictionaries to persist.
    """
    with open(gallery_db, "w", encoding="utf-8") as handle:
        json.dump(entries, handle, indent=2)


def find_gallery_entry(entries: list[dict], image_id: str) -> dict | None:
    return next((entry for entry in entries if entry.get("id") == image_id), None)


def filter_gallery_entries(
    entries: list[dict],
    *,
    tag: str | None = None,
    orientation: str | None = None,
) -> list[dict]:
    """Apply tag and orientation filters to gallery entries.

    Args:
        entries: Source gallery entries.
        tag: Keep only entries carrying this tag.
        orientation: Keep only entries with this orientation.

    Returns:
        Filtered gallery entries in their original order.
    """
    filtered_entries = entries

    if tag:
        filtered_entries = [entry for entry in filtered_entries if tag in entry.get("tags", [])]

    if orientation:
        filtered_entries = [
            entry for entry in filtered_entries if entry.get("orientation") == orientation
        ]

    return filtered_entries


def paginate_gallery_entries(entries: list[dict], page: int, per_page: int) -> dict:
    """Paginate gallery entries and clamp the requested page to valid bounds.

    Clamping matters after deletes.  If a user is viewing the last gallery page
    and removes the final image on that page, the previous page becomes the new
    last page.  Returning the clamped page keeps the client and server in
    agreement about the correct image count and page range.

    Args:
        entries: Filtered gallery entries.
        page: Requested one-based page number.
        per_page: Requested items per page, clamped to 1..``MAX_PAGE_SIZE``.

    Returns:
        Dictionary containing ``images``, ``page``, ``limit``, ``total`` and
        ``totalPages`` for the resolved page.
    """
    per_page = min(max(per_page, 1), MAX_PAGE_SIZE)
    total = len(entries)
    pages = (total + per_page - 1) // per_page if total > 0 else 1
    resolved_page = min(max(page, 1), pages)

    start = (resolved_page - 1) * per_page
    end = start + per_page

    return {
        "images": entries[start:end],
        "page": resolved_page,
        "limit": per_page,
        "total": total,
        "totalPages": pages,
    }


def collect_tags(entries: list[dict]) -> list[str]:
    """Return the distinct tags used across entries, sorted."""
    return sorted({tag for entry in entries for tag in entry.get("tags", [])})
