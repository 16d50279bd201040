"""Unit tests for gallery metadata helpers in picvault.api.gallery_store.

Tests cover:
- Reconciliation of gallery.json against files on disk.
- Expiry pruning, including deletion of variant files.
- Tag and orientation filtering.
- Pagination clamping.
- Orientation classification and tag collection.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from picvault.api.gallery_store import (
    MAX_PAGE_SIZE,
    collect_tags,
    filter_gallery_entries,
    find_gallery_entry,
    is_expired,
    load_gallery_entries,
    orientation_for,
    paginate_gallery_entries,
    save_gallery_entries,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _write_image(gallery_dir, filename: str) -> None:
    (gallery_dir / filename).write_bytes(b"image")


class TestLoadGalleryEntries:
    """Test reconciliation of persisted gallery metadata."""

    def test_missing_file_is_empty(self, temp_dir):
        assert load_gallery_entries(temp_dir / "gallery.json", temp_dir, now=NOW) == []

    def test_invalid_json_is_empty(self, temp_dir):
        gallery_db = temp_dir / "gallery.json"
        gallery_db.write_text("{not json", encoding="utf-8")

        assert load_gallery_entries(gallery_db, temp_dir, now=NOW) == []

    def test_drops_entries_without_files(self, temp_dir):
        gallery_db = temp_dir / "gallery.json"
        _write_image(temp_dir, "keep.png")
        save_gallery_entries(
            gallery_db,
            [
                {"id": "keep", "filename": "keep.png"},
                {"id": "gone", "filename": "gone.png"},
                {"id": "", "filename": "keep.png"},
                {"filename": "keep.png"},
            ],
        )

        entries = load_gallery_entries(gallery_db, temp_dir, now=NOW)

        assert [entry["id"] for entry in entries] == ["keep"]
        assert json.loads(gallery_db.read_text(encoding="utf-8")) == entries

    def test_untouched_file_not_rewritten(self, temp_dir):
        gallery_db = temp_dir / "gallery.json"
        _write_image(temp_dir, "a.png")
        gallery_db.write_text(json.dumps([{"id": "a", "filename": "a.png"}]), encoding="utf-8")
        original = gallery_db.read_text(encoding="utf-8")

        load_gallery_entries(gallery_db, temp_dir, now=NOW)

        assert gallery_db.read_text(encoding="utf-8") == original

    def test_expired_entries_pruned_with_files(self, temp_dir):
        gallery_db = temp_dir / "gallery.json"
        for name in ("old.png", "old.webp", "old.avif", "new.png"):
            _write_image(temp_dir, name)
        save_gallery_entries(
            gallery_db,
            [
                {
                    "id": "old",
                    "filename": "old.png",
                    "webpFilename": "old.webp",
                    "avifFilename": "old.avif",
                    "expiryTime": (NOW - timedelta(minutes=1)).isoformat(),
                },
                {
                    "id": "new",
                    "filename": "new.png",
                    "expiryTime": (NOW + timedelta(minutes=1)).isoformat(),
                },
            ],
        )

        entries = load_gallery_entries(gallery_db, temp_dir, now=NOW)

        assert [entry["id"] for entry in entries] == ["new"]
        assert not (temp_dir / "old.png").exists()
        assert not (temp_dir / "old.webp").exists()
        assert not (temp_dir / "old.avif").exists()
        assert (temp_dir / "new.png").exists()


class TestIsExpired:
    def test_no_expiry(self):
        assert is_expired({}, NOW) is False
        assert is_expired({"expiryTime": None}, NOW) is False

    def test_unreadable_expiry_never_expires(self):
        assert is_expired({"expiryTime": "tomorrow"}, NOW) is False

    def test_boundary_is_expired(self):
        assert is_expired({"expiryTime": NOW.isoformat()}, NOW) is True


class TestFilterGalleryEntries:
    """Test tag and orientation filters."""

    ENTRIES = [
        {"id": "a", "tags": ["cats"], "orientation": "landscape"},
        {"id": "b", "tags": ["dogs"], "orientation": "portrait"},
        {"id": "c", "tags": ["cats", "dogs"], "orientation": "portrait"},
        {"id": "d", "orientation": "square"},
    ]

    def test_no_filters(self):
        assert filter_gallery_entries(self.ENTRIES) == self.ENTRIES

    def test_tag(self):
        assert [e["id"] for e in filter_gallery_entries(self.ENTRIES, tag="cats")] == ["a", "c"]

    def test_orientation(self):
        result = filter_gallery_entries(self.ENTRIES, orientation="portrait")
        assert [e["id"] for e in result] == ["b", "c"]

    def test_both(self):
        result = filter_gallery_entries(self.ENTRIES, tag="cats", orientation="portrait")
        assert [e["id"] for e in result] == ["c"]


class TestPaginateGalleryEntries:
    """Test pagination and clamping."""

    def test_first_page(self):
        result = paginate_gallery_entries(list(range(5)), 1, 2)

        assert result == {"images": [0, 1], "page": 1, "limit": 2, "total": 5, "totalPages": 3}

    def test_page_clamped_to_last(self):
        result = paginate_gallery_entries(list(range(5)), 9, 2)

        assert result["page"] == 3
        assert result["images"] == [4]

    def test_page_clamped_to_first(self):
        assert paginate_gallery_entries(list(range(5)), 0, 2)["page"] == 1

    def test_empty_gallery_has_one_page(self):
        result = paginate_gallery_entries([], 1, 24)

        assert result["totalPages"] == 1
        assert result["images"] == []

    @pytest.mark.parametrize(("requested", "expected"), [(0, 1), (-5, 1), (1000, MAX_PAGE_SIZE)])
    def test_limit_clamped(self, requested, expected):
        assert paginate_gallery_entries([], 1, requested)["limit"] == expected


class TestSmallHelpers:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [((200, 100), "landscape"), ((100, 200), "portrait"), ((100, 100), "square")],
    )
    def test_orientation_for(self, size, expected):
        assert orientation_for(*size) == expected

    def test_collect_tags_sorted_and_distinct(self):
        entries = [{"tags": ["b", "a"]}, {"tags": ["a", "c"]}, {}]
        assert collect_tags(entries) == ["a", "b", "c"]

    def test_find_gallery_entry(self):
        entries = [{"id": "a"}, {"id": "b"}]
        assert find_gallery_entry(entries, "b") == {"id": "b"}
        assert find_gallery_entry(entries, "z") is None
