"""Tests for picvault.core.overlay — merging recent uploads into listings.

Tests cover:
- Ordering, de-duplication and truncation in merge_first_page.
- added_count reflecting novelty independent of truncation.
- Tag/orientation filter matching.
- Reading the overlay from the query cache.
"""

from __future__ import annotations

from picvault.core import query_keys
from picvault.core.models import ImageRecord
from picvault.core.overlay import (
    matches_filters,
    merge_first_page,
    overlay_matches,
    read_recent_uploads,
)


def _ids(images) -> list[str]:
    return [image.id for image in images]


class TestMergeFirstPage:
    """Test merge_first_page."""

    def test_disjoint_sets_additions_first(self, make_image):
        """Disjoint inputs should all appear, additions before existing."""
        existing = [make_image("a1"), make_image("a2")]
        additions = [make_image("b1"), make_image("b2")]

        result = merge_first_page(existing, additions, limit=10)

        assert _ids(result.images) == ["b1", "b2", "a1", "a2"]
        assert result.added_count == 2

    def test_overlapping_id_taken_from_additions(self, make_image):
        """A shared id should appear once, using the overlay's copy."""
        stale = make_image("x", tags=["old"])
        fresh = make_image("x", tags=["new"])

        result = merge_first_page([stale, make_image("a")], [fresh], limit=10)

        assert _ids(result.images) == ["x", "a"]
        assert result.images[0] is fresh
        assert result.added_count == 0

    def test_result_never_exceeds_limit(self, make_image):
        """Merged length is capped at the limit."""
        existing = [make_image(f"e{i}") for i in range(30)]
        additions = [make_image(f"n{i}") for i in range(30)]

        result = merge_first_page(existing, additions, limit=24)

        assert len(result.images) == 24
        assert _ids(result.images)[:3] == ["n0", "n1", "n2"]

    def test_added_count_ignores_truncation(self, make_image):
        """added_count counts every novel addition, even ones cut off."""
        existing = [make_image("e0")]
        additions = [make_image(f"n{i}") for i in range(5)]

        result = merge_first_page(existing, additions, limit=2)

        assert _ids(result.images) == ["n0", "n1"]
        assert result.added_count == 5

    def test_unidentified_records_dropped(self, make_image):
        """Records with an empty id never make it into the result."""
        result = merge_first_page([ImageRecord(), make_image("a")], [ImageRecord(id="")], limit=10)

        assert _ids(result.images) == ["a"]
        assert result.added_count == 0

    def test_duplicates_within_existing_collapsed(self, make_image):
        """Repeated ids inside the server page appear once."""
        result = merge_first_page([make_image("a"), make_image("a")], [], limit=10)

        assert _ids(result.images) == ["a"]

    def test_zero_limit_returns_nothing(self, make_image):
        """A zero limit yields an empty page."""
        result = merge_first_page([make_image("a")], [make_image("b")], limit=0)

        assert result.images == []
        assert result.added_count == 1

    def test_inputs_not_modified(self, make_image):
        """The merge must not touch its input sequences."""
        existing = [make_image("a")]
        additions = [make_image("b")]

        merge_first_page(existing, additions, limit=1)

        assert _ids(existing) == ["a"]
        assert _ids(additions) == ["b"]

    def test_deterministic(self, make_image):
        """Identical inputs give identical outputs."""
        existing = [make_image("a"), make_image("b")]
        additions = [make_image("c"), make_image("a")]

        assert merge_first_page(existing, additions, 3) == merge_first_page(existing, additions, 3)


class TestMatchesFilters:
    """Test matches_filters."""

    def test_empty_filters_match_everything(self, make_image):
        assert matches_filters(make_image("a"), "", "") is True

    def test_tag_must_be_present(self, make_image):
        image = make_image("a", tags=["cats", "pets"])
        assert matches_filters(image, "cats", "") is True
        assert matches_filters(image, "dogs", "") is False

    def test_orientation_must_be_equal(self, make_image):
        image = make_image("a", orientation="portrait")
        assert matches_filters(image, "", "portrait") is True
        assert matches_filters(image, "", "landscape") is False

    def test_both_filters_required(self, make_image):
        image = make_image("a", tags=["cats"], orientation="square")
        assert matches_filters(image, "cats", "square") is True
        assert matches_filters(image, "cats", "portrait") is False
        assert matches_filters(image, "dogs", "square") is False


class TestOverlayFromStore:
    """Test reading the recent-uploads overlay from the cache."""

    def test_missing_overlay_is_empty(self, store):
        assert read_recent_uploads(store) == ()
        assert overlay_matches(store, "cats", "") == []

    def test_overlay_filtered_in_order(self, store, make_image):
        store.set_query_data(
            query_keys.images.recent_uploads(),
            [make_image("a", tags=["x"]), make_image("b", tags=["y"]), make_image("c", tags=["x"])],
        )

        assert _ids(overlay_matches(store, "x", "")) == ["a", "c"]

    def test_overlay_stored_as_mapping(self, store, make_image):
        store.set_query_data(
            query_keys.images.recent_uploads(),
            {"a": make_image("a", orientation="portrait"), "b": make_image("b")},
        )

        assert _ids(read_recent_uploads(store)) == ["a", "b"]
        assert _ids(overlay_matches(store, "", "portrait")) == ["a"]
