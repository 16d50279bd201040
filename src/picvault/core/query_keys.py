"""Hierarchical cache keys for the query cache.

Keys are tuples so that a shorter key is a prefix of every key below it:
invalidating ``images.lists()`` reaches every listing regardless of its
filters, while ``images.detail(id)`` addresses exactly one record.

    >>> images.list(page=1, limit=24, tag="cats")
    ('images', 'list', (('limit', 24), ('page', 1), ('tag', 'cats')))
"""

from __future__ import annotations

from typing import Any

QueryKey = tuple[Any, ...]


def _filters(**values: Any) -> tuple[tuple[str, Any], ...]:
    # Sorted, None-free pairs keep keys hashable and independent of argument order.
    return tuple(sorted((name, value) for name, value in values.items() if value is not None))


class _ImageKeys:
    def all(self) -> QueryKey:
        return ("images",)

    def lists(self) -> QueryKey:
        return (*self.all(), "list")

    def list(
        self,
        *,
        page: int | None = None,
        limit: int | None = None,
        tag: str | None = None,
        orientation: str | None = None,
    ) -> QueryKey:
        return (*self.lists(), _filters(page=page, limit=limit, tag=tag, orientation=orientation))

    def recent_uploads(self) -> QueryKey:
        return (*self.all(), "recentUploads")

    def details(self) -> QueryKey:
        return (*self.all(), "detail")

    def detail(self, image_id: str) -> QueryKey:
        return (*self.details(), image_id)


class _TagKeys:
    def all(self) -> QueryKey:
        return ("tags",)

    def list(self) -> QueryKey:
        return (*self.all(), "list")


class _ConfigKeys:
    def all(self) -> QueryKey:
        return ("config",)


images = _ImageKeys()
tags = _TagKeys()
config = _ConfigKeys()


def is_prefix(prefix: QueryKey, key: QueryKey) -> bool:
    """Return True if *key* lies at or below *prefix* in the key hierarchy."""
    return len(prefix) <= len(key) and key[: len(prefix)] == prefix
