"""Key-addressed query cache shared by the listing and mutation controllers.

The cache is a plain object passed to every controller that needs it; there
is no process-wide instance.  It runs on a single asyncio event loop and is
never touched from other threads, so it holds no locks.  Ordering still
matters across suspension points, which is why the cache exposes explicit
cancellation of in-flight fetches.

Entries are addressed by the tuple keys from :mod:`picvault.core.query_keys`.
Every operation that takes a *prefix* applies to all keys at or below it in
that hierarchy.

Writes always replace an entry's value as a whole.  Values are frozen
pydantic models (or tuples of them), so a reference captured by
:meth:`QueryCache.get_queries_data` is a faithful snapshot for as long as the
caller holds it.

Fetch lifecycle
---------------
:meth:`QueryCache.fetch_query` runs the supplied coroutine function as an
``asyncio.Task`` registered under its key:

- concurrent callers for the same key share the task;
- the result is written to the cache only when the fetch succeeds;
- a failed fetch records the error on the entry and re-raises it, leaving
  the previously cached value in place;
- :meth:`QueryCache.cancel_queries` cancels the task before it can write,
  and callers awaiting it get the cached value back instead of an error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any

from picvault.core.query_keys import QueryKey, is_prefix

logger = logging.getLogger(__name__)

Updater = Callable[[Any], Any]


@dataclass
class CacheEntry:
    """State stored for one key.

    Attributes:
        data: Last successfully fetched or explicitly written value.
        updated_at: ``time.monotonic()`` of the last write.
        is_invalidated: Set by :meth:`QueryCache.invalidate_queries`; forces
            the next read through a staleness check to refetch.
        error: Exception raised by the most recent failed fetch, cleared on
            the next successful write.
    """

    data: Any = None
    updated_at: float = 0.0
    is_invalidated: bool = False
    error: BaseException | None = None


class QueryCache:
    """In-memory cache of query results keyed by hierarchical tuples."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._inflight: dict[QueryKey, asyncio.Task] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads.
    # ------------------------------------------------------------------

    def get_entry(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def get_query_data(self, key: QueryKey, default: Any = None) -> Any:
        """Return the cached value for *key*, or *default* when absent."""
        entry = self._entries.get(key)
        return default if entry is None else entry.data

    def get_queries_data(self, prefix: QueryKey) -> list[tuple[QueryKey, Any]]:
        """Return ``(key, value)`` pairs for every entry under *prefix*."""
        return [(key, entry.data) for key, entry in self._matching(prefix)]

    def is_stale(self, key: QueryKey, stale_time: float) -> bool:
        """Return True if *key* has no data, was invalidated, or is too old."""
        entry = self._entries.get(key)
        if entry is None or entry.is_invalidated:
            return True
        return self._clock() - entry.updated_at >= stale_time

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._inflight

    # ------------------------------------------------------------------
    # Writes.
    # ------------------------------------------------------------------

    def set_query_data(self, key: QueryKey, value: Any) -> Any:
        """Replace the value stored under *key*.

        Args:
            key: Cache key.
            value: New value, or a callable receiving the old value (``None``
                when absent) and returning the new one.

        Returns:
            The value now stored.
        """
        if callable(value):
            value = value(self.get_query_data(key))
        self._write(key, value)
        return value

    def set_queries_data(self, prefix: QueryKey, updater: Updater) -> list[tuple[QueryKey, Any]]:
        """Apply *updater* to every entry under *prefix*.

        Entries the updater returns unchanged (same object) are not rewritten,
        so their timestamps and invalidation flags survive.

        Returns:
            ``(key, value)`` pairs after the update.
        """
        updated = []
        for key, entry in list(self._matching(prefix)):
            new_value = updater(entry.data)
            if new_value is not entry.data:
                self._write(key, new_value)
            updated.append((key, new_value))
        return updated

    def invalidate_queries(self, prefix: QueryKey) -> int:
        """Mark every entry under *prefix* stale without dropping its data.

        Returns:
            Number of entries marked.
        """
        count = 0
        for _key, entry in self._matching(prefix):
            entry.is_invalidated = True
            count += 1
        logger.debug(f"Invalidated {count} cache entries under {prefix!r}")
        return count

    def remove_queries(self, prefix: QueryKey) -> int:
        """Drop every entry under *prefix*.

        Returns:
            Number of entries removed.
        """
        keys = [key for key, _entry in self._matching(prefix)]
        for key in keys:
            del self._entries[key]
        logger.debug(f"Removed {len(keys)} cache entries under {prefix!r}")
        return len(keys)

    def clear(self) -> None:
        self.cancel_queries(())
        self._entries.clear()

    # ------------------------------------------------------------------
    # Fetching.
    # ------------------------------------------------------------------

    async def fetch_query(self, key: QueryKey, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        """Run *fetcher* for *key*, sharing any fetch already in flight.

        Args:
            key: Cache key the result is stored under.
            fetcher: Zero-argument coroutine function producing the value.

        Returns:
            The fetched value, or the cached value if the fetch was cancelled
            through :meth:`cancel_queries`.

        Raises:
            Exception: Whatever *fetcher* raised.  The cached value is left
                untouched.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run_fetch(key, fetcher))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))

        try:
            # Shielded so a caller being cancelled does not cancel a fetch
            # other callers are sharing.
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                logger.debug(f"Fetch for {key!r} was cancelled; returning cached data")
                return self.get_query_data(key)
            raise

    def cancel_queries(self, prefix: QueryKey) -> int:
        """Cancel every in-flight fetch under *prefix* before it writes.

        Returns:
            Number of fetches cancelled.
        """
        keys = [key for key in self._inflight if is_prefix(prefix, key)]
        tasks = [self._inflight.pop(key) for key in keys]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug(f"Cancelled {len(tasks)} in-flight fetches under {prefix!r}")
        return len(tasks)

    async def _run_fetch(self, key: QueryKey, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            entry = self._entries.get(key)
            if entry is not None:
                entry.error = exc
            logger.debug(f"Fetch for {key!r} failed: {exc}")
            raise
        # No await between here and the write, so a cancel cannot land after
        # the fetch resolved but before its value is stored.
        self._write(key, data)
        return data

    def _forget(self, key: QueryKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    # ------------------------------------------------------------------
    # Internals.
    # ------------------------------------------------------------------

    def _write(self, key: QueryKey, value: Any) -> None:
        self._entries[key] = CacheEntry(data=value, updated_at=self._clock())

    def _matching(self, prefix: QueryKey) -> Iterator[tuple[QueryKey, CacheEntry]]:
        for key, entry in self._entries.items():
            if is_prefix(prefix, key):
                yield key, entry

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
