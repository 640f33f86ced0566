"""Keyed query cache with cancellation and background refetch.

Keys are tuples; operations that take a ``prefix`` act on every key that
starts with it, so ``("meal-water-records",)`` covers every date range that
has been loaded for that collection. Everything runs on one event loop.
"""
import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

QueryKey = Tuple[Any, ...]
QueryFn = Callable[[], Awaitable[Any]]


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    return tuple(key[:len(prefix)]) == tuple(prefix)


class QueryEntry:
    def __init__(self, key: QueryKey):
        self.key = key
        self.data: Any = None
        self.query_fn: Optional[QueryFn] = None
        self.fetch_task: Optional[asyncio.Task] = None
        self.cancel_requested = False
        self.invalidated = False
        self.error: Optional[BaseException] = None
        self.data_version = 0

    @property
    def is_fetching(self) -> bool:
        return self.fetch_task is not None and not self.fetch_task.done()


class QueryCache:
    def __init__(self):
        self._entries: Dict[QueryKey, QueryEntry] = {}
        self._listeners: List[Callable[[QueryKey], None]] = []

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: Callable[[QueryKey], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: QueryKey):
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("query cache listener failed for %s", key)

    # -- synchronous reads / writes -----------------------------------------

    def _entry(self, key: QueryKey) -> QueryEntry:
        key = tuple(key)
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key)
            self._entries[key] = entry
        return entry

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(tuple(key))
        return entry.data if entry else None

    def set_query_data(self, key: QueryKey, updater: Any) -> Any:
        """Replace an entry's data; ``updater`` may be a value or ``old -> new``."""
        entry = self._entry(key)
        new_data = updater(entry.data) if callable(updater) else updater
        entry.data = new_data
        entry.data_version += 1
        self._notify(entry.key)
        return new_data

    def find_keys(self, prefix: QueryKey) -> List[QueryKey]:
        return [k for k in self._entries if key_matches(k, prefix)]

    def get_queries_data(self, prefix: QueryKey) -> List[Tuple[QueryKey, Any]]:
        return [
            (k, e.data) for k, e in self._entries.items()
            if key_matches(k, prefix) and e.data is not None
        ]

    def remove_queries(self, prefix: QueryKey):
        for key in self.find_keys(prefix):
            entry = self._entries.pop(key)
            if entry.is_fetching:
                entry.cancel_requested = True
                entry.fetch_task.cancel()

    def snapshot(self, prefix: QueryKey) -> Dict[QueryKey, Any]:
        return {k: copy.deepcopy(d) for k, d in self.get_queries_data(prefix)}

    def restore(self, snapshot: Dict[QueryKey, Any]):
        for key, data in snapshot.items():
            self.set_query_data(key, copy.deepcopy(data))

    # -- fetching --------------------------------------------------------------

    async def _run_fetch(self, entry: QueryEntry, query_fn: QueryFn):
        me = asyncio.current_task()
        try:
            data = await query_fn()
        except asyncio.CancelledError:
            if entry.cancel_requested or entry.fetch_task is not me:
                logger.debug("fetch cancelled for %s", entry.key)
                return
            raise
        except Exception as e:
            logger.warning("fetch failed for %s: %s", entry.key, e)
            if entry.fetch_task is me:
                entry.error = e
            return
        # a restarted fetch owns the entry now
        if entry.fetch_task is not me:
            return
        entry.error = None
        entry.invalidated = False
        entry.data = data
        entry.data_version += 1
        self._notify(entry.key)

    def _start_fetch(self, entry: QueryEntry, restart: bool = False) -> asyncio.Task:
        if entry.is_fetching:
            if not restart:
                return entry.fetch_task
            entry.fetch_task.cancel()
        entry.cancel_requested = False
        entry.error = None
        entry.fetch_task = asyncio.ensure_future(self._run_fetch(entry, entry.query_fn))
        return entry.fetch_task

    async def fetch_query(self, key: QueryKey, query_fn: QueryFn) -> Any:
        """Fetch (or join the in-flight fetch for) ``key`` and return its data.

        A fetch cancelled through :meth:`cancel_queries` resolves to whatever
        the cache holds at that point; one restarted by an invalidation
        resolves with the restarted fetch. Fetch errors are raised to the
        caller and leave the previous data in place.
        """
        entry = self._entry(key)
        entry.query_fn = query_fn
        task = self._start_fetch(entry)
        while True:
            # a task cancelled before its first step never reaches _run_fetch's handler
            await asyncio.wait({task})
            if entry.fetch_task is task or not entry.is_fetching:
                break
            task = entry.fetch_task
        if entry.error is not None:
            raise entry.error
        return entry.data

    async def ensure_query_data(self, key: QueryKey, query_fn: QueryFn) -> Any:
        entry = self._entry(key)
        if entry.data is not None and not entry.invalidated:
            entry.query_fn = query_fn
            return entry.data
        return await self.fetch_query(key, query_fn)

    async def cancel_queries(self, prefix: QueryKey):
        tasks = []
        for key in self.find_keys(prefix):
            entry = self._entries[key]
            if entry.is_fetching:
                entry.cancel_requested = True
                entry.fetch_task.cancel()
                tasks.append(entry.fetch_task)
        if tasks:
            logger.debug("cancelled %d in-flight fetch(es) under %s", len(tasks), prefix)
            await asyncio.gather(*tasks, return_exceptions=True)

    def invalidate_queries(self, prefix: QueryKey, refetch: bool = True) -> List[asyncio.Task]:
        """Mark entries stale and refetch them in the background.

        A fetch already in flight is restarted: it may have been issued
        before the write that caused the invalidation reached the server.
        """
        tasks = []
        for key in self.find_keys(prefix):
            entry = self._entries[key]
            entry.invalidated = True
            if refetch and entry.query_fn is not None:
                tasks.append(self._start_fetch(entry, restart=True))
        return tasks

    async def wait_for_fetches(self):
        """Wait until no fetch is in flight (fetches started meanwhile included)."""
        while True:
            pending = [e.fetch_task for e in self._entries.values() if e.is_fetching]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
