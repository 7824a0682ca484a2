"""In-process watch-batch bookkeeping for caching mode.

:class:`CachingWatcher` implements the :class:`DynamicWatcher` interface on
top of a plain dynamic client.  Each watcher identity (the object whose
templates are being resolved) owns a set of watched queries.  Queries made
while a query batch is open are collected; ending the batch replaces the
watcher's previous set and garbage-collects cache entries no longer watched
by anyone.

Only one batch may be open per watcher at a time.  That guard is the only
lock held across calls.

There is no API watch stream here: :meth:`CachingWatcher.refresh` re-reads
every watched query and reports the watchers whose results changed, which
is what a real watch event would trigger.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from kube_templates.client.cache import DiscoveryCache
from kube_templates.client.protocols import DynamicClient, DynamicWatcher
from kube_templates.client.selectors import LabelSelector
from kube_templates.client.types import GroupVersionKind, ObjectIdentifier, ScopedGVR
from kube_templates.errors import (
    CacheError,
    NoCacheEntryError,
    ObjectNotFoundError,
    QueryBatchInProgressError,
)

logger = logging.getLogger(__name__)


class CachingWatcher:
    """Reference :class:`DynamicWatcher` backed by a dynamic client.

    Args:
        dynamic_client: Used to fetch objects on a cache miss and on refresh.
        discovery: Resolves kinds to resources; its negative cache TTL
            applies to missing CRDs.
        on_change: Called with a watcher identity whenever :meth:`refresh`
            finds that one of its watched queries changed.
    """

    def __init__(
        self,
        dynamic_client: DynamicClient,
        discovery: DiscoveryCache,
        *,
        on_change: Optional[Callable[[ObjectIdentifier], None]] = None,
    ) -> None:
        self._client = dynamic_client
        self._discovery = discovery
        self._on_change = on_change
        self._lock = threading.Lock()
        self._batches: Dict[ObjectIdentifier, Set[ObjectIdentifier]] = {}
        self._watches: Dict[ObjectIdentifier, Set[ObjectIdentifier]] = {}
        self._cache: Dict[ObjectIdentifier, List[Dict[str, Any]]] = {}
        self._gvrs: Dict[ObjectIdentifier, ScopedGVR] = {}

    # -- discovery --------------------------------------------------------

    def gvk_to_gvr(self, gvk: GroupVersionKind) -> ScopedGVR:
        return self._discovery.gvk_to_gvr(gvk)

    # -- queries ----------------------------------------------------------

    def get(
        self, watcher: ObjectIdentifier, gvk: GroupVersionKind, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        gvr = self.gvk_to_gvr(gvk)
        query = ObjectIdentifier.from_gvk(gvk, namespace=namespace, name=name)
        items = self._query(watcher, query, gvr)
        return items[0] if items else None

    def list(
        self,
        watcher: ObjectIdentifier,
        gvk: GroupVersionKind,
        namespace: str,
        selector: LabelSelector,
    ) -> List[Dict[str, Any]]:
        gvr = self.gvk_to_gvr(gvk)
        query = ObjectIdentifier.from_gvk(gvk, namespace=namespace, selector=str(selector))
        return self._query(watcher, query, gvr)

    def _query(
        self, watcher: ObjectIdentifier, query: ObjectIdentifier, gvr: ScopedGVR
    ) -> List[Dict[str, Any]]:
        with self._lock:
            batch = self._batches.get(watcher)
            if batch is not None:
                batch.add(query)
            else:
                self._watches.setdefault(watcher, set()).add(query)
            self._gvrs[query] = gvr
            cached = self._cache.get(query)
            if cached is not None:
                return copy.deepcopy(cached)

        items = self._fetch(query, gvr)
        with self._lock:
            self._cache[query] = copy.deepcopy(items)
        logger.debug("Added watch for %s on behalf of %s", query, watcher)
        return items

    def _fetch(self, query: ObjectIdentifier, gvr: ScopedGVR) -> List[Dict[str, Any]]:
        if query.name:
            try:
                return [self._client.get(gvr, query.namespace, query.name)]
            except ObjectNotFoundError:
                return []
        return self._client.list(gvr, query.namespace, LabelSelector.parse(query.selector))

    # -- query batches ----------------------------------------------------

    def start_query_batch(self, watcher: ObjectIdentifier) -> None:
        with self._lock:
            if watcher in self._batches:
                raise QueryBatchInProgressError(watcher)
            self._batches[watcher] = set()
        logger.debug("Started query batch for %s", watcher)

    def end_query_batch(self, watcher: ObjectIdentifier) -> None:
        """Commit the batch: queries not repeated in it stop being watched."""
        with self._lock:
            batch = self._batches.pop(watcher, None)
            if batch is None:
                raise CacheError(
                    f"there is no query batch in progress for {watcher}",
                    context={"watcher": str(watcher)},
                )
            previous = self._watches.get(watcher, set())
            dropped = previous - batch
            if batch:
                self._watches[watcher] = batch
            else:
                self._watches.pop(watcher, None)
            self._collect_garbage()
        if dropped:
            logger.debug("Removed %d stale watch(es) for %s", len(dropped), watcher)

    def remove_watcher(self, watcher: ObjectIdentifier) -> None:
        with self._lock:
            self._watches.pop(watcher, None)
            self._batches.pop(watcher, None)
            self._collect_garbage()

    def _collect_garbage(self) -> None:
        live = self._live_queries()
        for query in list(self._cache):
            if query not in live:
                del self._cache[query]
                self._gvrs.pop(query, None)

    def _live_queries(self) -> Set[ObjectIdentifier]:
        live: Set[ObjectIdentifier] = set()
        for queries in self._watches.values():
            live |= queries
        for queries in self._batches.values():
            live |= queries
        return live

    # -- cache inspection -------------------------------------------------

    def list_watched_from_cache(self, watcher: ObjectIdentifier) -> List[Dict[str, Any]]:
        with self._lock:
            queries = set(self._watches.get(watcher, set()))
            queries |= self._batches.get(watcher, set())
            if not queries:
                raise NoCacheEntryError(str(watcher))
            items: List[Dict[str, Any]] = []
            for query in sorted(queries, key=str):
                items.extend(copy.deepcopy(self._cache.get(query, [])))
        return items

    def get_from_cache(
        self, gvk: GroupVersionKind, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        query = ObjectIdentifier.from_gvk(gvk, namespace=namespace, name=name)
        with self._lock:
            if query not in self._cache:
                raise NoCacheEntryError(str(query))
            items = self._cache[query]
            return copy.deepcopy(items[0]) if items else None

    def get_watch_count(self) -> int:
        with self._lock:
            return len(self._live_queries())

    # -- change detection -------------------------------------------------

    def refresh(self) -> List[ObjectIdentifier]:
        """Re-read every watched query and return watchers whose data changed."""
        with self._lock:
            queries = {q: self._gvrs[q] for q in self._cache if q in self._gvrs}

        changed: Set[ObjectIdentifier] = set()
        for query, gvr in queries.items():
            items = self._fetch(query, gvr)
            with self._lock:
                if self._cache.get(query) == items:
                    continue
                self._cache[query] = copy.deepcopy(items)
                for watcher, watched in self._watches.items():
                    if query in watched:
                        changed.add(watcher)

        result = sorted(changed, key=str)
        if self._on_change is not None:
            for watcher in result:
                self._on_change(watcher)
        return result


class BoundQueryAPI:
    """:class:`CachingQueryAPI` that queries on behalf of one watcher."""

    def __init__(self, dynamic_watcher: DynamicWatcher, watcher: ObjectIdentifier) -> None:
        self._dynamic_watcher = dynamic_watcher
        self._watcher = watcher

    @property
    def dynamic_watcher(self) -> DynamicWatcher:
        return self._dynamic_watcher

    @property
    def watcher(self) -> ObjectIdentifier:
        return self._watcher

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self._dynamic_watcher.get(self._watcher, gvk, namespace, name)

    def list(
        self, gvk: GroupVersionKind, namespace: str, selector: LabelSelector
    ) -> List[Dict[str, Any]]:
        return self._dynamic_watcher.list(self._watcher, gvk, namespace, selector)
