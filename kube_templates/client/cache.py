"""Discovery cache and the call-scoped object cache.

:class:`DiscoveryCache` lives as long as the resolver and maps kinds to
REST resources, optionally remembering missing types for a TTL so a missing
CRD is not re-queried on every lookup.

:class:`ObjectCache` lives for a single ``resolve_template`` call in
non-caching mode so repeated lookups of the same object inside one document
hit the API only once.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from kube_templates.client.protocols import DiscoveryClient
from kube_templates.client.types import (
    APIResource,
    GroupVersionKind,
    ObjectIdentifier,
    ScopedGVR,
)
from kube_templates.errors import MissingAPIResourceError, NoCacheEntryError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DiscoveryCache
# ---------------------------------------------------------------------------


class DiscoveryCache:
    """Resolve :class:`GroupVersionKind` to :class:`ScopedGVR`.

    When *api_resources* is given the discovery client is never called and
    only those resources are known.  Successful resolutions are cached for
    the lifetime of the instance; misses are cached for
    *missing_ttl* seconds (``0`` disables negative caching).
    """

    def __init__(
        self,
        discovery_client: Optional[DiscoveryClient] = None,
        *,
        api_resources: Optional[Iterable[APIResource]] = None,
        missing_ttl: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._discovery = discovery_client
        self._preloaded = api_resources is not None
        self._missing_ttl = missing_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._resolved: Dict[GroupVersionKind, ScopedGVR] = {}
        self._missing: Dict[GroupVersionKind, float] = {}
        if api_resources is not None:
            for res in api_resources:
                self._remember(res)

    def gvk_to_gvr(self, gvk: GroupVersionKind) -> ScopedGVR:
        """Return the resource coordinates for *gvk*.

        Raises :class:`MissingAPIResourceError` when the type is not served.
        """
        with self._lock:
            hit = self._resolved.get(gvk)
            if hit is not None:
                return hit
            expiry = self._missing.get(gvk)
            if expiry is not None:
                if self._clock() < expiry:
                    logger.debug("Discovery miss for %s served from the negative cache", gvk)
                    raise MissingAPIResourceError(context={"gvk": str(gvk)})
                del self._missing[gvk]

        if self._preloaded or self._discovery is None:
            raise MissingAPIResourceError(context={"gvk": str(gvk)})

        logger.debug("Querying discovery for %s", gvk.group_version)
        resources = self._discovery.server_resources_for_group_version(gvk.group_version)

        with self._lock:
            for res in resources:
                self._remember(res)
            hit = self._resolved.get(gvk)
            if hit is None:
                if self._missing_ttl > 0:
                    self._missing[gvk] = self._clock() + self._missing_ttl
                raise MissingAPIResourceError(context={"gvk": str(gvk)})
            return hit

    def clear(self) -> None:
        """Forget every cached resolution except pre-supplied resources."""
        with self._lock:
            self._missing.clear()
            if not self._preloaded:
                self._resolved.clear()

    def _remember(self, res: APIResource) -> None:
        # Subresources such as "pods/log" are never lookup targets
        if "/" in res.name:
            return
        gvk = GroupVersionKind(res.group, res.version, res.kind)
        self._resolved[gvk] = ScopedGVR.from_api_resource(res)


# ---------------------------------------------------------------------------
# ObjectCache
# ---------------------------------------------------------------------------


class ObjectCache:
    """Per-call cache of query results keyed by :class:`ObjectIdentifier`.

    A named query caches a one-item list, or an empty list for a
    not-found result.  Stored and returned objects are deep copies.
    """

    def __init__(self) -> None:
        self._entries: Dict[ObjectIdentifier, List[Dict[str, Any]]] = {}

    def from_object_identifier(self, ident: ObjectIdentifier) -> List[Dict[str, Any]]:
        try:
            items = self._entries[ident]
        except KeyError:
            raise NoCacheEntryError(str(ident)) from None
        return copy.deepcopy(items)

    def cache_from_object_identifier(
        self, ident: ObjectIdentifier, items: List[Dict[str, Any]]
    ) -> None:
        self._entries[ident] = copy.deepcopy(items)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
