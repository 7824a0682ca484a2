"""Interfaces of the object-store collaborators the engine talks to.

The engine never performs network I/O itself.  It calls these small
interfaces; real implementations wrap a Kubernetes API client, while
:mod:`kube_templates.client.local` and :mod:`kube_templates.client.watcher`
provide in-process versions for dry runs and tests.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from kube_templates.client.selectors import LabelSelector
from kube_templates.client.types import (
    APIResource,
    GroupVersionKind,
    ObjectIdentifier,
    ScopedGVR,
)


@runtime_checkable
class DiscoveryClient(Protocol):
    """Resolves kinds to their REST resources."""

    def server_resources_for_group_version(self, group_version: str) -> List[APIResource]:
        """Return the resources served for *group_version* (empty if unknown)."""
        ...


@runtime_checkable
class DynamicClient(Protocol):
    """Uncached get/list against the object store.

    ``get`` raises :class:`~kube_templates.errors.ObjectNotFoundError` when
    the object does not exist.
    """

    def get(self, gvr: ScopedGVR, namespace: str, name: str) -> Dict[str, Any]:
        ...

    def list(self, gvr: ScopedGVR, namespace: str, selector: LabelSelector) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class CachingQueryAPI(Protocol):
    """Limited query API handed to context transformers.

    Every query registers a watch on behalf of the bound watcher.
    """

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        ...

    def list(
        self, gvk: GroupVersionKind, namespace: str, selector: LabelSelector
    ) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class DynamicWatcher(Protocol):
    """Watch-backed cache used in caching mode.

    ``get`` returns ``None`` for a missing object.  ``gvk_to_gvr`` raises
    :class:`~kube_templates.errors.MissingAPIResourceError` when the type is
    not installed.  ``start_query_batch`` raises
    :class:`~kube_templates.errors.QueryBatchInProgressError` when the
    watcher already has a batch open.
    """

    def gvk_to_gvr(self, gvk: GroupVersionKind) -> ScopedGVR:
        ...

    def get(
        self, watcher: ObjectIdentifier, gvk: GroupVersionKind, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        ...

    def list(
        self,
        watcher: ObjectIdentifier,
        gvk: GroupVersionKind,
        namespace: str,
        selector: LabelSelector,
    ) -> List[Dict[str, Any]]:
        ...

    def start_query_batch(self, watcher: ObjectIdentifier) -> None:
        ...

    def end_query_batch(self, watcher: ObjectIdentifier) -> None:
        ...

    def remove_watcher(self, watcher: ObjectIdentifier) -> None:
        ...

    def list_watched_from_cache(self, watcher: ObjectIdentifier) -> List[Dict[str, Any]]:
        ...

    def get_from_cache(
        self, gvk: GroupVersionKind, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        ...

    def get_watch_count(self) -> int:
        ...
