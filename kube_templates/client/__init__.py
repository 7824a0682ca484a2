"""Object-store collaborators: interfaces, caches, and local implementations."""

from kube_templates.client.cache import DiscoveryCache, ObjectCache
from kube_templates.client.local import BUILTIN_RESOURCES, InMemoryCluster
from kube_templates.client.protocols import (
    CachingQueryAPI,
    DiscoveryClient,
    DynamicClient,
    DynamicWatcher,
)
from kube_templates.client.selectors import LabelSelector, Requirement
from kube_templates.client.types import (
    APIResource,
    GroupVersionKind,
    ObjectIdentifier,
    ScopedGVR,
    object_identity,
    object_labels,
)
from kube_templates.client.watcher import BoundQueryAPI, CachingWatcher

__all__ = [
    "APIResource",
    "BUILTIN_RESOURCES",
    "BoundQueryAPI",
    "CachingQueryAPI",
    "CachingWatcher",
    "DiscoveryCache",
    "DiscoveryClient",
    "DynamicClient",
    "DynamicWatcher",
    "GroupVersionKind",
    "InMemoryCluster",
    "LabelSelector",
    "ObjectCache",
    "ObjectIdentifier",
    "Requirement",
    "ScopedGVR",
    "object_identity",
    "object_labels",
]
