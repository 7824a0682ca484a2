"""In-memory object store implementing the discovery and dynamic client.

Used to resolve templates against a set of local manifests (dry runs,
offline rendering, tests) without an API server.  Secrets behave like the
API server stores them: ``stringData`` is folded into base64 ``data``.
"""

from __future__ import annotations

import base64
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from kube_templates.client.selectors import LabelSelector
from kube_templates.client.types import (
    APIResource,
    GroupVersionKind,
    ScopedGVR,
    object_labels,
)
from kube_templates.errors import InvalidInputError, ObjectNotFoundError

logger = logging.getLogger(__name__)

#: Resources every cluster serves, plus the ClusterClaim CRD the claim
#: functions read.
BUILTIN_RESOURCES: Tuple[APIResource, ...] = (
    APIResource("", "v1", "ConfigMap", "configmaps", True),
    APIResource("", "v1", "Namespace", "namespaces", False),
    APIResource("", "v1", "Node", "nodes", False),
    APIResource("", "v1", "Pod", "pods", True),
    APIResource("", "v1", "Secret", "secrets", True),
    APIResource("", "v1", "Service", "services", True),
    APIResource("", "v1", "ServiceAccount", "serviceaccounts", True),
    APIResource("apps", "v1", "Deployment", "deployments", True),
    APIResource(
        "cluster.open-cluster-management.io", "v1alpha1", "ClusterClaim", "clusterclaims", False
    ),
)

_Key = Tuple[str, str, str]


class InMemoryCluster:
    """A tiny object store that answers discovery, get, and list calls."""

    def __init__(
        self,
        objects: Optional[Iterable[Dict[str, Any]]] = None,
        *,
        resources: Optional[Iterable[APIResource]] = None,
    ) -> None:
        self._resources: Dict[GroupVersionKind, APIResource] = {}
        self._objects: Dict[_Key, Dict[Tuple[str, str], Dict[str, Any]]] = {}
        for res in BUILTIN_RESOURCES if resources is None else resources:
            self.register(res)
        for obj in objects or ():
            self.add(obj)

    @classmethod
    def from_yaml(cls, text: str, **kwargs: Any) -> "InMemoryCluster":
        """Build a cluster from a multi-document YAML string.

        ``kind: List`` documents contribute their ``items``.
        """
        objects: List[Dict[str, Any]] = []
        for doc in yaml.safe_load_all(text):
            if not doc:
                continue
            if not isinstance(doc, dict):
                raise InvalidInputError(f"expected a mapping document, got {type(doc).__name__}")
            if doc.get("kind") == "List":
                objects.extend(doc.get("items") or [])
            else:
                objects.append(doc)
        return cls(objects, **kwargs)

    # -- registration -----------------------------------------------------

    def register(self, resource: APIResource) -> None:
        gvk = GroupVersionKind(resource.group, resource.version, resource.kind)
        self._resources[gvk] = resource

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Store a copy of *obj* and return the stored form.

        Unknown kinds are registered on the fly with a naive plural name.
        """
        api_version = obj.get("apiVersion")
        kind = obj.get("kind")
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not api_version or not kind or not name:
            raise InvalidInputError("objects must set apiVersion, kind, and metadata.name")

        gvk = GroupVersionKind.from_api_version(str(api_version), str(kind))
        resource = self._resources.get(gvk)
        if resource is None:
            resource = APIResource(
                gvk.group,
                gvk.version,
                gvk.kind,
                gvk.kind.lower() + "s",
                namespaced=bool(metadata.get("namespace")),
            )
            logger.debug("Registering resource %s for %s", resource.name, gvk)
            self.register(resource)

        stored = copy.deepcopy(obj)
        if gvk.group == "" and gvk.kind == "Secret":
            _fold_string_data(stored)

        namespace = str(metadata.get("namespace") or "") if resource.namespaced else ""
        key = (resource.group, resource.version, resource.name)
        self._objects.setdefault(key, {})[(namespace, str(name))] = stored
        return copy.deepcopy(stored)

    def delete(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        resource = self._resources.get(gvk)
        if resource is None:
            return
        key = (resource.group, resource.version, resource.name)
        self._objects.get(key, {}).pop((namespace if resource.namespaced else "", name), None)

    # -- DiscoveryClient --------------------------------------------------

    def server_resources_for_group_version(self, group_version: str) -> List[APIResource]:
        return [r for r in self._resources.values() if r.group_version == group_version]

    # -- DynamicClient ----------------------------------------------------

    def get(self, gvr: ScopedGVR, namespace: str, name: str) -> Dict[str, Any]:
        bucket = self._objects.get((gvr.group, gvr.version, gvr.resource), {})
        ns = namespace if gvr.namespaced else ""
        obj = bucket.get((ns, name))
        if obj is None:
            raise ObjectNotFoundError(gvr.resource, ns, name)
        return copy.deepcopy(obj)

    def list(
        self, gvr: ScopedGVR, namespace: str, selector: LabelSelector
    ) -> List[Dict[str, Any]]:
        bucket = self._objects.get((gvr.group, gvr.version, gvr.resource), {})
        items = []
        for (ns, _), obj in sorted(bucket.items()):
            if gvr.namespaced and namespace and ns != namespace:
                continue
            if not selector.matches(object_labels(obj)):
                continue
            items.append(copy.deepcopy(obj))
        return items


def _fold_string_data(secret: Dict[str, Any]) -> None:
    """Move ``stringData`` into base64 ``data`` like the API server does."""
    string_data = secret.pop("stringData", None) or {}
    if not string_data:
        return
    data = secret.setdefault("data", {}) or {}
    for key, value in string_data.items():
        data[key] = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
    secret["data"] = data
