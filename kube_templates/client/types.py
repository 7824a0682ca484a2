"""Identifiers for Kubernetes resource types and objects.

Objects themselves are passed around as plain ``dict`` manifests (the
"unstructured" form); these small dataclasses describe *which* object or
type is being asked for.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from kube_templates.errors import InvalidInputError


@dataclass(frozen=True)
class GroupVersionKind:
    """An API type such as ``apps/v1 Deployment``."""

    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """Split ``apps/v1`` into group and version.

        ``v1`` is the core group (empty string).  More than one ``/`` is
        rejected.
        """
        if api_version.count("/") > 1:
            raise InvalidInputError(
                f"unexpected GroupVersion string: {api_version}",
                context={"apiVersion": api_version},
            )
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group=group, version=version, kind=kind)

    @property
    def group_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    def __str__(self) -> str:
        return f"{self.group_version}, Kind={self.kind}"


@dataclass(frozen=True)
class APIResource:
    """One discovery entry: the plural resource name behind a kind."""

    group: str
    version: str
    kind: str
    name: str
    namespaced: bool = True

    @property
    def group_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version


@dataclass(frozen=True)
class ScopedGVR:
    """Resolved resource coordinates plus whether the type is namespaced."""

    group: str
    version: str
    resource: str
    namespaced: bool

    @classmethod
    def from_api_resource(cls, api_resource: APIResource) -> "ScopedGVR":
        return cls(
            group=api_resource.group,
            version=api_resource.version,
            resource=api_resource.name,
            namespaced=api_resource.namespaced,
        )


@dataclass(frozen=True)
class ObjectIdentifier:
    """Identifies a single object, or a list query when *name* is empty.

    Also used as the watcher identity in caching mode.
    """

    group: str = ""
    version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""
    selector: str = ""

    @classmethod
    def from_gvk(
        cls,
        gvk: GroupVersionKind,
        namespace: str = "",
        name: str = "",
        selector: str = "",
    ) -> "ObjectIdentifier":
        return cls(
            group=gvk.group,
            version=gvk.version,
            kind=gvk.kind,
            namespace=namespace,
            name=name,
            selector=selector,
        )

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind(self.group, self.version, self.kind)

    @property
    def is_list(self) -> bool:
        return not self.name

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dict (sorted for determinism)."""
        return {
            "group": self.group,
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "selector": self.selector,
            "version": self.version,
        }

    def __str__(self) -> str:
        gv = self.group + "/" + self.version if self.group else self.version
        parts = [f"GroupVersion={gv}", f"Kind={self.kind}"]
        if self.namespace:
            parts.append(f"Namespace={self.namespace}")
        if self.name:
            parts.append(f"Name={self.name}")
        if self.selector:
            parts.append(f"Selector={self.selector}")
        return ", ".join(parts)


# ---------------------------------------------------------------------------
# Unstructured helpers
# ---------------------------------------------------------------------------


def object_identity(obj: Dict[str, Any]) -> Optional[ObjectIdentifier]:
    """Build an :class:`ObjectIdentifier` from a manifest, or ``None``."""
    api_version = obj.get("apiVersion")
    kind = obj.get("kind")
    if not api_version or not kind:
        return None
    gvk = GroupVersionKind.from_api_version(str(api_version), str(kind))
    metadata = obj.get("metadata") or {}
    return ObjectIdentifier.from_gvk(
        gvk,
        namespace=str(metadata.get("namespace") or ""),
        name=str(metadata.get("name") or ""),
    )


def object_labels(obj: Dict[str, Any]) -> Dict[str, str]:
    """Return ``metadata.labels`` as a dict (empty when absent)."""
    metadata = obj.get("metadata") or {}
    labels = metadata.get("labels") or {}
    return {str(k): str(v) for k, v in labels.items()}
