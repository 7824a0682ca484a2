"""Per-call resolution state and the result handed back to callers.

A :class:`ResolutionSession` is created for every ``resolve_template`` call
and threaded through every template function that has side effects.  It is
never stored on the resolver, so one resolver can serve concurrent calls.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kube_templates.client.cache import ObjectCache
from kube_templates.client.types import ObjectIdentifier


# ---------------------------------------------------------------------------
# UsedResource
# ---------------------------------------------------------------------------


@dataclass
class UsedResource:
    """An object served to the template, and whether it came from the cluster."""

    resource: Dict[str, Any]
    is_remote: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"is_remote": self.is_remote, "resource": self.resource}


# ---------------------------------------------------------------------------
# TemplateResult
# ---------------------------------------------------------------------------


@dataclass
class TemplateResult:
    """Outcome of a successful ``resolve_template`` call.

    Attributes:
        resolved_json: The resolved document as compact JSON bytes.
        has_sensitive_data: Secret data or decrypted values reached the output.
        missing_api_resource: A lookup referenced an API type that is not
            installed; the affected lookups resolved to empty values.
        referenced_objects: Every object the template looked up, including
            the ones that were not found.
        used_resources: Every object actually served to the template.
    """

    resolved_json: bytes = b""
    has_sensitive_data: bool = False
    missing_api_resource: bool = False
    referenced_objects: List[ObjectIdentifier] = field(default_factory=list)
    used_resources: List[UsedResource] = field(default_factory=list)

    @property
    def resolved(self) -> Any:
        """The resolved document decoded from JSON."""
        if not self.resolved_json:
            return None
        return json.loads(self.resolved_json)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dict (sorted for determinism)."""
        return {
            "has_sensitive_data": self.has_sensitive_data,
            "missing_api_resource": self.missing_api_resource,
            "referenced_objects": sorted(
                (o.to_dict() for o in self.referenced_objects),
                key=lambda d: json.dumps(d, sort_keys=True),
            ),
            "resolved": self.resolved,
            "used_resources": [u.to_dict() for u in self.used_resources],
        }


# ---------------------------------------------------------------------------
# ResolutionSession
# ---------------------------------------------------------------------------


class ResolutionSession:
    """Mutable state accumulated during one ``resolve_template`` call.

    Args:
        object_cache: Call-scoped object cache; ``None`` in caching mode,
            where the watcher does the caching.
        decrypted: Plaintexts already decrypted for this call, keyed by the
            base64 text that followed each marker.
    """

    def __init__(
        self,
        object_cache: Optional[ObjectCache] = None,
        decrypted: Optional[Dict[str, str]] = None,
    ) -> None:
        self.object_cache = object_cache
        self.decrypted: Dict[str, str] = dict(decrypted or {})
        self.has_sensitive_data = False
        self.missing_api_resource = False
        self._referenced: List[ObjectIdentifier] = []
        self._used: List[UsedResource] = []
        self._lock = threading.Lock()

    def mark_sensitive(self) -> None:
        self.has_sensitive_data = True

    def mark_missing_api_resource(self) -> None:
        self.missing_api_resource = True

    def add_referenced(self, ident: ObjectIdentifier) -> None:
        with self._lock:
            if ident not in self._referenced:
                self._referenced.append(ident)

    def add_used(self, obj: Dict[str, Any], is_remote: bool) -> None:
        with self._lock:
            for used in self._used:
                if used.resource == obj:
                    return
            self._used.append(UsedResource(resource=obj, is_remote=is_remote))

    @property
    def referenced_objects(self) -> List[ObjectIdentifier]:
        return list(self._referenced)

    @property
    def used_resources(self) -> List[UsedResource]:
        return list(self._used)

    def close(self) -> None:
        """Drop call-scoped caches."""
        if self.object_cache is not None:
            self.object_cache.clear()

    def to_result(self, resolved_json: bytes) -> TemplateResult:
        return TemplateResult(
            resolved_json=resolved_json,
            has_sensitive_data=self.has_sensitive_data,
            missing_api_resource=self.missing_api_resource,
            referenced_objects=self.referenced_objects,
            used_resources=self.used_resources,
        )
