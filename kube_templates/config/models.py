"""Pydantic models for resolver and per-call configuration.

Defines the data structures for:
- Resolver-wide settings (delimiters, disabled functions, indentation)
- Per-call options (lookup restrictions, custom functions, caching watcher)
- Encryption settings (AES key, fallback key, initialization vector)
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kube_templates.client.types import APIResource, ObjectIdentifier
from kube_templates.errors import TemplateValidationError

DEFAULT_START_DELIM = "{{"
DEFAULT_STOP_DELIM = "}}"
HUB_START_DELIM = "{{hub"
HUB_STOP_DELIM = "hub}}"

#: Signature of a context transformer: ``(query_api, context) -> context``.
ContextTransformer = Callable[[Any, Any], Any]


class Config(BaseModel):
    """Resolver-wide settings, fixed for the lifetime of a resolver.

    ``start_delim`` and ``stop_delim`` must both be left empty (the default
    ``{{``/``}}`` pair) or both be set.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    start_delim: str = ""
    stop_delim: str = ""
    disabled_functions: List[str] = Field(default_factory=list)
    additional_indentation: int = Field(default=0, ge=0)
    missing_api_resource_cache_ttl: float = Field(default=0.0, ge=0)
    skip_batch_management: bool = False
    kube_api_resources: Optional[List[APIResource]] = None

    @classmethod
    def for_hub(cls, **kwargs: Any) -> "Config":
        """Return a config using the ``{{hub``/``hub}}`` delimiter pair."""
        return cls(start_delim=HUB_START_DELIM, stop_delim=HUB_STOP_DELIM, **kwargs)

    def delimiters(self) -> Tuple[str, str]:
        """Return the effective ``(start, stop)`` pair.

        Raises:
            TemplateValidationError: Only one of the two delimiters is set.
        """
        if bool(self.start_delim) != bool(self.stop_delim):
            raise TemplateValidationError(
                "the configurations StartDelim and StopDelim cannot be set independently",
                context={"start_delim": self.start_delim, "stop_delim": self.stop_delim},
            )
        if not self.start_delim:
            return DEFAULT_START_DELIM, DEFAULT_STOP_DELIM
        return self.start_delim, self.stop_delim


class EncryptionConfig(BaseModel):
    """Key material and switches for ``protect`` and decryption.

    The initialization vector is fixed, so equal plaintexts always encrypt
    to equal ciphertexts.  Keys are validated by
    :func:`kube_templates.crypto.validate_encryption_config`.
    """

    model_config = ConfigDict(frozen=True)

    aes_key: Optional[bytes] = None
    aes_key_fallback: Optional[bytes] = None
    initialization_vector: Optional[bytes] = None
    decryption_concurrency: int = Field(default=1, ge=0, le=255)
    decryption_enabled: bool = False
    encryption_enabled: bool = False

    @property
    def enabled(self) -> bool:
        return self.encryption_enabled or self.decryption_enabled


class ClusterScopedObjectIdentifier(BaseModel):
    """Allowlist entry for cluster-scoped lookups; ``*`` matches anything."""

    model_config = ConfigDict(frozen=True)

    group: str = "*"
    kind: str = "*"
    name: str = "*"

    def matches(self, group: str, kind: str, name: str) -> bool:
        return (
            self.group in ("*", group)
            and self.kind in ("*", kind)
            and self.name in ("*", name)
        )


class ResolveOptions(BaseModel):
    """Options for a single ``resolve_template`` call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    context_transformers: List[ContextTransformer] = Field(default_factory=list)
    cluster_scoped_allow_list: List[ClusterScopedObjectIdentifier] = Field(default_factory=list)
    custom_functions: Dict[str, Callable[..., Any]] = Field(default_factory=dict)
    denylist_functions: List[str] = Field(default_factory=list)
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    input_is_yaml: bool = False
    lookup_namespace: str = ""
    watcher: Optional[ObjectIdentifier] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_allow_list(cls, data: Any) -> Any:
        """Accept ``(group, kind, name)`` tuples in the allowlist."""
        if isinstance(data, dict) and data.get("cluster_scoped_allow_list"):
            entries = []
            for entry in data["cluster_scoped_allow_list"]:
                if isinstance(entry, (list, tuple)):
                    group, kind, name = entry
                    entry = {"group": group, "kind": kind, "name": name}
                entries.append(entry)
            data = {**data, "cluster_scoped_allow_list": entries}
        return data
