"""Resolver configuration models and template context validation."""

from kube_templates.config.context import validate_context
from kube_templates.config.models import (
    DEFAULT_START_DELIM,
    DEFAULT_STOP_DELIM,
    HUB_START_DELIM,
    HUB_STOP_DELIM,
    ClusterScopedObjectIdentifier,
    Config,
    ContextTransformer,
    EncryptionConfig,
    ResolveOptions,
)

__all__ = [
    "ClusterScopedObjectIdentifier",
    "Config",
    "ContextTransformer",
    "DEFAULT_START_DELIM",
    "DEFAULT_STOP_DELIM",
    "EncryptionConfig",
    "HUB_START_DELIM",
    "HUB_STOP_DELIM",
    "ResolveOptions",
    "validate_context",
]
