"""Kube Template Utils - template resolution for policy manifests.

Resolves templates embedded in YAML/JSON manifests before they are applied
to a cluster: lookups of live resources, encryption of secret material, and
type-aware rewriting of the surrounding YAML so that template output keeps
its native type.
"""

try:
    from importlib.metadata import version

    __version__ = version("kube-template-utils")
except Exception:
    __version__ = "0.0.0.dev0"

from kube_templates.config.models import (
    ClusterScopedObjectIdentifier,
    Config,
    EncryptionConfig,
    ResolveOptions,
)
from kube_templates.render.detection import has_template, uses_encryption
from kube_templates.state.session import TemplateResult
from kube_templates.workflow.resolver import TemplateResolver

__all__ = [
    "ClusterScopedObjectIdentifier",
    "Config",
    "EncryptionConfig",
    "ResolveOptions",
    "TemplateResolver",
    "TemplateResult",
    "__version__",
    "has_template",
    "uses_encryption",
]
