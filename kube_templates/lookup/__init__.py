"""Cluster lookups exposed to templates."""

from kube_templates.lookup.functions import LookupFunctions, get_namespace, on_allowlist

__all__ = [
    "LookupFunctions",
    "get_namespace",
    "on_allowlist",
]
