"""Template rendering: function registry, rewrites, and detection helpers."""

from kube_templates.render.detection import has_template, uses_encryption
from kube_templates.render.functions import builtin_functions
from kube_templates.render.processors import (
    block_delimiters,
    escape_hub_templates,
    expand_autoindent,
    json_to_yaml,
    strip_type_quotes,
    yaml_to_json,
)
from kube_templates.render.registry import FunctionRegistry
from kube_templates.render.utilities import (
    SENSITIVE_FUNCTIONS,
    available_utility_functions,
    utility_functions,
)

__all__ = [
    "FunctionRegistry",
    "SENSITIVE_FUNCTIONS",
    "available_utility_functions",
    "block_delimiters",
    "builtin_functions",
    "escape_hub_templates",
    "expand_autoindent",
    "has_template",
    "json_to_yaml",
    "strip_type_quotes",
    "utility_functions",
    "uses_encryption",
    "yaml_to_json",
]
