"""Text rewrites applied to the template source before it is parsed.

The template engine knows nothing about YAML, so a few regex rewrites make
template output keep its native type in the surrounding document:

* **quote stripping** removes the quotes (or block scalar marker) around an
  expression that calls ``toInt``, ``toBool``, ``toLiteral``,
  ``copySecretData`` or ``copyConfigMapData``, so ``key: '{{ "6" | toInt }}'``
  renders as ``key: 6`` instead of ``key: '6'``.
* **autoindent expansion** replaces ``| autoindent`` with ``| indent(N)``
  where ``N`` is the column the expression starts in.
* **hub escaping** keeps ``{{hub ... hub}}`` spans as literal text when the
  managed (default) delimiters are in use.

This module also holds the JSON <-> YAML conversions used on the way in and
out of the engine.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Tuple, Union

import yaml
from yaml.constructor import ConstructorError

from kube_templates.config.models import HUB_START_DELIM, HUB_STOP_DELIM
from kube_templates.errors import TemplateParseError

logger = logging.getLogger(__name__)

YAML_INDENTATION = 2

_TYPE_FUNCTIONS = r"(?:.*\|\s*(?:toInt|toBool|toLiteral)|(?:.*(?:copyConfigMapData|copySecretData)))"


# ---------------------------------------------------------------------------
# Delimiters
# ---------------------------------------------------------------------------


def block_delimiters(start_delim: str, stop_delim: str) -> Tuple[str, str, str, str]:
    """Return ``(block_start, block_end, comment_start, comment_end)``.

    Control blocks and comments hang off the expression delimiters, so the
    hub pass (``{{hub% ... %hub}}``) and the managed pass (``{{% ... %}}``)
    never see each other's statements.
    """
    return (
        start_delim + "%",
        "%" + stop_delim,
        start_delim + "#",
        "#" + stop_delim,
    )


# ---------------------------------------------------------------------------
# Rewrites
# ---------------------------------------------------------------------------


def _start_pattern(start_delim: str) -> str:
    """Escaped start delimiter that never matches the start of a hub template.

    With the managed pair, ``{{`` would otherwise also match ``{{hub``.
    """
    pattern = re.escape(start_delim)
    if start_delim != HUB_START_DELIM and HUB_START_DELIM.startswith(start_delim):
        pattern += "(?!" + re.escape(HUB_START_DELIM[len(start_delim) :]) + ")"
    return pattern


def strip_type_quotes(text: str, start_delim: str, stop_delim: str) -> str:
    """Unquote mapping values and list items that produce typed output.

    Hub templates are left alone when the managed delimiters are in use.
    """
    d1 = _start_pattern(start_delim)
    d2 = re.escape(stop_delim)
    body = r"(" + d1 + r"-?" + _TYPE_FUNCTIONS + r".*" + d2 + r")(?:\s*'?)"

    mapping_re = re.compile(r":\s+(?:[\|>]-?\s+)?(?:'?\s*)" + body)
    list_re = re.compile(r"(?m)^([ \t]*-[ \t]+)(?:[\|>]-?\s+)?(?:'?\s*)" + body)
    logger.debug("Quote stripping patterns: %s | %s", mapping_re.pattern, list_re.pattern)

    processed = mapping_re.sub(lambda m: ": " + m.group(1), text)
    processed = list_re.sub(lambda m: m.group(1) + m.group(2), processed)
    if processed != text:
        logger.debug("Processed data after quote stripping:\n%s", processed)
    return processed


def expand_autoindent(
    text: str, start_delim: str, stop_delim: str, additional_indentation: int = 0
) -> str:
    """Rewrite ``| autoindent`` to ``| indent(N)`` using the expression's column.

    ``N`` is the number of spaces before the expression (or its opening
    quote) minus *additional_indentation*, since ``indent`` adds that offset
    back.
    """
    if "autoindent" not in text:
        return text
    d1 = _start_pattern(start_delim)
    d2 = re.escape(stop_delim)
    pattern = re.compile(r"( *)(?:'|\")?(" + d1 + r".*\| *autoindent *-?" + d2 + ")")
    logger.debug("Autoindent pattern: %s", pattern.pattern)

    processed = text
    for match in pattern.finditer(text):
        spaces = len(match.group(1)) - additional_indentation
        expr = match.group(2)
        replacement = expr.replace("autoindent", f"indent({spaces})", 1)
        processed = processed.replace(expr, replacement, 1)

    logger.debug("Processed data after autoindent expansion:\n%s", processed)
    return processed


def escape_hub_templates(text: str, start_delim: str, stop_delim: str) -> str:
    """Wrap every ``{{hub ... hub}}`` span in a raw block.

    Only needed when the managed pair is a prefix of the hub pair; with the
    hub delimiters configured the text is returned unchanged.
    """
    if start_delim == HUB_START_DELIM or HUB_START_DELIM not in text:
        return text
    if not HUB_START_DELIM.startswith(start_delim):
        return text
    block_start, block_end, _, _ = block_delimiters(start_delim, stop_delim)
    raw_open = f"{block_start} raw {block_end}"
    raw_close = f"{block_start} endraw {block_end}"
    span = re.compile(re.escape(HUB_START_DELIM) + r".*?" + re.escape(HUB_STOP_DELIM), re.DOTALL)
    return span.sub(lambda m: raw_open + m.group(0) + raw_close, text)


# ---------------------------------------------------------------------------
# YAML dialect
# ---------------------------------------------------------------------------


class _BlockDumper(yaml.SafeDumper):
    """Block-style dumper: indented sequences, literal multi-line strings."""

    def increase_indent(self, flow: bool = False, indentless: bool = False) -> None:
        return super().increase_indent(flow, False)


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockDumper.add_representer(str, _represent_str)


class _Yaml12Loader(yaml.SafeLoader):
    """Safe loader with YAML 1.2 core scalars and string keys.

    Only ``true``/``false`` (any common casing) are booleans, timestamps
    stay strings, and ``12:30`` is not a base-60 number.  Mapping keys are
    converted to strings as they are inserted, so ``1`` and ``true`` remain
    distinct keys.
    """

    def construct_mapping(self, node: yaml.Node, deep: bool = False) -> Dict[str, Any]:
        if not isinstance(node, yaml.MappingNode):
            raise ConstructorError(
                None, None, f"expected a mapping node, but found {node.id}", node.start_mark
            )
        self.flatten_mapping(node)
        mapping: Dict[str, Any] = {}
        for key_node, value_node in node.value:
            key = _key_str(self.construct_object(key_node, deep=True))
            mapping[key] = self.construct_object(value_node, deep=deep)
        return mapping


_BOOL_TAG = "tag:yaml.org,2002:bool"
_INT_TAG = "tag:yaml.org,2002:int"
_FLOAT_TAG = "tag:yaml.org,2002:float"
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"

_REPLACED_TAGS = (_BOOL_TAG, _INT_TAG, _FLOAT_TAG, _TIMESTAMP_TAG)
_Yaml12Loader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _REPLACED_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_Yaml12Loader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)
_Yaml12Loader.add_implicit_resolver(
    _INT_TAG,
    re.compile(
        r"^(?:[-+]?0b[0-1_]+"
        r"|[-+]?0o?[0-7_]+"
        r"|[-+]?(?:0|[1-9][0-9_]*)"
        r"|[-+]?0x[0-9a-fA-F_]+)$"
    ),
    list("-+0123456789"),
)
_Yaml12Loader.add_implicit_resolver(
    _FLOAT_TAG,
    re.compile(
        r"^(?:[-+]?(?:[0-9][0-9_]*)\.[0-9_]*(?:[eE][-+]?[0-9]+)?"
        r"|[-+]?(?:[0-9][0-9_]*)[eE][-+]?[0-9]+"
        r"|[-+]?\.[0-9_]+(?:[eE][-+]?[0-9]+)?"
        r"|[-+]?\.(?:inf|Inf|INF)"
        r"|\.(?:nan|NaN|NAN))$"
    ),
    list("-+0123456789."),
)


def load_yaml(text: str) -> Any:
    """Parse a single YAML document with the YAML 1.2 scalar rules."""
    return yaml.load(text, Loader=_Yaml12Loader)


def dump_yaml(value: Any, sort_keys: bool = False) -> str:
    """Emit *value* as block YAML (indent 2, no line wrapping)."""
    return yaml.dump(
        value,
        Dumper=_BlockDumper,
        default_flow_style=False,
        sort_keys=sort_keys,
        allow_unicode=True,
        indent=YAML_INDENTATION,
        width=float("inf"),
    )


# ---------------------------------------------------------------------------
# JSON <-> YAML
# ---------------------------------------------------------------------------


def json_to_yaml(raw: Union[bytes, str]) -> str:
    """Convert a JSON document to the block YAML the rewrites operate on."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        obj = json.loads(raw)
    except ValueError as exc:
        raise TemplateParseError(
            f"failed to convert the policy template to YAML: {exc}"
        ) from exc
    return dump_yaml(obj)


def yaml_to_json(text: str) -> bytes:
    """Convert rendered YAML to compact JSON with sorted keys."""
    try:
        obj = load_yaml(text)
        return json.dumps(
            obj,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        raise TemplateParseError(
            f"failed to convert the resolved template to JSON: {exc}"
        ) from exc


def _key_str(key: Any) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    if key is None:
        return "null"
    return str(key)
