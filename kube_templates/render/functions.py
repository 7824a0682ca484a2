"""Built-in template functions that do not touch the cluster.

Every function takes the piped subject as its first argument so it works
both as a call (``toInt("6")``) and as a filter (``"6" | toInt``).
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from typing import Any, Callable, Dict

import yaml

from kube_templates.errors import NewLinesNotAllowedError, TemplateExecutionError
from kube_templates.render.processors import dump_yaml, load_yaml

_DECIMAL_RE = re.compile(r"^[+-]?[0-9]+$")
_ZERO_DECIMAL_RE = re.compile(r"^([+-]?[0-9]+)\.0*$")
_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})

_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}


# ── encoding ─────────────────────────────────────────────────────────


def base64enc(value: Any) -> str:
    return base64.b64encode(_as_bytes(value)).decode("ascii")


def base64dec(value: Any) -> str:
    """Decode base64; a decoding failure yields the error text instead."""
    try:
        return base64.b64decode(_as_bytes(value), validate=True).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as exc:
        return f"illegal base64 data: {exc}"


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


# ── indentation ──────────────────────────────────────────────────────


def autoindent(value: Any) -> str:
    # Only reached when the autoindent rewrite did not apply
    raise TemplateExecutionError(
        "an unexpected error occurred where autoindent could not be processed"
    )


def make_indent(additional_indentation: int = 0) -> Callable[[Any, int], str]:
    """Return ``indent(value, spaces)`` honouring the additional offset."""

    def indent(value: Any, spaces: int) -> str:
        pad = " " * (int(spaces) + additional_indentation)
        padded = "\n" + pad + str(value).replace("\n", "\n" + pad)
        return padded.strip()

    return indent


# ── type coercion ────────────────────────────────────────────────────


def to_int(value: Any) -> int:
    """Lenient integer conversion; anything unconvertible is ``0``."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        return int(value)
    if isinstance(value, str):
        text = value
        m = _ZERO_DECIMAL_RE.match(text)
        if m:
            text = m.group(1)
        return _parse_int_base0(text)
    return 0


def _parse_int_base0(text: str) -> int:
    sign = 1
    body = text
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    lowered = body.lower()
    try:
        if lowered.startswith(("0x", "0o", "0b")):
            return sign * int(lowered, 0)
        if len(body) > 1 and body.startswith("0"):
            return sign * int(body, 8)
        if not body.isdigit():
            return 0
        return sign * int(body)
    except ValueError:
        return 0


def atoi(value: Any) -> int:
    text = str(value)
    if not _DECIMAL_RE.match(text):
        return 0
    return int(text)


def to_bool(value: Any) -> bool:
    return str(value) in _TRUE_STRINGS


def to_literal(value: Any) -> str:
    text = str(value)
    if "\n" in text:
        raise NewLinesNotAllowedError()
    return text


# ── JSON ─────────────────────────────────────────────────────────────


def must_from_json(value: Any) -> Any:
    return json.loads(str(value))


def from_json(value: Any) -> Any:
    try:
        return must_from_json(value)
    except ValueError:
        return None


def must_to_raw_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def must_to_json(value: Any) -> str:
    raw = must_to_raw_json(value)
    for char, escaped in _HTML_ESCAPES.items():
        raw = raw.replace(char, escaped)
    return raw


def to_json(value: Any) -> str:
    try:
        return must_to_json(value)
    except (TypeError, ValueError):
        return ""


def to_raw_json(value: Any) -> str:
    try:
        return must_to_raw_json(value)
    except (TypeError, ValueError):
        return ""


# ── YAML ─────────────────────────────────────────────────────────────


def from_yaml(value: Any) -> Any:
    return load_yaml(str(value))


def to_yaml(value: Any) -> str:
    """Dump *value* as unindented block YAML; pipe to ``indent`` as needed."""
    try:
        text = dump_yaml(value, sort_keys=True)
    except (yaml.YAMLError, TypeError) as exc:
        raise TemplateExecutionError(f"yaml marshal error: {exc}") from exc
    if text.endswith("\n...\n"):
        text = text[: -len("...\n")]
    return text[:-1] if text.endswith("\n") else text


def builtin_functions(additional_indentation: int = 0) -> Dict[str, Callable[..., Any]]:
    """Return the cluster-independent built-ins keyed by template name."""
    return {
        "base64enc": base64enc,
        "base64dec": base64dec,
        "b64enc": base64enc,
        "b64dec": base64dec,
        "autoindent": autoindent,
        "indent": make_indent(additional_indentation),
        "atoi": atoi,
        "toInt": to_int,
        "toBool": to_bool,
        "toLiteral": to_literal,
        "fromJSON": from_json,
        "mustFromJSON": must_from_json,
        "toJSON": to_json,
        "mustToJSON": must_to_json,
        "toRawJSON": to_raw_json,
        "mustToRawJSON": must_to_raw_json,
        "fromYAML": from_yaml,
        "toYAML": to_yaml,
        "fromYaml": from_yaml,
        "toYaml": to_yaml,
    }