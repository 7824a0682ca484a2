"""Tests for kube_templates.render.functions."""

from __future__ import annotations

import json

import pytest

from kube_templates.errors import NewLinesNotAllowedError, TemplateExecutionError
from kube_templates.render.functions import (
    atoi,
    autoindent,
    base64dec,
    base64enc,
    builtin_functions,
    from_json,
    from_yaml,
    make_indent,
    must_from_json,
    to_bool,
    to_int,
    to_json,
    to_literal,
    to_raw_json,
    to_yaml,
)


# ── encoding ─────────────────────────────────────────────────────────


class TestBase64:
    def test_encode(self):
        assert base64enc("testdata") == "dGVzdGRhdGE="

    def test_decode(self):
        assert base64dec("c2VjcmV0a2V5MVZhbA==") == "secretkey1Val"

    def test_decode_invalid_returns_error_text(self):
        assert base64dec("not base64!").startswith("illegal base64 data")


# ── indentation ──────────────────────────────────────────────────────


class TestIndent:
    def test_indent_continuation_lines(self):
        assert make_indent()("a\nb", 4) == "a\n    b"

    def test_additional_indentation(self):
        assert make_indent(2)("a\nb", 2) == "a\n    b"

    def test_autoindent_without_rewrite_fails(self):
        with pytest.raises(TemplateExecutionError, match="autoindent"):
            autoindent("x")


# ── type coercion ────────────────────────────────────────────────────


class TestToInt:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("6", 6),
            ("6.0", 6),
            ("-7", -7),
            ("0x1F", 31),
            ("010", 8),
            ("abc", 0),
            ("6.5", 0),
            (3.9, 3),
            (True, 1),
            (None, 0),
            (12, 12),
        ],
    )
    def test_values(self, value, expected):
        assert to_int(value) == expected


class TestAtoi:
    def test_decimal(self):
        assert atoi("42") == 42

    def test_invalid(self):
        assert atoi("4x") == 0


class TestToBool:
    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "t", "T", True])
    def test_true(self, value):
        assert to_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "yes", "", "0"])
    def test_false(self, value):
        assert to_bool(value) is False


class TestToLiteral:
    def test_single_line(self):
        assert to_literal("[a, b]") == "[a, b]"

    def test_new_lines_rejected(self):
        with pytest.raises(NewLinesNotAllowedError):
            to_literal("a\nb")


# ── JSON / YAML ──────────────────────────────────────────────────────


class TestJson:
    def test_to_json_escapes_html(self):
        assert to_json({"a": "<b>&"}) == '{"a":"\\u003cb\\u003e\\u0026"}'

    def test_to_raw_json_sorted_compact(self):
        assert to_raw_json({"b": 1, "a": "<"}) == '{"a":"<","b":1}'

    def test_to_json_unserializable(self):
        assert to_json({"a": object()}) == ""

    def test_from_json(self):
        assert from_json('{"a": [1]}') == {"a": [1]}

    def test_from_json_invalid(self):
        assert from_json("nope") is None

    def test_must_from_json_invalid(self):
        with pytest.raises(ValueError):
            must_from_json("nope")


class TestYaml:
    def test_to_yaml(self):
        assert to_yaml({"b": [1, 2], "a": "x"}) == "a: x\nb:\n  - 1\n  - 2"

    def test_to_yaml_scalar(self):
        assert to_yaml("x") == "x"

    def test_from_yaml(self):
        assert from_yaml("a: 1\nb: yes\n") == {"a": 1, "b": "yes"}


class TestBuiltinFunctions:
    def test_aliases(self):
        table = builtin_functions()
        assert table["b64enc"] is table["base64enc"]
        assert table["toYaml"] is table["toYAML"]

    def test_expected_names(self):
        assert {"toInt", "toBool", "toLiteral", "indent", "autoindent", "fromJSON"} <= set(
            builtin_functions()
        )

    def test_indent_uses_offset(self):
        assert builtin_functions(3)["indent"]("a\nb", 1) == "a\n    b"

    def test_json_round_trip_through_table(self):
        table = builtin_functions()
        assert json.loads(table["mustToRawJSON"]({"k": "v"})) == {"k": "v"}
