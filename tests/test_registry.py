"""Tests for kube_templates.render.registry."""

from __future__ import annotations

import pytest
from jinja2.sandbox import SandboxedEnvironment

from kube_templates.errors import DenylistedFunctionError
from kube_templates.render.registry import FunctionRegistry


def _builtin(value):
    return f"builtin:{value}"


def _utility(value):
    return f"utility:{value}"


def _custom(value):
    return f"custom:{value}"


def _build(**kwargs):
    return FunctionRegistry.build(
        {"shared": _builtin, "only_builtin": _builtin},
        {"shared": _utility, "only_utility": _utility},
        **kwargs,
    )


class TestLayers:
    def test_builtins_win_over_utilities(self):
        registry = _build()
        assert registry["shared"] is _builtin
        assert registry["only_utility"] is _utility

    def test_disabled_removed(self):
        registry = _build(disabled=["only_builtin"])
        assert "only_builtin" not in registry

    def test_custom_overrides(self):
        registry = _build(custom={"shared": _custom, "extra": _custom})
        assert registry["shared"] is _custom
        assert registry["extra"] is _custom

    def test_custom_can_restore_disabled_name(self):
        registry = _build(disabled=["shared"], custom={"shared": _custom})
        assert registry["shared"] is _custom

    def test_denylist_beats_custom(self):
        registry = _build(custom={"extra": _custom}, denylist=["extra"])
        with pytest.raises(DenylistedFunctionError, match="function 'extra' is not allowed"):
            registry["extra"]("x")

    def test_sensitive_functions_always_denied(self):
        registry = _build()
        assert {"env", "expandenv"} <= set(registry.denied)
        with pytest.raises(DenylistedFunctionError, match="security risk"):
            registry["env"]("HOME")

    def test_names_sorted(self):
        names = _build().names()
        assert names == sorted(names)


class TestInstall:
    def test_global_and_filter(self):
        env = SandboxedEnvironment()
        _build().install(env)
        assert env.from_string("{{ only_builtin('a') }}").render() == "builtin:a"
        assert env.from_string("{{ 'a' | only_utility }}").render() == "utility:a"

    def test_disabled_engine_filter_removed(self):
        env = SandboxedEnvironment()
        _build(disabled=["upper"]).install(env)
        assert "upper" not in env.filters
