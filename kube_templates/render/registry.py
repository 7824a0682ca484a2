"""Layered construction of the template function table.

Layers are applied in a fixed order; later layers win:

1. built-ins (lookups, encoding, type coercion, indentation)
2. utility functions, only for names no built-in already claims
3. names disabled in the resolver config are removed
4. caller-supplied custom functions override anything so far
5. denylisted names are replaced by functions that always fail

The denylist comes last so a custom function cannot re-enable a denied
name.  ``env`` and ``expandenv`` are always denylisted.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping

from jinja2 import Environment

from kube_templates.errors import DenylistedFunctionError
from kube_templates.render.utilities import SENSITIVE_FUNCTIONS

logger = logging.getLogger(__name__)

TemplateFunction = Callable[..., Any]


def _denied(name: str) -> TemplateFunction:
    security_risk = name in SENSITIVE_FUNCTIONS

    def denied(*_args: Any, **_kwargs: Any) -> Any:
        raise DenylistedFunctionError(name, security_risk=security_risk)

    denied.__name__ = f"denied_{name}"
    return denied


class FunctionRegistry:
    """Name to callable table built in layers."""

    def __init__(self) -> None:
        self._functions: Dict[str, TemplateFunction] = {}
        self._disabled: List[str] = []
        self._denied: List[str] = []

    @classmethod
    def build(
        cls,
        builtins: Mapping[str, TemplateFunction],
        utilities: Mapping[str, TemplateFunction],
        *,
        disabled: Iterable[str] = (),
        custom: Mapping[str, TemplateFunction] | None = None,
        denylist: Iterable[str] = (),
    ) -> "FunctionRegistry":
        """Apply every layer in order and return the finished registry."""
        registry = cls()
        registry.add_builtins(builtins)
        registry.add_utilities(utilities)
        registry.disable(disabled)
        registry.override(custom or {})
        registry.deny(list(denylist) + list(SENSITIVE_FUNCTIONS))
        return registry

    # -- layers -----------------------------------------------------------

    def add_builtins(self, functions: Mapping[str, TemplateFunction]) -> None:
        self._functions.update(functions)

    def add_utilities(self, functions: Mapping[str, TemplateFunction]) -> None:
        for name, fn in functions.items():
            self._functions.setdefault(name, fn)

    def disable(self, names: Iterable[str]) -> None:
        for name in names:
            self._functions.pop(name, None)
            self._disabled.append(name)

    def override(self, functions: Mapping[str, TemplateFunction]) -> None:
        self._functions.update(functions)

    def deny(self, names: Iterable[str]) -> None:
        for name in names:
            self._functions[name] = _denied(name)
            if name not in self._denied:
                self._denied.append(name)

    # -- access -----------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __getitem__(self, name: str) -> TemplateFunction:
        return self._functions[name]

    def names(self) -> List[str]:
        return sorted(self._functions)

    @property
    def denied(self) -> List[str]:
        return list(self._denied)

    def install(self, env: Environment) -> None:
        """Expose every function as both a global and a filter.

        Disabled names are also removed from the engine's own globals and
        filters so they cannot resurface under the same name.
        """
        for name in self._disabled:
            if name not in self._functions:
                env.globals.pop(name, None)
                env.filters.pop(name, None)
        for name, fn in self._functions.items():
            env.globals[name] = fn
            env.filters[name] = fn
        logger.debug(
            "Installed %d template functions (%d denylisted)", len(self._functions), len(self._denied)
        )
