"""Kubernetes label selector parsing and matching.

Supports the set-based and equality-based grammar accepted by the API
server::

    app=web            equality (also ``==``)
    tier!=cache        inequality
    env in (a, b)      set membership
    env notin (a, b)   set exclusion
    release            key exists
    !release           key does not exist

Requirements are comma separated and AND-ed together.  The canonical
string form sorts requirements by key so equivalent selectors compare and
cache identically.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from kube_templates.errors import InvalidInputError

_KEY_RE = re.compile(
    r"^(?:[a-z0-9](?:[-a-z0-9]*[a-z0-9])?(?:\.[a-z0-9](?:[-a-z0-9]*[a-z0-9])?)*/)?"
    r"[A-Za-z0-9](?:[-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$"
)
_VALUE_RE = re.compile(r"^(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?)?$")

_SET_RE = re.compile(r"^(?P<key>\S+)\s+(?P<op>in|notin)\s+\((?P<values>[^)]*)\)$")
_EQ_RE = re.compile(r"^(?P<key>[^=!\s]+)\s*(?P<op>==|=|!=)\s*(?P<value>\S*)$")


@dataclass(frozen=True)
class Requirement:
    """A single selector clause."""

    key: str
    operator: str
    values: Tuple[str, ...] = ()

    def matches(self, labels: Dict[str, str]) -> bool:
        if self.operator == "exists":
            return self.key in labels
        if self.operator == "!":
            return self.key not in labels
        if self.operator in ("=", "in"):
            return self.key in labels and labels[self.key] in self.values
        # "!=" and "notin" match when the key is absent too
        return self.key not in labels or labels[self.key] not in self.values

    def __str__(self) -> str:
        if self.operator == "exists":
            return self.key
        if self.operator == "!":
            return f"!{self.key}"
        if self.operator in ("=", "!="):
            return f"{self.key}{self.operator}{self.values[0]}"
        return f"{self.key} {self.operator} ({','.join(self.values)})"


@dataclass(frozen=True)
class LabelSelector:
    """An AND of :class:`Requirement` clauses.  Empty matches everything."""

    requirements: Tuple[Requirement, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: str) -> "LabelSelector":
        """Parse *text*, raising :class:`InvalidInputError` when malformed."""
        requirements: List[Requirement] = []
        for clause in _split_clauses(text):
            requirements.append(_parse_clause(clause))
        requirements.sort(key=lambda r: (r.key, r.operator, r.values))
        return cls(tuple(requirements))

    @classmethod
    def from_parts(cls, parts: Iterable[str]) -> "LabelSelector":
        """Parse several selector strings as one (joined with commas)."""
        return cls.parse(",".join(p for p in parts if p))

    @property
    def empty(self) -> bool:
        return not self.requirements

    def matches(self, labels: Dict[str, str]) -> bool:
        return all(r.matches(labels) for r in self.requirements)

    def __str__(self) -> str:
        return ",".join(str(r) for r in self.requirements)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _split_clauses(text: str) -> List[str]:
    """Split on commas that are not inside a ``( ... )`` value set."""
    clauses: List[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise InvalidInputError(f"unable to parse label selector {text!r}: unbalanced ')'")
        if ch == "," and depth == 0:
            clauses.append(current)
            current = ""
            continue
        current += ch
    if depth != 0:
        raise InvalidInputError(f"unable to parse label selector {text!r}: unbalanced '('")
    clauses.append(current)
    return [c.strip() for c in clauses if c.strip()]


def _check_key(key: str, clause: str) -> None:
    if not _KEY_RE.match(key):
        raise InvalidInputError(
            f"unable to parse label selector clause {clause!r}: invalid label key {key!r}"
        )


def _check_value(value: str, clause: str) -> None:
    if not _VALUE_RE.match(value):
        raise InvalidInputError(
            f"unable to parse label selector clause {clause!r}: invalid label value {value!r}"
        )


def _parse_clause(clause: str) -> Requirement:
    m = _SET_RE.match(clause)
    if m:
        key = m.group("key")
        _check_key(key, clause)
        values = tuple(sorted(v.strip() for v in m.group("values").split(",") if v.strip()))
        if not values:
            raise InvalidInputError(
                f"unable to parse label selector clause {clause!r}: empty value set"
            )
        for v in values:
            _check_value(v, clause)
        return Requirement(key, m.group("op"), values)

    m = _EQ_RE.match(clause)
    if m:
        key = m.group("key")
        _check_key(key, clause)
        value = m.group("value")
        _check_value(value, clause)
        op = "!=" if m.group("op") == "!=" else "="
        return Requirement(key, op, (value,))

    if clause.startswith("!"):
        key = clause[1:].strip()
        _check_key(key, clause)
        return Requirement(key, "!")

    _check_key(clause, clause)
    return Requirement(clause, "exists")
