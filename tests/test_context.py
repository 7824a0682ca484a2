"""Tests for kube_templates.config.context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

import pytest
from pydantic import BaseModel

from kube_templates.config.context import validate_context
from kube_templates.errors import InvalidContextError


@dataclass
class ClusterInfo:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    zones: List[str] = field(default_factory=list)


class PolicyInfo(BaseModel):
    name: str
    replicas: int = 1


class TestValidateContext:
    def test_none_is_empty(self):
        assert validate_context(None) == {}

    def test_mapping(self):
        ctx = {"name": "c1", "nested": {"a": [1, 2.5, True, None]}}
        assert validate_context(ctx) == ctx

    def test_dataclass_flattened(self):
        ctx = validate_context(ClusterInfo("c1", {"env": "prod"}, ["a"]))
        assert ctx == {"name": "c1", "labels": {"env": "prod"}, "zones": ["a"]}

    def test_pydantic_model_flattened(self):
        assert validate_context(PolicyInfo(name="p")) == {"name": "p", "replicas": 1}

    def test_nested_records(self):
        ctx = validate_context({"cluster": ClusterInfo("c1"), "policy": PolicyInfo(name="p")})
        assert set(ctx) == {"cluster", "policy"}

    @pytest.mark.parametrize("value", ["text", 3, [1, 2]])
    def test_non_record_top_level(self, value):
        with pytest.raises(InvalidContextError, match="must be a record"):
            validate_context(value)

    def test_callable_rejected(self):
        with pytest.raises(InvalidContextError, match="function"):
            validate_context({"fn": lambda: None})

    def test_bytes_rejected(self):
        with pytest.raises(InvalidContextError) as exc_info:
            validate_context({"raw": b"x"})
        assert exc_info.value.kind == "bytes"

    def test_non_primitive_key_rejected(self):
        with pytest.raises(InvalidContextError):
            validate_context({"m": {("a", "b"): 1}})
