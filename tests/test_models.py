"""Tests for kube_templates.config.models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kube_templates.config.models import (
    DEFAULT_START_DELIM,
    DEFAULT_STOP_DELIM,
    HUB_START_DELIM,
    HUB_STOP_DELIM,
    ClusterScopedObjectIdentifier,
    Config,
    EncryptionConfig,
    ResolveOptions,
)
from kube_templates.errors import TemplateValidationError


class TestConfig:
    def test_default_delimiters(self):
        assert Config().delimiters() == (DEFAULT_START_DELIM, DEFAULT_STOP_DELIM)

    def test_hub_delimiters(self):
        assert Config.for_hub().delimiters() == (HUB_START_DELIM, HUB_STOP_DELIM)

    def test_half_set_delimiters(self):
        with pytest.raises(TemplateValidationError, match="cannot be set independently"):
            Config(start_delim="{{").delimiters()

    def test_negative_indentation_rejected(self):
        with pytest.raises(ValidationError):
            Config(additional_indentation=-1)

    def test_frozen(self):
        cfg = Config()
        with pytest.raises(ValidationError):
            cfg.skip_batch_management = True


class TestEncryptionConfig:
    def test_disabled_by_default(self):
        assert not EncryptionConfig().enabled

    def test_enabled_by_either_flag(self):
        assert EncryptionConfig(decryption_enabled=True).enabled
        assert EncryptionConfig(encryption_enabled=True).enabled

    def test_concurrency_bounds(self):
        with pytest.raises(ValidationError):
            EncryptionConfig(decryption_concurrency=256)


class TestClusterScopedObjectIdentifier:
    def test_wildcards(self):
        entry = ClusterScopedObjectIdentifier()
        assert entry.matches("", "Namespace", "default")

    def test_exact_fields(self):
        entry = ClusterScopedObjectIdentifier(group="", kind="Namespace", name="default")
        assert entry.matches("", "Namespace", "default")
        assert not entry.matches("", "Namespace", "other")
        assert not entry.matches("", "Node", "default")


class TestResolveOptions:
    def test_defaults(self):
        opts = ResolveOptions()
        assert opts.lookup_namespace == ""
        assert opts.watcher is None
        assert not opts.input_is_yaml

    def test_allow_list_tuples(self):
        opts = ResolveOptions(cluster_scoped_allow_list=[("", "Namespace", "*")])
        assert opts.cluster_scoped_allow_list == [
            ClusterScopedObjectIdentifier(group="", kind="Namespace", name="*")
        ]

    def test_custom_functions_accept_callables(self):
        opts = ResolveOptions(custom_functions={"greet": lambda name: f"hi {name}"})
        assert opts.custom_functions["greet"]("x") == "hi x"
