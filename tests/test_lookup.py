"""Tests for kube_templates.lookup.functions."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from kube_templates.client.cache import DiscoveryCache, ObjectCache
from kube_templates.client.local import InMemoryCluster
from kube_templates.client.types import ObjectIdentifier
from kube_templates.config.models import ClusterScopedObjectIdentifier, EncryptionConfig, ResolveOptions
from kube_templates.crypto.encryption import AESCipher
from kube_templates.errors import (
    ClusterScopedLookupRestrictedError,
    InvalidInputError,
    MissingAPIResourceError,
    ObjectNotFoundError,
    ProtectNotEnabledError,
    RestrictedNamespaceError,
)
from kube_templates.lookup.functions import LookupFunctions, get_namespace, on_allowlist
from kube_templates.state.session import ResolutionSession

KEY = b"A" * 32
IV = b"I" * 16

OBJECTS = [
    {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": "testsecret", "namespace": "testns"},
        "data": {"secretkey1": "c2VjcmV0a2V5MVZhbA==", "secretkey2": "c2VjcmV0a2V5MlZhbA=="},
    },
    {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "testconfigmap", "namespace": "testns", "labels": {"app": "web"}},
        "data": {"cmkey1": "cmkey1Val"},
    },
    {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": "testns"},
    },
    {
        "apiVersion": "cluster.open-cluster-management.io/v1alpha1",
        "kind": "ClusterClaim",
        "metadata": {"name": "env"},
        "spec": {"value": "dev"},
    },
    {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {"name": "master1", "labels": {"node-role.kubernetes.io/master": ""}},
    },
    {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {
            "name": "mixed1",
            "labels": {
                "node-role.kubernetes.io/master": "",
                "node-role.kubernetes.io/infra": "",
            },
        },
    },
    {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {
            "name": "worker1",
            "labels": {
                "node-role.kubernetes.io/master": "",
                "node-role.kubernetes.io/worker": "",
            },
        },
    },
]


def _lookups(options=None, session=None, cipher=None, local_resources=()):
    cluster = InMemoryCluster(OBJECTS)
    session = session or ResolutionSession(object_cache=ObjectCache())
    return LookupFunctions(
        options or ResolveOptions(),
        session,
        dynamic_client=cluster,
        discovery=DiscoveryCache(cluster),
        local_resources=local_resources,
        cipher=cipher,
    )


# ===================================================================
# Helpers
# ===================================================================


class TestGetNamespace:
    def test_no_restriction(self):
        assert get_namespace("lookup", "any", "") == "any"

    def test_empty_defaults_to_restriction(self):
        assert get_namespace("lookup", "", "testns") == "testns"

    def test_matching(self):
        assert get_namespace("lookup", "testns", "testns") == "testns"

    def test_mismatch_raises(self):
        with pytest.raises(RestrictedNamespaceError, match="fromSecret is restricted to testns"):
            get_namespace("fromSecret", "other", "testns")


class TestOnAllowlist:
    def test_wildcard_entry(self):
        assert on_allowlist([ClusterScopedObjectIdentifier()], "", "Node", "n1")

    def test_no_match(self):
        entry = ClusterScopedObjectIdentifier(group="", kind="Namespace", name="testns")
        assert not on_allowlist([entry], "", "Namespace", "other")

    def test_empty_list(self):
        assert not on_allowlist([], "", "Namespace", "testns")


# ===================================================================
# lookup
# ===================================================================


class TestLookup:
    def test_named_object(self):
        fns = _lookups()
        cm = fns.lookup("v1", "ConfigMap", "testns", "testconfigmap")
        assert cm["data"] == {"cmkey1": "cmkey1Val"}
        assert fns.session.referenced_objects == [
            ObjectIdentifier("", "v1", "ConfigMap", "testns", "testconfigmap")
        ]
        assert fns.session.used_resources[0].is_remote

    def test_not_found_is_empty_and_referenced(self):
        fns = _lookups()
        assert fns.lookup("v1", "ConfigMap", "testns", "later") == {}
        assert fns.session.referenced_objects[0].name == "later"
        assert not fns.session.missing_api_resource

    def test_list_with_selector(self):
        fns = _lookups()
        result = fns.lookup("v1", "ConfigMap", "testns", "", "app=web")
        assert [i["metadata"]["name"] for i in result["items"]] == ["testconfigmap"]
        assert fns.session.referenced_objects == [
            ObjectIdentifier("", "v1", "ConfigMap", "testns", "testconfigmap")
        ]

    def test_missing_api_resource_is_not_fatal(self):
        fns = _lookups()
        assert fns.lookup("v1", "NotARealResource", "ns", "obj") == {}
        assert fns.session.missing_api_resource

    def test_secret_marks_sensitive(self):
        fns = _lookups()
        fns.lookup("v1", "Secret", "testns", "testsecret")
        assert fns.session.has_sensitive_data

    def test_requires_api_version_and_kind(self):
        with pytest.raises(InvalidInputError):
            _lookups().lookup("", "ConfigMap", "testns", "x")

    def test_repeated_lookup_uses_object_cache(self):
        cluster = MagicMock(wraps=InMemoryCluster(OBJECTS))
        fns = LookupFunctions(
            ResolveOptions(),
            ResolutionSession(object_cache=ObjectCache()),
            dynamic_client=cluster,
            discovery=DiscoveryCache(InMemoryCluster()),
        )
        fns.lookup("v1", "ConfigMap", "testns", "testconfigmap")
        fns.lookup("v1", "ConfigMap", "testns", "testconfigmap")
        assert cluster.get.call_count == 1


class TestRestrictions:
    def test_namespace_restriction(self):
        fns = _lookups(ResolveOptions(lookup_namespace="testns"))
        with pytest.raises(RestrictedNamespaceError):
            fns.lookup("v1", "ConfigMap", "default", "testconfigmap")

    def test_namespace_defaults_to_restriction(self):
        fns = _lookups(ResolveOptions(lookup_namespace="testns"))
        assert fns.from_config_map("", "testconfigmap", "cmkey1") == "cmkey1Val"

    def test_cluster_scoped_rejected_when_restricted(self):
        fns = _lookups(ResolveOptions(lookup_namespace="testns"))
        with pytest.raises(ClusterScopedLookupRestrictedError, match="Namespace/testns"):
            fns.lookup("v1", "Namespace", "", "testns")

    def test_cluster_scoped_allowlisted(self):
        options = ResolveOptions(
            lookup_namespace="testns", cluster_scoped_allow_list=[("", "Namespace", "*")]
        )
        ns = _lookups(options).lookup("v1", "Namespace", "", "testns")
        assert ns["metadata"]["name"] == "testns"

    def test_cluster_scoped_without_restriction(self):
        ns = _lookups().lookup("v1", "Namespace", "", "testns")
        assert ns["kind"] == "Namespace"


# ===================================================================
# Secrets, ConfigMaps, ClusterClaims
# ===================================================================


class TestSecretAndConfigMap:
    def test_from_secret_returns_encoded_value(self):
        fns = _lookups()
        assert fns.from_secret("testns", "testsecret", "secretkey1") == "c2VjcmV0a2V5MVZhbA=="
        assert fns.session.has_sensitive_data

    def test_from_secret_missing_key(self):
        assert _lookups().from_secret("testns", "testsecret", "nope") == ""

    def test_from_secret_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            _lookups().from_secret("testns", "nope", "k")

    def test_copy_secret_data(self):
        data = json.loads(_lookups().copy_secret_data("testns", "testsecret"))
        assert data == {
            "secretkey1": "c2VjcmV0a2V5MVZhbA==",
            "secretkey2": "c2VjcmV0a2V5MlZhbA==",
        }

    def test_from_config_map(self):
        assert _lookups().from_config_map("testns", "testconfigmap", "cmkey1") == "cmkey1Val"

    def test_copy_config_map_data(self):
        data = json.loads(_lookups().copy_config_map_data("testns", "testconfigmap"))
        assert data == {"cmkey1": "cmkey1Val"}

    def test_missing_api_resource_marks_and_raises(self):
        cluster = InMemoryCluster(resources=[])
        fns = LookupFunctions(
            ResolveOptions(),
            ResolutionSession(),
            dynamic_client=cluster,
            discovery=DiscoveryCache(cluster),
        )
        with pytest.raises(MissingAPIResourceError):
            fns.from_config_map("testns", "testconfigmap", "cmkey1")
        assert fns.session.missing_api_resource


class TestClusterClaims:
    def test_from_cluster_claim(self):
        assert _lookups().from_cluster_claim("env") == "dev"

    def test_from_cluster_claim_missing(self):
        with pytest.raises(ObjectNotFoundError):
            _lookups().from_cluster_claim("nope")

    def test_lookup_cluster_claim_missing(self):
        assert _lookups().lookup_cluster_claim("nope") == ""


class TestNodes:
    def test_exact_roles(self):
        nodes = _lookups().get_nodes_with_exact_roles("master")
        assert [n["metadata"]["name"] for n in nodes["items"]] == ["master1", "worker1"]

    def test_exact_multiple_roles(self):
        nodes = _lookups().get_nodes_with_exact_roles("master", "infra")
        assert [n["metadata"]["name"] for n in nodes["items"]] == ["mixed1"]

    def test_has_nodes(self):
        fns = _lookups()
        assert fns.has_nodes_with_exact_roles("infra", "master")
        assert not fns.has_nodes_with_exact_roles("storage")

    def test_requires_role(self):
        with pytest.raises(InvalidInputError):
            _lookups().get_nodes_with_exact_roles(" ")


# ===================================================================
# Local resources
# ===================================================================


class TestLocalResources:
    LOCAL = [
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "testconfigmap", "namespace": "testns"},
            "data": {"cmkey1": "local"},
        }
    ]

    def test_local_wins(self):
        fns = _lookups(local_resources=self.LOCAL)
        assert fns.from_config_map("testns", "testconfigmap", "cmkey1") == "local"
        (used,) = fns.session.used_resources
        assert not used.is_remote

    def test_falls_back_to_cluster(self):
        fns = _lookups(local_resources=self.LOCAL)
        assert fns.from_secret("testns", "testsecret", "secretkey1") == "c2VjcmV0a2V5MVZhbA=="


# ===================================================================
# Encryption
# ===================================================================


class TestEncryptionFunctions:
    ENCRYPTION = EncryptionConfig(encryption_enabled=True, aes_key=KEY, initialization_vector=IV)

    def _encrypting(self):
        options = ResolveOptions(encryption=self.ENCRYPTION)
        return _lookups(options, cipher=AESCipher(KEY, IV))

    def test_protect_disabled(self):
        with pytest.raises(ProtectNotEnabledError):
            _lookups().functions()["protect"]("x")

    def test_protect(self):
        assert self._encrypting().protect("Raleigh") == "$ocm_encrypted:Eud/p3S7TvuP03S9fuNV+w=="

    def test_from_secret_swapped_for_protected(self):
        table = self._encrypting().functions()
        value = table["fromSecret"]("testns", "testsecret", "secretkey1")
        assert value.startswith("$ocm_encrypted:")
        token = value[len("$ocm_encrypted:"):]
        assert AESCipher(KEY, IV).decrypt(token) == "c2VjcmV0a2V5MVZhbA=="

    def test_copy_secret_data_protected(self):
        table = self._encrypting().functions()
        data = json.loads(table["copySecretData"]("testns", "testsecret"))
        assert all(v.startswith("$ocm_encrypted:") for v in data.values())

    def test_decrypt_uses_session_and_escapes_new_lines(self):
        options = ResolveOptions(
            encryption=EncryptionConfig(decryption_enabled=True, aes_key=KEY, initialization_vector=IV)
        )
        session = ResolutionSession(decrypted={"tok": "Hello\nRaleigh"})
        fns = _lookups(options, session=session, cipher=AESCipher(KEY, IV))
        assert fns.functions()["decrypt"]("tok") == "Hello\\nRaleigh"
        assert session.has_sensitive_data

    def test_decrypt_absent_without_decryption(self):
        assert "decrypt" not in self._encrypting().functions()
