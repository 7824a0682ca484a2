"""Tests for kube_templates.client.local."""

from __future__ import annotations

import pytest

from kube_templates.client.local import InMemoryCluster
from kube_templates.client.selectors import LabelSelector
from kube_templates.client.types import GroupVersionKind, ScopedGVR
from kube_templates.errors import InvalidInputError, ObjectNotFoundError

CONFIGMAPS = ScopedGVR("", "v1", "configmaps", True)
NAMESPACES = ScopedGVR("", "v1", "namespaces", False)
SECRETS = ScopedGVR("", "v1", "secrets", True)

MANIFESTS = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: app
  namespace: default
  labels:
    app: web
data:
  color: blue
---
apiVersion: v1
kind: List
items:
  - apiVersion: v1
    kind: ConfigMap
    metadata:
      name: other
      namespace: kube-system
  - apiVersion: v1
    kind: Namespace
    metadata:
      name: default
"""


class TestInMemoryCluster:
    def test_from_yaml_flattens_lists(self):
        cluster = InMemoryCluster.from_yaml(MANIFESTS)
        assert cluster.get(CONFIGMAPS, "default", "app")["data"] == {"color": "blue"}
        assert cluster.get(CONFIGMAPS, "kube-system", "other")["metadata"]["name"] == "other"
        assert cluster.get(NAMESPACES, "", "default")["kind"] == "Namespace"

    def test_from_yaml_rejects_scalars(self):
        with pytest.raises(InvalidInputError):
            InMemoryCluster.from_yaml("- a\n- b\n")

    def test_get_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            InMemoryCluster().get(CONFIGMAPS, "default", "missing")

    def test_get_returns_copy(self):
        cluster = InMemoryCluster.from_yaml(MANIFESTS)
        cluster.get(CONFIGMAPS, "default", "app")["data"]["color"] = "red"
        assert cluster.get(CONFIGMAPS, "default", "app")["data"]["color"] == "blue"

    def test_list_namespace_and_selector(self):
        cluster = InMemoryCluster.from_yaml(MANIFESTS)
        everything = cluster.list(CONFIGMAPS, "", LabelSelector())
        assert [o["metadata"]["name"] for o in everything] == ["app", "other"]
        in_default = cluster.list(CONFIGMAPS, "default", LabelSelector())
        assert [o["metadata"]["name"] for o in in_default] == ["app"]
        labelled = cluster.list(CONFIGMAPS, "", LabelSelector.parse("app=web"))
        assert [o["metadata"]["name"] for o in labelled] == ["app"]

    def test_secret_string_data_folded(self):
        cluster = InMemoryCluster(
            [
                {
                    "apiVersion": "v1",
                    "kind": "Secret",
                    "metadata": {"name": "s", "namespace": "default"},
                    "stringData": {"key": "testdata"},
                }
            ]
        )
        secret = cluster.get(SECRETS, "default", "s")
        assert secret["data"] == {"key": "dGVzdGRhdGE="}
        assert "stringData" not in secret

    def test_unknown_kind_registered(self):
        cluster = InMemoryCluster(
            [{"apiVersion": "example.com/v1", "kind": "Widget", "metadata": {"name": "w", "namespace": "n"}}]
        )
        (res,) = cluster.server_resources_for_group_version("example.com/v1")
        assert res.name == "widgets"
        assert res.namespaced

    def test_add_requires_name(self):
        with pytest.raises(InvalidInputError):
            InMemoryCluster().add({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {}})

    def test_delete(self):
        cluster = InMemoryCluster.from_yaml(MANIFESTS)
        cluster.delete(GroupVersionKind("", "v1", "ConfigMap"), "default", "app")
        with pytest.raises(ObjectNotFoundError):
            cluster.get(CONFIGMAPS, "default", "app")

    def test_discovery_for_core_group(self):
        kinds = {r.kind for r in InMemoryCluster().server_resources_for_group_version("v1")}
        assert {"ConfigMap", "Secret", "Namespace", "Node"} <= kinds
