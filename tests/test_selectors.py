"""Tests for kube_templates.client.selectors."""

from __future__ import annotations

import pytest

from kube_templates.client.selectors import LabelSelector, Requirement
from kube_templates.errors import InvalidInputError


# ===================================================================
# parse
# ===================================================================


class TestParse:
    def test_empty_selector(self):
        sel = LabelSelector.parse("")
        assert sel.empty
        assert str(sel) == ""

    def test_equality_forms(self):
        assert LabelSelector.parse("app=web").requirements == (Requirement("app", "=", ("web",)),)
        assert LabelSelector.parse("app==web") == LabelSelector.parse("app=web")

    def test_inequality(self):
        (req,) = LabelSelector.parse("tier!=cache").requirements
        assert req.operator == "!="

    def test_set_based(self):
        (req,) = LabelSelector.parse("env in (prod, dev)").requirements
        assert req.operator == "in"
        assert req.values == ("dev", "prod")

    def test_exists_and_not_exists(self):
        sel = LabelSelector.parse("release,!canary")
        ops = {r.key: r.operator for r in sel.requirements}
        assert ops == {"release": "exists", "canary": "!"}

    def test_canonical_order(self):
        a = LabelSelector.parse("tier!=cache, app=web")
        b = LabelSelector.parse("app=web,tier!=cache")
        assert a == b
        assert str(a) == "app=web,tier!=cache"

    def test_prefixed_key(self):
        sel = LabelSelector.parse("node-role.kubernetes.io/master")
        assert sel.requirements[0].key == "node-role.kubernetes.io/master"

    def test_empty_value_allowed(self):
        assert LabelSelector.parse("app=").requirements[0].values == ("",)

    def test_from_parts_joins(self):
        sel = LabelSelector.from_parts(["app=web", "", "env in (prod)"])
        assert str(sel) == "app=web,env in (prod)"

    @pytest.mark.parametrize(
        "text",
        ["=web", "env in ()", "env in (a", "a)b", "bad key=x", "app=web!"],
    )
    def test_malformed_raises(self, text):
        with pytest.raises(InvalidInputError, match="unable to parse label selector"):
            LabelSelector.parse(text)


# ===================================================================
# matches
# ===================================================================


class TestMatches:
    LABELS = {"app": "web", "env": "prod"}

    def test_empty_matches_everything(self):
        assert LabelSelector.parse("").matches({})

    def test_equality(self):
        assert LabelSelector.parse("app=web").matches(self.LABELS)
        assert not LabelSelector.parse("app=db").matches(self.LABELS)

    def test_inequality_matches_missing_key(self):
        assert LabelSelector.parse("tier!=cache").matches(self.LABELS)

    def test_in_and_notin(self):
        assert LabelSelector.parse("env in (prod,dev)").matches(self.LABELS)
        assert not LabelSelector.parse("env notin (prod)").matches(self.LABELS)
        assert LabelSelector.parse("tier notin (cache)").matches(self.LABELS)

    def test_exists(self):
        assert LabelSelector.parse("app").matches(self.LABELS)
        assert not LabelSelector.parse("!app").matches(self.LABELS)

    def test_requirements_are_anded(self):
        assert LabelSelector.parse("app=web,env=prod").matches(self.LABELS)
        assert not LabelSelector.parse("app=web,env=dev").matches(self.LABELS)
