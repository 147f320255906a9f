"""
Tests for policy models and the policy loader.
"""

import sys
import types

import pytest
from unittest.mock import MagicMock

from shared.errors import ValidationError
from service_rebac.app.policy import load_policies
from service_rebac.app.policy.models import (
    GLOBAL_RESOURCE_ID, CheckResult, MultiActionCheck, NamedCheckSpec, NamedChecksRequest,
    PermissionCheckRequest, ResourceDefinition, Role, SingleActionCheck, coerce_named_check,
)


def always(user_id, resource_id):
    return True


class TestResourceDefinition:
    """Test cases for registry models."""

    def test_roles_keep_declared_order(self):
        """Test roles are stored as an ordered tuple."""
        definition = ResourceDefinition(
            actions=["read", "write"],
            roles=[Role("owner", ["read", "write"], always), Role("viewer", ["read"], always)],
        )

        assert [role.name for role in definition.roles] == ["owner", "viewer"]
        assert definition.actions == frozenset({"read", "write"})
        assert definition.get_role("viewer").grants("read") is True
        assert definition.get_role("viewer").grants("write") is False
        assert definition.get_role("admin") is None

    def test_duplicate_role_rejected(self):
        """Test role names are unique within a resource type."""
        with pytest.raises(ValueError, match="Duplicate role 'owner'"):
            ResourceDefinition(
                actions={"read"},
                roles=[Role("owner", {"read"}, always), Role("owner", {"read"}, always)],
            )

    def test_definitions_are_frozen(self):
        """Test registry entries cannot be mutated."""
        definition = ResourceDefinition(actions={"read"})

        with pytest.raises(AttributeError):
            definition.actions = frozenset({"write"})


class TestNamedCheckModels:
    """Test cases for named-check variants."""

    def test_multi_action_requires_actions(self):
        """Test an empty action list is rejected."""
        with pytest.raises(ValueError):
            MultiActionCheck("project", ())

    def test_coerce_single(self):
        """Test an action key selects the single variant."""
        check = coerce_named_check({"resourceType": "project", "action": "read", "resourceId": "p1"})

        assert check == SingleActionCheck("project", "read", "p1")

    def test_coerce_multi(self):
        """Test an actions key selects the multi variant."""
        check = coerce_named_check({"resource_type": "project", "actions": ["read", "update"]})

        assert check == MultiActionCheck("project", ("read", "update"), None)

    def test_coerce_nothing(self):
        """Test entries without an action are not coerced."""
        assert coerce_named_check({"resourceType": "project"}) is None
        assert coerce_named_check({"resourceType": "project", "actions": []}) is None

    def test_multi_action_rejects_string(self):
        """Test a bare string is not split into single-letter actions."""
        with pytest.raises(ValueError):
            MultiActionCheck("project", "read")

    def test_coerce_malformed_actions(self):
        """Test non-list action values are not coerced."""
        assert coerce_named_check({"resourceType": "project", "actions": "read"}) is None
        assert coerce_named_check({"resourceType": "project", "actions": {"read": True}}) is None
        assert coerce_named_check({"resourceType": "project", "action": ["read"]}) is None

    def test_coerce_none(self):
        """Test a missing entry is not coerced."""
        assert coerce_named_check(None) is None

    def test_coerce_passes_variants_through(self):
        """Test typed checks are returned unchanged."""
        check = SingleActionCheck("project", "read")

        assert coerce_named_check(check) is check


class TestWireModels:
    """Test cases for request and response models."""

    def test_camel_case_aliases(self):
        """Test requests accept the camelCase wire names."""
        request = PermissionCheckRequest(**{"action": "read", "resourceType": "project", "resourceId": "p1"})

        assert request.resource_type == "project"
        assert request.resource_id == "p1"

    def test_resource_id_defaults_to_sentinel(self):
        """Test an omitted resource id becomes the global sentinel."""
        request = PermissionCheckRequest(action="read", resource_type="project")

        assert request.resource_id == GLOBAL_RESOURCE_ID

    def test_named_spec_to_check(self):
        """Test wire specs convert to their variants."""
        request = NamedChecksRequest(**{"checks": {
            "single": {"resourceType": "project", "action": "read"},
            "multi": {"resourceType": "project", "actions": ["read", "update"], "resourceId": "p1"},
            "empty": {"resourceType": "project"},
        }})

        assert request.checks["single"].to_check() == SingleActionCheck("project", "read", GLOBAL_RESOURCE_ID)
        assert request.checks["multi"].to_check() == MultiActionCheck("project", ("read", "update"), "p1")
        assert request.checks["empty"].to_check() is None

    def test_named_spec_is_a_model(self):
        """Test named specs are plain pydantic models."""
        spec = NamedCheckSpec(resource_type="project", action="read")

        assert spec.model_dump(by_alias=True)["resourceType"] == "project"

    def test_check_result_round_trip(self):
        """Test results load from the wire shape."""
        result = CheckResult.from_dict({"allowed": True, "message": "ok"})

        assert result == CheckResult(True, "ok")
        assert result.to_dict() == {"allowed": True, "message": "ok"}


class TestLoadPolicies:
    """Test cases for load_policies."""

    @pytest.fixture
    def policy_module(self, monkeypatch):
        """Register an importable module holding policies."""
        module = types.ModuleType("rebac_sample_policies")
        module.POLICIES = {"project": ResourceDefinition(actions={"read"}, roles=[Role("viewer", {"read"}, always)])}
        module.build_policies = MagicMock(return_value=module.POLICIES)
        module.NOT_POLICIES = {"project": {"actions": ["read"]}}
        monkeypatch.setitem(sys.modules, "rebac_sample_policies", module)
        return module

    def test_load_mapping(self, policy_module):
        """Test a module attribute is loaded as-is."""
        assert load_policies("rebac_sample_policies:POLICIES") is policy_module.POLICIES

    def test_load_factory(self, policy_module):
        """Test callables are invoked to build the registry."""
        policies = load_policies("rebac_sample_policies:build_policies")

        assert policies is policy_module.POLICIES
        policy_module.build_policies.assert_called_once_with()

    @pytest.mark.parametrize("path", ["rebac_sample_policies", ":POLICIES", "rebac_sample_policies:"])
    def test_malformed_path(self, policy_module, path):
        """Test paths must name a module and an attribute."""
        with pytest.raises(ValidationError):
            load_policies(path)

    def test_missing_attribute(self, policy_module):
        """Test unknown attributes are reported."""
        with pytest.raises(ValidationError, match="has no attribute 'MISSING'"):
            load_policies("rebac_sample_policies:MISSING")

    def test_wrong_shape(self, policy_module):
        """Test values must be ResourceDefinition objects."""
        with pytest.raises(ValidationError):
            load_policies("rebac_sample_policies:NOT_POLICIES")
