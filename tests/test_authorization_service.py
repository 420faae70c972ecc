"""Tests for role resolution and authorization checks."""

from itertools import product
from types import SimpleNamespace

import pytest

from access_core.core.exceptions import PermissionDeniedError
from access_core.services.authorization_service import Caller


def subject(role_pointer=None, role_name=None, id="acct-1"):
    role = SimpleNamespace(name=role_pointer) if role_pointer else None
    return SimpleNamespace(id=id, role=role, role_name=role_name)


class TestResolveRole:
    """Role resolution precedence."""

    def test_explicit_role_wins(self, authz):
        assert authz.resolve_role(subject("admin", "admin"), explicit_role="driver") == "driver"

    def test_caller_explicit_role_wins(self, authz):
        caller = Caller(account=subject("admin"), explicit_role="guest")
        assert authz.resolve_role(caller) == "guest"

    def test_pointer_wins_over_legacy_string(self, authz):
        assert authz.resolve_role(subject("admin", "employee")) == "admin"

    def test_legacy_string_used_without_pointer(self, authz):
        assert authz.resolve_role(subject(None, "driver")) == "driver"

    def test_defaults_to_guest(self, authz):
        assert authz.resolve_role(subject()) == "guest"
        assert authz.resolve_role(None) == "guest"


class TestRankAndManagement:
    """Rank ordering and the no-lateral-management rule."""

    def test_can_manage_iff_strictly_higher_rank(self, authz, directory):
        names = [d.name for d in directory.definitions()]
        for actor_role, target_role in product(names, names):
            expected = directory.rank(actor_role) > directory.rank(target_role)
            assert authz.can_manage(subject(actor_role), subject(target_role)) is expected, (
                f"{actor_role} -> {target_role}"
            )

    def test_peers_cannot_manage_each_other(self, authz):
        assert not authz.can_manage(subject("employee"), subject("employee_amexing"))
        assert not authz.can_manage(subject("employee_amexing"), subject("employee"))
        assert not authz.can_manage(subject("admin"), subject("admin"))

    def test_unknown_role_manages_nobody(self, authz):
        assert not authz.can_manage(subject("pilot"), subject("guest"))

    def test_minimum_rank(self, authz):
        assert authz.has_minimum_rank(subject("admin"), 6)
        assert not authz.has_minimum_rank(subject("client"), 6)

    def test_require_minimum_rank_raises(self, authz):
        with pytest.raises(PermissionDeniedError) as exc:
            authz.require_minimum_rank(subject("employee"), 6)
        assert exc.value.constraint == "rank"
        assert exc.value.resolved_role == "employee"
        assert "employee" not in exc.value.message

    def test_can_assign_role(self, authz):
        assert authz.can_assign_role(subject("client"), "employee")
        assert not authz.can_assign_role(subject("client"), "client")


class TestRoleAndOrganizationChecks:
    """Role membership and organization checks."""

    def test_has_any_role(self, authz):
        assert authz.has_any_role(subject("driver"), ["driver", "guest"])
        assert authz.has_any_role(subject("driver"), "driver")
        assert not authz.has_any_role(subject("driver"), ["admin"])

    def test_require_any_role_raises(self, authz):
        with pytest.raises(PermissionDeniedError) as exc:
            authz.require_any_role(subject("driver"), ["admin", "superadmin"])
        assert exc.value.constraint == "role"
        assert exc.value.required == ["admin", "superadmin"]

    def test_membership(self, authz):
        assert authz.is_member_of(subject("driver"), "amexing")
        assert not authz.is_member_of(subject("employee"), "amexing")
        with pytest.raises(PermissionDeniedError) as exc:
            authz.require_membership(subject("guest"), "client")
        assert exc.value.constraint == "organization"

    def test_validate_all_passes(self, authz):
        decision = authz.validate_all(subject("admin"), roles=["admin"], min_rank=6, organization="amexing")
        assert decision
        assert decision.resolved_role == "admin"
        assert decision.failures == []

    def test_validate_all_collects_failures(self, authz):
        decision = authz.validate_all(subject("employee"), roles=["admin"], min_rank=6, organization="amexing")
        assert not decision
        assert decision.failures == ["role", "rank", "organization"]

    def test_validate_all_without_rules_passes(self, authz):
        assert authz.validate_all(subject("guest"))
