"""Tests for access-scoped account queries."""

import pytest

from access_core.models import Account, Role
from access_core.services.query_scope import AccessScopeBuilder, Visibility, role_named


@pytest.fixture
def scopes(authz):
    return AccessScopeBuilder(authz)


@pytest.fixture
def population(make_account):
    """A small mixed population across both client companies and the operator."""
    return {
        "superadmin": make_account("superadmin"),
        "admin": make_account("admin"),
        "driver": make_account("driver"),
        "employee_amexing": make_account("employee_amexing"),
        "client_a": make_account("client", client_id="client-a"),
        "manager_a": make_account("department_manager", client_id="client-a", department_id="dept-1"),
        "employee_a1": make_account("employee", client_id="client-a", department_id="dept-1"),
        "employee_a2": make_account("employee", client_id="client-a", department_id="dept-2"),
        "inactive_a": make_account("employee", client_id="client-a", department_id="dept-1", active=False),
        "archived_a": make_account("employee", client_id="client-a", department_id="dept-1",
                                   active=False, exists=False),
        "employee_b": make_account("employee", client_id="client-b", department_id="dept-9"),
        "legacy_a": make_account("employee", client_id="client-a", department_id="dept-1", legacy_only=True),
    }


def visible_ids(db, scope):
    return {a.id for a in scope.apply(db.query(Account)).all()}


def ids(population, *keys):
    return {population[k].id for k in keys}


class TestCallerScopes:
    """Per-role visibility."""

    def test_superadmin_sees_everything_but_archived(self, db, scopes, caller_for, population):
        seen = visible_ids(db, scopes.for_caller(caller_for(population["superadmin"])))
        assert seen == {a.id for k, a in population.items() if k != "archived_a"}

    def test_admin_tier_sees_inactive(self, db, scopes, caller_for, population):
        seen = visible_ids(db, scopes.for_caller(caller_for(population["admin"])))
        assert population["inactive_a"].id in seen

    def test_admin_never_sees_superadmin(self, db, scopes, caller_for, population):
        caller = caller_for(population["admin"])
        assert population["superadmin"].id not in visible_ids(db, scopes.for_caller(caller))
        assert visible_ids(db, scopes.for_caller(caller, target_role="superadmin")) == set()

    def test_superadmin_target_role_filter(self, db, scopes, caller_for, population):
        seen = visible_ids(db, scopes.for_caller(caller_for(population["superadmin"]), target_role="driver"))
        assert seen == ids(population, "driver")

    def test_client_sees_own_company_employees_only(self, db, scopes, caller_for, population):
        seen = visible_ids(db, scopes.for_caller(caller_for(population["client_a"])))
        assert seen == ids(population, "manager_a", "employee_a1", "employee_a2", "legacy_a")

    def test_client_target_role_stays_in_company(self, db, scopes, caller_for, population, make_account):
        make_account("department_manager", client_id="client-b", department_id="dept-9")
        scope = scopes.for_caller(caller_for(population["client_a"]), target_role="department_manager")
        assert visible_ids(db, scope) == ids(population, "manager_a")

    def test_client_outside_allow_list_matches_nothing(self, db, scopes, caller_for, population):
        scope = scopes.for_caller(caller_for(population["client_a"]), target_role="admin")
        assert scope.matches_nothing
        assert visible_ids(db, scope) == set()

    def test_department_manager_sees_department_employees(self, db, scopes, caller_for, population):
        seen = visible_ids(db, scopes.for_caller(caller_for(population["manager_a"])))
        assert seen == ids(population, "employee_a1", "legacy_a")

    def test_department_manager_target_role_only_narrows(self, db, scopes, caller_for, population):
        scope = scopes.for_caller(caller_for(population["manager_a"]), target_role="client")
        assert visible_ids(db, scope) == set()

    def test_department_manager_without_department_fails_closed(
        self, db, scopes, caller_for, make_account, population,
    ):
        manager = make_account("department_manager", client_id="client-a")
        scope = scopes.for_caller(caller_for(manager))
        assert scope.matches_nothing
        assert visible_ids(db, scope) == set()

    @pytest.mark.parametrize("role_key", ["driver", "employee_amexing", "employee_b"])
    def test_other_roles_see_only_themselves(self, db, scopes, caller_for, population, role_key):
        seen = visible_ids(db, scopes.for_caller(caller_for(population[role_key])))
        assert seen == ids(population, role_key)

    def test_compliance_visibility_includes_archived(self, db, scopes, caller_for, population):
        scope = scopes.for_caller(caller_for(population["superadmin"]), visibility=Visibility.COMPLIANCE)
        assert population["archived_a"].id in visible_ids(db, scope)

    def test_scope_is_immutable(self, scopes, caller_for, population):
        scope = scopes.for_caller(caller_for(population["admin"]))
        narrowed = scope.where(Account.client_id == "client-a")
        assert len(narrowed.predicates) == len(scope.predicates) + 1
        assert scope.nothing() is not scope
        assert not scope.matches_nothing


class TestOrganizationScope:
    """Organization narrowing."""

    def test_amexing_organization(self, db, scopes, caller_for, population):
        roles = db.query(Role).filter(Role.organization == "amexing").all()
        scope = scopes.for_organization(scopes.for_caller(caller_for(population["superadmin"])), "amexing", roles)
        assert visible_ids(db, scope) == ids(population, "superadmin", "admin", "driver", "employee_amexing")

    def test_empty_role_set_matches_nothing(self, db, scopes, caller_for, population):
        scope = scopes.for_organization(scopes.for_caller(caller_for(population["superadmin"])), "martians", [])
        assert scope.matches_nothing
        assert visible_ids(db, scope) == set()


class TestRoleMatching:
    """Pointer and legacy role string matching."""

    def test_legacy_role_string_matches(self, db, population):
        matched = {a.id for a in db.query(Account).filter(role_named(["employee"])).all()}
        assert population["legacy_a"].id in matched

    def test_pointer_wins_over_stale_string(self, db, make_account):
        account = make_account("driver")
        account.role_name = "admin"
        db.commit()
        assert db.query(Account).filter(role_named(["admin"]), Account.id == account.id).count() == 0
        assert db.query(Account).filter(role_named(["driver"]), Account.id == account.id).count() == 1


class TestCreatableRoles:
    """Roles a caller may assign."""

    def test_superadmin(self, scopes, caller_for, superadmin):
        assert "superadmin" not in scopes.creatable_roles(caller_for(superadmin))
        assert "admin" in scopes.creatable_roles(caller_for(superadmin))

    def test_admin(self, scopes, caller_for, admin):
        creatable = set(scopes.creatable_roles(caller_for(admin)))
        assert "admin" not in creatable
        assert {"client", "driver", "guest"} <= creatable

    def test_client(self, scopes, caller_for, client_admin):
        assert set(scopes.creatable_roles(caller_for(client_admin))) == {"employee", "department_manager"}

    def test_department_manager(self, scopes, caller_for, dept_manager):
        assert scopes.creatable_roles(caller_for(dept_manager)) == ("employee",)

    def test_driver(self, scopes, caller_for, make_account):
        assert scopes.creatable_roles(caller_for(make_account("driver"))) == ()

    @pytest.mark.parametrize("role, client_id, department_id", [
        ("superadmin", None, None),
        ("admin", None, None),
        ("client", "client-a", None),
        ("department_manager", "client-a", "dept-1"),
        ("employee", "client-a", "dept-1"),
        ("driver", None, None),
        ("guest", None, None),
    ])
    def test_every_creatable_role_is_assignable(
        self, scopes, authz, caller_for, make_account, role, client_id, department_id,
    ):
        caller = caller_for(make_account(role, client_id=client_id, department_id=department_id))
        for name in scopes.creatable_roles(caller):
            assert authz.can_assign_role(caller, name)

    def test_allow_list_respects_rank(self, caller_for, client_admin):
        from dataclasses import replace

        from access_core.services.authorization_service import AuthorizationService
        from access_core.services.role_directory import DEFAULT_ROLES, RoleDirectory

        reranked = RoleDirectory(
            replace(d, rank=5) if d.name == "department_manager" else d for d in DEFAULT_ROLES
        )
        scopes = AccessScopeBuilder(AuthorizationService(reranked))
        assert scopes.creatable_roles(caller_for(client_admin)) == ("employee",)
