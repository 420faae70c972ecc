"""Access-scoped query builder.

Turns a caller (plus optional role / organization filters) into an
immutable set of predicates over Account. The scope is applied to a query
before any search, sort or pagination, and the same scope object feeds both
the page query and its count.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from sqlalchemy import and_, false, func, not_, or_
from sqlalchemy.orm import Query
from sqlalchemy.sql.elements import ColumnElement

from access_core.core.config import settings
from access_core.models.account import Account
from access_core.models.role import Role
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.role_directory import (
    ADMIN, CLIENT, DEPARTMENT_MANAGER, EMPLOYEE, SUPERADMIN,
)

logger = logging.getLogger("access_core.scope")

CLIENT_VISIBLE_ROLES: Tuple[str, ...] = (EMPLOYEE, DEPARTMENT_MANAGER)
DEPARTMENT_VISIBLE_ROLES: Tuple[str, ...] = (EMPLOYEE,)


class Visibility(str, enum.Enum):
    # exists=true, plus active=true below the admin tier
    VISIBLE = "visible"
    # no lifecycle filter; compliance lookups and lifecycle targets
    COMPLIANCE = "compliance"


def role_named(names: Sequence[str]) -> ColumnElement:
    """Account's role is one of ``names``. The pointer wins over the legacy string."""
    names = list(names)
    return or_(
        Account.role.has(Role.name.in_(names)),
        and_(Account.role_id.is_(None), func.coalesce(Account.role_name, "").in_(names)),
    )


def role_reference_in(role_ids: Sequence[int], names: Sequence[str]) -> ColumnElement:
    return or_(
        Account.role_id.in_(list(role_ids)),
        and_(Account.role_id.is_(None), func.coalesce(Account.role_name, "").in_(list(names))),
    )


@dataclass(frozen=True)
class AccessScope:
    """Immutable conjunction of Account predicates."""

    predicates: Tuple[ColumnElement, ...] = ()
    matches_nothing: bool = False

    def where(self, *clauses: ColumnElement) -> "AccessScope":
        return AccessScope(self.predicates + tuple(clauses), self.matches_nothing)

    def nothing(self) -> "AccessScope":
        return AccessScope(self.predicates + (false(),), True)

    def apply(self, query: Query) -> Query:
        if not self.predicates:
            return query
        return query.filter(*self.predicates)


class AccessScopeBuilder:
    """Builds AccessScope values from the caller's resolved role."""

    def __init__(self, authz: AuthorizationService):
        self.authz = authz
        self.directory = authz.directory

    def for_caller(
        self,
        caller: Caller,
        target_role: Optional[str] = None,
        visibility: Visibility = Visibility.VISIBLE,
    ) -> AccessScope:
        role = self.authz.resolve_role(caller)
        scope = self._visibility(AccessScope(), role, visibility)

        if role == SUPERADMIN:
            if target_role:
                scope = scope.where(role_named([target_role]))

        elif role == ADMIN:
            scope = scope.where(not_(role_named([SUPERADMIN])))
            if target_role:
                scope = scope.where(role_named([target_role]))

        elif role == CLIENT:
            if target_role:
                if target_role not in CLIENT_VISIBLE_ROLES:
                    logger.debug("Client requested role %s outside allow-list", target_role)
                    return scope.nothing()
                scope = scope.where(role_named([target_role]))
            else:
                scope = scope.where(role_named(CLIENT_VISIBLE_ROLES))
            if caller.client_id:
                scope = scope.where(Account.client_id == caller.client_id)

        elif role == DEPARTMENT_MANAGER:
            if not caller.department_id:
                logger.warning("Department manager %s has no department, scope is empty", caller.id)
                return scope.nothing()
            scope = scope.where(
                role_named(DEPARTMENT_VISIBLE_ROLES),
                Account.department_id == caller.department_id,
            )
            if target_role:
                scope = scope.where(role_named([target_role]))

        else:
            scope = scope.where(Account.id == caller.id) if caller.id else scope.nothing()

        logger.debug(
            "Scope built caller=%s role=%s target_role=%s visibility=%s predicates=%s",
            caller.id, role, target_role, visibility.value, len(scope.predicates),
        )
        return scope

    def for_organization(self, scope: AccessScope, organization: str, roles: Sequence[Role]) -> AccessScope:
        """Narrow ``scope`` to accounts whose role belongs to ``organization``.

        ``roles`` are the Role records tagged with the organization; an empty
        set yields a scope that matches nothing.
        """
        if not roles:
            logger.warning("No roles tagged with organization %s, scope is empty", organization)
            return scope.nothing()
        return scope.where(role_reference_in([r.id for r in roles], [r.name for r in roles]))

    def creatable_roles(self, caller: Caller) -> Tuple[str, ...]:
        """Roles the caller may assign: visible to it and strictly below its rank."""
        role = self.authz.resolve_role(caller)
        if role == CLIENT:
            candidates = CLIENT_VISIBLE_ROLES
        elif role == DEPARTMENT_MANAGER:
            candidates = DEPARTMENT_VISIBLE_ROLES
        elif role in (SUPERADMIN, ADMIN):
            candidates = self.directory.names_below(self.directory.rank(role))
        else:
            candidates = ()
        return tuple(name for name in candidates if self.authz.can_assign_role(caller, name))

    def _visibility(self, scope: AccessScope, role: str, visibility: Visibility) -> AccessScope:
        if visibility is Visibility.COMPLIANCE:
            return scope
        scope = scope.where(Account.exists == True)
        if self.directory.rank(role) < settings.ADMIN_TIER_MIN_RANK:
            scope = scope.where(Account.active == True)
        return scope
