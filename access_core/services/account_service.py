"""Account service: scoped listing, lookup and statistics."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from access_core.core.config import settings
from access_core.core.exceptions import NotFoundError, ValidationFailedError
from access_core.db.session import storage_errors
from access_core.models.account import Account
from access_core.models.audit_event import AuditAction
from access_core.models.role import OrganizationEnum, Role
from access_core.services.audit_service import AuditDispatcher, audit_dispatcher
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.query_scope import AccessScope, AccessScopeBuilder, role_named

logger = logging.getLogger("access_core.accounts")

ENTITY_TYPE = "Account"

SORT_FIELDS = {
    "first_name": Account.first_name,
    "last_name": Account.last_name,
    "email": Account.email,
    "created_at": Account.created_at,
    "updated_at": Account.updated_at,
    "last_login_at": Account.last_login_at,
    "active": Account.active,
}


class AccountService:
    """Read side of account management. Every read is scoped and audited."""

    def __init__(self, authz: AuthorizationService, audit: Optional[AuditDispatcher] = None):
        self.authz = authz
        self.scopes = AccessScopeBuilder(authz)
        self.audit = audit or audit_dispatcher

    def scoped_query(
        self,
        db: Session,
        caller: Caller,
        target_role: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> Query:
        """Account query narrowed to what the caller may enumerate.

        The scope is applied first; callers add their own filters afterwards.
        """
        return self.build_scope(db, caller, target_role, organization).apply(db.query(Account))

    def build_scope(
        self,
        db: Session,
        caller: Caller,
        target_role: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> AccessScope:
        scope = self.scopes.for_caller(caller, target_role)
        if organization is not None:
            scope = self.scopes.for_organization(scope, organization, self._roles_in(db, organization))
        return scope

    def list_accounts(
        self,
        db: Session,
        caller: Caller,
        target_role: Optional[str] = None,
        organization: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_field: Optional[str] = None,
        sort_direction: str = "asc",
    ) -> Dict[str, Any]:
        """List accounts visible to the caller with pagination metadata."""
        if page < 1:
            raise ValidationFailedError("page must be >= 1")
        limit = self._clamp_limit(limit)
        filters = {k: v for k, v in (filters or {}).items() if v is not None and v != ""}

        with storage_errors(db):
            query = self.scoped_query(db, caller, target_role, organization)
            query = self._apply_filters(query, filters)
            query = self._apply_search(query, search)

            total = query.order_by(None).count()
            accounts = (
                self._apply_sorting(query, sort_field, sort_direction)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

        total_pages = math.ceil(total / limit) if total else 0
        logger.debug(
            "Listed accounts caller=%s target_role=%s organization=%s total=%s page=%s",
            caller.id, target_role, organization, total, page,
        )
        self.audit.emit(
            actor_id=caller.id,
            actor_role=self.authz.resolve_role(caller),
            action=AuditAction.READ,
            entity_type=ENTITY_TYPE,
            metadata={
                **caller.request_metadata(),
                "operation": "list",
                "target_role": target_role,
                "organization": organization,
                "search": bool(search and search.strip()),
                "filters": sorted(filters),
                "page": page,
                "limit": limit,
                "total": total,
            },
        )
        return {
            "accounts": accounts,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next": page * limit < total,
            "has_prev": page > 1,
        }

    def get_account(self, db: Session, caller: Caller, account_id: str) -> Account:
        """Fetch one account inside the caller's scope.

        Raises:
            NotFoundError: the id does not exist or is outside the caller's scope.
        """
        with storage_errors(db):
            account = (
                self.scoped_query(db, caller)
                .filter(Account.id == account_id)
                .first()
            )
        if account is None:
            raise NotFoundError(ENTITY_TYPE)

        self.audit.emit(
            actor_id=caller.id,
            actor_role=self.authz.resolve_role(caller),
            action=AuditAction.READ,
            entity_type=ENTITY_TYPE,
            entity_id=account.id,
            metadata={**caller.request_metadata(), "operation": "get"},
        )
        return account

    def account_statistics(self, db: Session, caller: Caller) -> Dict[str, Any]:
        """Totals and role distribution over the caller's scope."""
        directory = self.authz.directory
        with storage_errors(db):
            base = self.scoped_query(db, caller)
            total = base.order_by(None).count()
            active = base.filter(Account.active == True).order_by(None).count()
            distribution = {
                d.name: base.filter(role_named([d.name])).order_by(None).count()
                for d in directory.definitions()
            }

        self.audit.emit(
            actor_id=caller.id,
            actor_role=self.authz.resolve_role(caller),
            action=AuditAction.READ,
            entity_type=ENTITY_TYPE,
            metadata={**caller.request_metadata(), "operation": "statistics", "total": total},
        )
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "role_distribution": distribution,
        }

    # ---- helpers ----

    @staticmethod
    def _roles_in(db: Session, organization: str):
        if organization not in {o.value for o in OrganizationEnum}:
            return []
        return db.query(Role).filter(Role.organization == OrganizationEnum(organization)).all()

    @staticmethod
    def _clamp_limit(limit: Optional[int]) -> int:
        if limit is None:
            return settings.DEFAULT_PAGE_SIZE
        if limit < 1:
            raise ValidationFailedError("limit must be >= 1")
        return min(limit, settings.MAX_PAGE_SIZE)

    @staticmethod
    def _apply_filters(query: Query, filters: Dict[str, Any]) -> Query:
        if "active" in filters:
            query = query.filter(Account.active == bool(filters["active"]))
        if "client_id" in filters:
            query = query.filter(Account.client_id == filters["client_id"])
        if "department_id" in filters:
            query = query.filter(Account.department_id == filters["department_id"])
        if "created_after" in filters:
            query = query.filter(Account.created_at > _as_datetime(filters["created_after"]))
        if "created_before" in filters:
            query = query.filter(Account.created_at < _as_datetime(filters["created_before"]))
        return query

    @staticmethod
    def _apply_search(query: Query, search: Optional[str]) -> Query:
        if not search or not search.strip():
            return query
        term = f"%{search.strip()}%"
        return query.filter(or_(
            Account.email.ilike(term),
            Account.first_name.ilike(term),
            Account.last_name.ilike(term),
        ))

    @staticmethod
    def _apply_sorting(query: Query, field: Optional[str], direction: str) -> Query:
        column = SORT_FIELDS.get(field or "")
        if column is None:
            return query.order_by(Account.last_name.asc(), Account.first_name.asc(), Account.id.asc())
        ordered = column.desc() if direction == "desc" else column.asc()
        return query.order_by(ordered, Account.id.asc())


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationFailedError(f"Invalid date: {value}")
