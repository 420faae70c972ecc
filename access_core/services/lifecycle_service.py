"""Lifecycle service: account creation, updates and state transitions.

States are the (active, exists) pair:

    visible-active   (True, True)
    visible-inactive (False, True)
    archived         (False, False)   terminal

Every transition locates its target through the caller's scope, requires
the caller to outrank the target, runs under a per-record lock and appends
an audit event once committed.
"""

import logging
import re
import threading
import weakref
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy.orm import Session, lazyload

from access_core.core.exceptions import (
    AccessCoreError, ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from access_core.core.security import hash_password
from access_core.db.session import storage_errors
from access_core.models.account import Account
from access_core.models.audit_event import AuditAction
from access_core.models.role import Role
from access_core.services.audit_service import AuditDispatcher, audit_dispatcher
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.query_scope import AccessScope, AccessScopeBuilder, Visibility
from access_core.services.role_directory import CLIENT, DEPARTMENT_MANAGER

logger = logging.getLogger("access_core.lifecycle")

ENTITY_TYPE = "Account"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

UPDATABLE_FIELDS = ("first_name", "last_name", "email", "role")
SELF_SERVICE_FIELDS = ("first_name", "last_name")
AUDITED_FIELDS = (
    "email", "first_name", "last_name", "role", "active", "exists", "client_id", "department_id",
)


class _RecordLock:
    __slots__ = ("mutex", "__weakref__")

    def __init__(self):
        self.mutex = threading.Lock()


class RecordLocks:
    """One mutex per record id, released once no caller holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, _RecordLock]" = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(record_id)
            if lock is None:
                lock = _RecordLock()
                self._locks[record_id] = lock
        with lock.mutex:
            yield


record_locks = RecordLocks()


class LifecycleService:
    """Write side of account management."""

    def __init__(
        self,
        authz: AuthorizationService,
        audit: Optional[AuditDispatcher] = None,
        locks: Optional[RecordLocks] = None,
    ):
        self.authz = authz
        self.scopes = AccessScopeBuilder(authz)
        self.audit = audit or audit_dispatcher
        self.locks = locks or record_locks

    # ---- creation & update ----

    def create_account(
        self,
        db: Session,
        caller: Caller,
        email: str,
        first_name: str,
        last_name: str,
        role: str,
        password: Optional[str] = None,
        client_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> Account:
        """Create an account in the visible-active state."""
        email = self._normalize_email(email)
        first_name, last_name = self._require_names(first_name, last_name)
        self._check_assignable_role(caller, role)
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        caller_role = self.authz.resolve_role(caller)
        if caller_role in (CLIENT, DEPARTMENT_MANAGER):
            client_id = caller.client_id
        if caller_role == DEPARTMENT_MANAGER:
            department_id = caller.department_id

        try:
            with storage_errors(db):
                if db.query(Account.id).filter(Account.email == email).first():
                    raise ConflictError("An account with this email already exists")
                role_ref = db.query(Role).filter(Role.name == role).first()
                account = Account(
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    hashed_password=hash_password(password) if password else None,
                    role_id=role_ref.id if role_ref else None,
                    role_name=role,
                    client_id=client_id,
                    department_id=department_id,
                    active=True,
                    exists=True,
                    created_by=caller.id,
                    modified_by=caller.id,
                )
                db.add(account)
                db.commit()
                db.refresh(account)
        except AccessCoreError:
            db.rollback()
            raise

        logger.info("Account created id=%s role=%s by=%s", account.id, role, caller.id)
        self._audit(caller, AuditAction.CREATE, account.id, "create", {}, self._snapshot(account))
        return account

    def update_account(self, db: Session, caller: Caller, account_id: str, updates: Dict[str, Any]) -> Account:
        """Update profile fields and role. Lifecycle fields go through transitions."""
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationFailedError(f"Fields cannot be updated here: {', '.join(sorted(unknown))}")
        updates = {k: v for k, v in updates.items() if v is not None}

        def check(target: Account) -> None:
            if target.id == caller.id:
                forbidden = set(updates) - set(SELF_SERVICE_FIELDS)
                if forbidden:
                    raise PermissionDeniedError(
                        "management", self.authz.resolve_role(caller), sorted(forbidden),
                    )
            else:
                self._check_can_manage(caller, target)
            if "role" in updates:
                self._check_assignable_role(caller, updates["role"])

        def mutate(db: Session, target: Account) -> None:
            if "first_name" in updates or "last_name" in updates:
                target.first_name, target.last_name = self._require_names(
                    updates.get("first_name", target.first_name),
                    updates.get("last_name", target.last_name),
                )
            if "email" in updates:
                email = self._normalize_email(updates["email"])
                clash = (
                    db.query(Account.id)
                    .filter(Account.email == email, Account.id != target.id)
                    .first()
                )
                if clash:
                    raise ConflictError("An account with this email already exists")
                target.email = email
            if "role" in updates:
                role_ref = db.query(Role).filter(Role.name == updates["role"]).first()
                target.role_id = role_ref.id if role_ref else None
                target.role = role_ref
                target.role_name = updates["role"]

        return self._transition(db, caller, account_id, "update", check, mutate)

    # ---- state transitions ----

    def deactivate(self, db: Session, caller: Caller, account_id: str, reason: Optional[str] = None) -> Account:
        """visible-active -> visible-inactive."""
        def check(target: Account) -> None:
            self._forbid_self(caller, target, "deactivate")
            self._check_can_manage(caller, target)
            if not target.active:
                raise ConflictError("Account is already inactive")

        def mutate(db: Session, target: Account) -> None:
            target.active = False
            target.exists = True

        return self._transition(db, caller, account_id, "deactivate", check, mutate, reason)

    def reactivate(self, db: Session, caller: Caller, account_id: str, reason: Optional[str] = None) -> Account:
        """visible-inactive -> visible-active."""
        def check(target: Account) -> None:
            self._check_can_manage(caller, target)
            if target.active:
                raise ConflictError("Account is already active")

        def mutate(db: Session, target: Account) -> None:
            target.active = True
            target.exists = True

        return self._transition(db, caller, account_id, "reactivate", check, mutate, reason)

    def toggle_status(
        self, db: Session, caller: Caller, account_id: str, active: Any, reason: Optional[str] = None,
    ) -> Account:
        """Switch between visible-active and visible-inactive.

        ``exists`` is re-asserted on every toggle, so this can never archive.
        """
        if not isinstance(active, bool):
            raise ValidationFailedError("active must be a boolean")

        def check(target: Account) -> None:
            if not active:
                self._forbid_self(caller, target, "deactivate")
            self._check_can_manage(caller, target)

        def mutate(db: Session, target: Account) -> None:
            target.active = active
            target.exists = True

        return self._transition(db, caller, account_id, "toggle_status", check, mutate, reason)

    def archive(self, db: Session, caller: Caller, account_id: str, reason: Optional[str] = None) -> Account:
        """visible-active|visible-inactive -> archived. Highest rank only, irreversible."""
        def check(target: Account) -> None:
            self._forbid_self(caller, target, "archive")
            highest = self.authz.directory.highest_rank
            if not self.authz.has_minimum_rank(caller, highest):
                raise PermissionDeniedError("rank", self.authz.resolve_role(caller), [highest])
            self._check_can_manage(caller, target)

        def mutate(db: Session, target: Account) -> None:
            target.active = False
            target.exists = False

        return self._transition(db, caller, account_id, "archive", check, mutate, reason)

    # ---- internals ----

    def _transition(
        self,
        db: Session,
        caller: Caller,
        account_id: str,
        operation: str,
        check: Callable[[Account], None],
        mutate: Callable[[Session, Account], None],
        reason: Optional[str] = None,
    ) -> Account:
        with self.locks.hold(account_id):
            try:
                with storage_errors(db):
                    target = self._locate(db, caller, account_id)
                    if target.is_archived:
                        raise ConflictError("Account is archived")
                    check(target)

                    before = self._snapshot(target)
                    mutate(db, target)
                    target.modified_by = caller.id
                    db.flush()
                    after = self._snapshot(target)
                    db.commit()
            except AccessCoreError:
                db.rollback()
                raise

        logger.info(
            "Account %s id=%s by=%s state=%s", operation, account_id, caller.id, target.lifecycle_state,
        )
        self._audit(caller, AuditAction.UPDATE, account_id, operation, before, after, reason)
        return target

    def _locate(self, db: Session, caller: Caller, account_id: str) -> Account:
        """Find a transition target. Archived records are only visible at the highest rank."""
        if account_id == caller.id:
            scope = AccessScope().where(Account.exists == True)
        else:
            scope = self.scopes.for_caller(caller, visibility=Visibility.COMPLIANCE)
            if not self.authz.has_minimum_rank(caller, self.authz.directory.highest_rank):
                scope = scope.where(Account.exists == True)
        target = (
            scope.apply(db.query(Account))
            .options(lazyload(Account.role))
            .filter(Account.id == account_id)
            .with_for_update()
            .first()
        )
        if target is None:
            raise NotFoundError(ENTITY_TYPE)
        return target

    def _check_can_manage(self, caller: Caller, target: Account) -> None:
        if not self.authz.can_manage(caller, target):
            raise PermissionDeniedError("management", self.authz.resolve_role(caller))

    def _check_assignable_role(self, caller: Caller, role: Optional[str]) -> None:
        if not role or role not in self.authz.directory:
            raise ValidationFailedError(f"Invalid role: {role}")
        if role not in self.scopes.creatable_roles(caller):
            raise PermissionDeniedError("management", self.authz.resolve_role(caller), [role])

    @staticmethod
    def _forbid_self(caller: Caller, target: Account, operation: str) -> None:
        if target.id == caller.id:
            raise ConflictError(f"Cannot {operation} your own account")

    @staticmethod
    def _normalize_email(email: Optional[str]) -> str:
        email = (email or "").strip().lower()
        if not EMAIL_RE.match(email):
            raise ValidationFailedError("Invalid email format")
        return email

    @staticmethod
    def _require_names(first_name: Optional[str], last_name: Optional[str]):
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if not first_name or not last_name:
            raise ValidationFailedError("first_name and last_name are required")
        return first_name, last_name

    def _snapshot(self, account: Account) -> Dict[str, Any]:
        values = {field: getattr(account, field, None) for field in AUDITED_FIELDS if field != "role"}
        values["role"] = self.authz.resolve_role(account)
        return values

    def _audit(
        self,
        caller: Caller,
        action: AuditAction,
        account_id: str,
        operation: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: Optional[str] = None,
    ) -> None:
        changes = {
            field: {"from": before.get(field), "to": value}
            for field, value in after.items()
            if before.get(field) != value
        }
        self.audit.emit(
            actor_id=caller.id,
            actor_role=self.authz.resolve_role(caller),
            action=action,
            entity_type=ENTITY_TYPE,
            entity_id=account_id,
            changes=changes,
            metadata={**caller.request_metadata(), "operation": operation, "reason": reason},
        )
