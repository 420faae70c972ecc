"""Authorization service: role resolution and admit/deny decisions.

Decisions are pure functions of the subject and the injected RoleDirectory.
The boolean checks never raise; the ``require_*`` variants turn a ``False``
into PermissionDeniedError for callers that want to fail fast.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from access_core.core.exceptions import PermissionDeniedError
from access_core.services.role_directory import GUEST, RoleDirectory

logger = logging.getLogger("access_core.authorization")


@dataclass(frozen=True)
class Caller:
    """Authenticated identity for one request."""

    account: Any
    explicit_role: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        return getattr(self.account, "id", None)

    @property
    def client_id(self) -> Optional[str]:
        return getattr(self.account, "client_id", None)

    @property
    def department_id(self) -> Optional[str]:
        return getattr(self.account, "department_id", None)

    def request_metadata(self) -> dict:
        return {"ip_address": self.ip_address, "user_agent": self.user_agent}


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of validate_all. Truthy when every requested rule passed."""

    passed: bool
    resolved_role: str
    failures: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.passed


def _subject_id(subject: Any) -> str:
    return getattr(subject, "id", None) or "unknown"


class AuthorizationService:
    """Answers role, rank, organization and management questions."""

    def __init__(self, directory: RoleDirectory):
        self.directory = directory

    # ---- role resolution ----

    def resolve_role(self, subject: Any, explicit_role: Optional[str] = None) -> str:
        """Resolve the effective role name of a caller or account.

        Precedence: explicit override, then the role pointer, then the legacy
        role string, then ``guest``.
        """
        if isinstance(subject, Caller):
            explicit_role = explicit_role or subject.explicit_role
            subject = subject.account

        if explicit_role:
            logger.debug("Using explicit role %s for %s", explicit_role, _subject_id(subject))
            return explicit_role

        if subject is None:
            logger.warning("Role resolution without a subject, defaulting to %s", GUEST)
            return GUEST

        role_ref = getattr(subject, "role", None)
        pointer_name = getattr(role_ref, "name", None) if role_ref is not None else None
        legacy_name = getattr(subject, "role_name", None)

        if pointer_name:
            if legacy_name and legacy_name != pointer_name:
                logger.warning(
                    "Role pointer/string mismatch for %s: pointer=%s string=%s, using pointer",
                    _subject_id(subject), pointer_name, legacy_name,
                )
            return pointer_name
        if legacy_name:
            return legacy_name

        logger.warning("No role found for %s, defaulting to %s", _subject_id(subject), GUEST)
        return GUEST

    def rank_of(self, subject: Any, explicit_role: Optional[str] = None) -> int:
        return self.directory.rank(self.resolve_role(subject, explicit_role))

    def organization_of(self, subject: Any, explicit_role: Optional[str] = None) -> Optional[str]:
        return self.directory.organization(self.resolve_role(subject, explicit_role))

    # ---- role membership ----

    def has_any_role(self, subject: Any, roles: Iterable[str], explicit_role: Optional[str] = None) -> bool:
        required = [roles] if isinstance(roles, str) else list(roles)
        role = self.resolve_role(subject, explicit_role)
        allowed = role in required
        logger.debug(
            "Role check caller=%s role=%s required=%s allowed=%s",
            _subject_id(subject), role, required, allowed,
        )
        return allowed

    def require_any_role(self, subject: Any, roles: Iterable[str], explicit_role: Optional[str] = None) -> str:
        required = [roles] if isinstance(roles, str) else list(roles)
        role = self.resolve_role(subject, explicit_role)
        if role not in required:
            logger.warning("Access denied caller=%s role=%s required=%s", _subject_id(subject), role, required)
            raise PermissionDeniedError("role", resolved_role=role, required=required)
        return role

    # ---- rank ----

    def has_minimum_rank(self, subject: Any, min_rank: int, explicit_role: Optional[str] = None) -> bool:
        role = self.resolve_role(subject, explicit_role)
        rank = self.directory.rank(role)
        allowed = rank >= min_rank
        logger.debug(
            "Rank check caller=%s role=%s rank=%s min_rank=%s allowed=%s",
            _subject_id(subject), role, rank, min_rank, allowed,
        )
        return allowed

    def require_minimum_rank(self, subject: Any, min_rank: int, explicit_role: Optional[str] = None) -> str:
        role = self.resolve_role(subject, explicit_role)
        if self.directory.rank(role) < min_rank:
            logger.warning(
                "Rank denied caller=%s role=%s min_rank=%s", _subject_id(subject), role, min_rank,
            )
            raise PermissionDeniedError("rank", resolved_role=role, required=[min_rank])
        return role

    # ---- organization ----

    def is_member_of(self, subject: Any, organization: str, explicit_role: Optional[str] = None) -> bool:
        role = self.resolve_role(subject, explicit_role)
        member = self.directory.organization(role) == organization
        logger.debug(
            "Organization check caller=%s role=%s organization=%s member=%s",
            _subject_id(subject), role, organization, member,
        )
        return member

    def require_membership(self, subject: Any, organization: str, explicit_role: Optional[str] = None) -> str:
        role = self.resolve_role(subject, explicit_role)
        if self.directory.organization(role) != organization:
            logger.warning(
                "Organization denied caller=%s role=%s organization=%s",
                _subject_id(subject), role, organization,
            )
            raise PermissionDeniedError("organization", resolved_role=role, required=[organization])
        return role

    # ---- management ----

    def can_manage(self, actor: Any, target: Any) -> bool:
        """True iff the actor's rank is strictly greater than the target's."""
        actor_rank = self.rank_of(actor)
        target_rank = self.rank_of(target)
        allowed = actor_rank > target_rank
        logger.debug(
            "Management check actor=%s rank=%s target=%s rank=%s allowed=%s",
            _subject_id(actor), actor_rank, _subject_id(target), target_rank, allowed,
        )
        return allowed

    def can_assign_role(self, actor: Any, role_name: str) -> bool:
        return self.rank_of(actor) > self.directory.rank(role_name)

    def validate_all(
        self,
        subject: Any,
        roles: Optional[Sequence[str]] = None,
        min_rank: Optional[int] = None,
        organization: Optional[str] = None,
        explicit_role: Optional[str] = None,
    ) -> AuthorizationDecision:
        """Conjunction of the role, rank and organization checks."""
        role = self.resolve_role(subject, explicit_role)
        failures: List[str] = []

        if roles is not None and not self.has_any_role(subject, roles, explicit_role):
            failures.append("role")
        if min_rank is not None and not self.has_minimum_rank(subject, min_rank, explicit_role):
            failures.append("rank")
        if organization is not None and not self.is_member_of(subject, organization, explicit_role):
            failures.append("organization")

        if failures:
            logger.warning(
                "Authorization rules failed caller=%s role=%s failures=%s",
                _subject_id(subject), role, failures,
            )
        return AuthorizationDecision(passed=not failures, resolved_role=role, failures=failures)
