"""Models package: import all models so metadata can discover them."""

from access_core.models.role import Role, OrganizationEnum
from access_core.models.account import Account
from access_core.models.audit_event import AuditEvent, AuditAction

__all__ = [
    "Role", "OrganizationEnum", "Account", "AuditEvent", "AuditAction",
]
