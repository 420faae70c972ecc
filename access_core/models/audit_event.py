"""Audit event model: append-only."""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, event

from access_core.core.exceptions import AuditImmutableError
from access_core.db.base import Base


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    ACCESS = "ACCESS"


class AuditEvent(Base):
    """Immutable record of one action.

    Rows are insert-only. Updates and deletes through the ORM raise
    AuditImmutableError, and the model has no lifecycle of its own.
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(36), nullable=False, index=True)
    actor_role = Column(String(50), nullable=True)
    action = Column(Enum(AuditAction), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), nullable=True, index=True)
    changes_json = Column(Text, nullable=True)
    metadata_json = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    def deactivate(self) -> None:
        raise AuditImmutableError("Audit events cannot be deactivated")

    def delete(self) -> None:
        raise AuditImmutableError("Audit events cannot be deleted")


@event.listens_for(AuditEvent, "before_update")
def _reject_update(mapper, connection, target: AuditEvent) -> None:
    raise AuditImmutableError("Audit events cannot be modified")


@event.listens_for(AuditEvent, "before_delete")
def _reject_delete(mapper, connection, target: AuditEvent) -> None:
    raise AuditImmutableError("Audit events cannot be deleted")
