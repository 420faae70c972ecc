"""Audit service: append-only audit trail for account reads and mutations."""

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from access_core.core.config import settings
from access_core.core.exceptions import AuditImmutableError, ValidationFailedError
from access_core.db.session import SessionLocal, storage_errors
from access_core.models.audit_event import AuditAction, AuditEvent

logger = logging.getLogger("access_core.audit")

DEFAULT_QUERY_LIMIT = 100


def _to_action(action: Union[AuditAction, str, None]) -> AuditAction:
    if isinstance(action, AuditAction):
        return action
    try:
        return AuditAction(action)
    except ValueError:
        raise ValidationFailedError(
            f"action must be one of {', '.join(a.value for a in AuditAction)}"
        )


def _to_timestamp(value: Union[datetime, str, None]) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise ValidationFailedError(f"Invalid timestamp: {value}")
    return value


class AuditRecorder:
    """Creates and reads immutable audit events."""

    @staticmethod
    def append(
        db: Session,
        actor_id: Optional[str],
        action: Union[AuditAction, str],
        entity_type: Optional[str],
        entity_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_role: Optional[str] = None,
        timestamp: Union[datetime, str, None] = None,
    ) -> AuditEvent:
        """Validate and add one audit event to the session.

        Raises:
            ValidationFailedError: a required field (actor, action, entity type,
                timestamp) is missing, the action is outside the closed set, or
                the timestamp does not parse.
        """
        missing = [
            name for name, value in (
                ("actor_id", actor_id), ("action", action),
                ("entity_type", entity_type), ("timestamp", timestamp),
            ) if not value
        ]
        if missing:
            raise ValidationFailedError(f"Audit event missing required fields: {', '.join(missing)}")

        event = AuditEvent(
            actor_id=str(actor_id),
            actor_role=actor_role,
            action=_to_action(action),
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else None,
            changes_json=json.dumps(changes, default=str) if changes else None,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
            timestamp=_to_timestamp(timestamp),
        )
        db.add(event)
        db.flush()
        return event

    @staticmethod
    def query_by_actor(db: Session, actor_id: str, limit: int = DEFAULT_QUERY_LIMIT) -> List[AuditEvent]:
        query = db.query(AuditEvent).filter(AuditEvent.actor_id == actor_id)
        return AuditRecorder._newest_first(query, limit)

    @staticmethod
    def query_by_entity(
        db: Session, entity_type: str, entity_id: Optional[str] = None, limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[AuditEvent]:
        query = db.query(AuditEvent).filter(AuditEvent.entity_type == entity_type)
        if entity_id:
            query = query.filter(AuditEvent.entity_id == entity_id)
        return AuditRecorder._newest_first(query, limit)

    @staticmethod
    def query_by_action(
        db: Session, action: Union[AuditAction, str], limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[AuditEvent]:
        query = db.query(AuditEvent).filter(AuditEvent.action == _to_action(action))
        return AuditRecorder._newest_first(query, limit)

    @staticmethod
    def query_by_date_range(
        db: Session, start: datetime, end: datetime, limit: int = 1000,
    ) -> List[AuditEvent]:
        if start > end:
            raise ValidationFailedError("start must not be after end")
        query = db.query(AuditEvent).filter(
            AuditEvent.timestamp >= start,
            AuditEvent.timestamp <= end,
        )
        return AuditRecorder._newest_first(query, limit)

    @staticmethod
    def query_recent(db: Session, limit: int = DEFAULT_QUERY_LIMIT) -> List[AuditEvent]:
        return AuditRecorder._newest_first(db.query(AuditEvent), limit)

    @staticmethod
    def statistics(
        db: Session,
        actor_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Count events overall and per action."""
        query = db.query(AuditEvent.action, func.count(AuditEvent.id))
        if actor_id:
            query = query.filter(AuditEvent.actor_id == actor_id)
        if entity_type:
            query = query.filter(AuditEvent.entity_type == entity_type)
        if start:
            query = query.filter(AuditEvent.timestamp >= start)
        if end:
            query = query.filter(AuditEvent.timestamp <= end)

        by_action = {action.value: 0 for action in AuditAction}
        for action, count in query.group_by(AuditEvent.action).all():
            by_action[getattr(action, "value", action)] = count
        return {"total": sum(by_action.values()), "by_action": by_action}

    @staticmethod
    def deactivate(db: Session, event_id: int) -> None:
        raise AuditImmutableError("Audit events cannot be deactivated")

    @staticmethod
    def delete(db: Session, event_id: int) -> None:
        raise AuditImmutableError("Audit events cannot be deleted")

    @staticmethod
    def _newest_first(query, limit: int) -> List[AuditEvent]:
        if limit < 1:
            raise ValidationFailedError("limit must be positive")
        return (
            query.order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
            .limit(limit)
            .all()
        )


class AuditDeadLetter:
    """Bounded buffer of audit payloads that could not be appended."""

    def __init__(self, maxlen: int):
        self._entries: deque = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self.failures = 0

    def push(self, payload: Dict[str, Any], error: BaseException) -> None:
        with self._lock:
            self.failures += 1
            self._entries.append({
                "payload": payload,
                "error": f"{type(error).__name__}: {error}",
                "failed_at": datetime.now(timezone.utc).isoformat(),
            })

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"failures": self.failures, "entries": list(self._entries)}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.failures = 0


class AuditDispatcher:
    """Best-effort delivery of audit events.

    Appends on a session of its own so a failed append never rolls back the
    operation that triggered it. With AUDIT_ASYNC the event is handed to a
    Celery task instead. Every failure is logged and dead-lettered.
    """

    def __init__(self, session_factory: Callable[[], Session], dead_letter: AuditDeadLetter):
        self.session_factory = session_factory
        self.dead_letter = dead_letter

    def emit(
        self,
        actor_id: Optional[str],
        action: Union[AuditAction, str],
        entity_type: str,
        entity_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_role: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        payload = {
            "actor_id": actor_id,
            "actor_role": actor_role,
            "action": getattr(action, "value", action),
            "entity_type": entity_type,
            "entity_id": entity_id,
            "changes": changes,
            "metadata": metadata,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if settings.AUDIT_ASYNC:
            try:
                from access_core.tasks.celery_app import append_audit_event
                append_audit_event.delay(payload)
            except Exception as exc:
                self.record_failure(payload, exc)
            return None

        db = None
        try:
            db = self.session_factory()
            with storage_errors(db):
                event = audit_recorder.append(db, **payload)
                db.commit()
                db.refresh(event)
            db.expunge(event)
            return event
        except Exception as exc:
            if db is not None:
                db.rollback()
            self.record_failure(payload, exc)
            return None
        finally:
            if db is not None:
                db.close()

    def record_failure(self, payload: Dict[str, Any], error: BaseException) -> None:
        logger.error(
            "Audit append failed, compliance gap: action=%s entity=%s/%s actor=%s error=%s",
            payload.get("action"), payload.get("entity_type"), payload.get("entity_id"),
            payload.get("actor_id"), error,
        )
        self.dead_letter.push(payload, error)


audit_recorder = AuditRecorder()
audit_dispatcher = AuditDispatcher(SessionLocal, AuditDeadLetter(settings.AUDIT_DEAD_LETTER_SIZE))
