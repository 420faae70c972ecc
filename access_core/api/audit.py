"""Audit API router: read-only access to the audit trail."""

import json
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from access_core.api.deps import get_authorization_service, get_caller
from access_core.core.config import settings
from access_core.core.exceptions import ValidationFailedError
from access_core.db.session import get_db, storage_errors
from access_core.models.audit_event import AuditEvent
from access_core.schemas.schemas import AuditEventOut, AuditStatisticsOut, DeadLetterOut
from access_core.services.audit_service import audit_dispatcher, audit_recorder
from access_core.services.authorization_service import AuthorizationService, Caller

router = APIRouter(prefix="/audit", tags=["audit"])


def to_audit_out(event: AuditEvent) -> AuditEventOut:
    return AuditEventOut(
        id=event.id,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        action=getattr(event.action, "value", event.action),
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        changes=json.loads(event.changes_json) if event.changes_json else None,
        metadata=json.loads(event.metadata_json) if event.metadata_json else None,
        timestamp=event.timestamp,
    )


@router.get("/", response_model=List[AuditEventOut])
def query_audit_events(
    actor_id: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    authz: AuthorizationService = Depends(get_authorization_service),
):
    """Newest-first audit events by date range, actor, entity or action."""
    authz.require_minimum_rank(caller, settings.ADMIN_TIER_MIN_RANK)

    if (start is None) != (end is None):
        raise ValidationFailedError("start and end must be given together")
    if entity_id and not entity_type:
        raise ValidationFailedError("entity_id requires entity_type")
    selectors = [name for name, value in (
        ("date range", start), ("actor_id", actor_id), ("entity_type", entity_type), ("action", action),
    ) if value]
    if len(selectors) > 1:
        raise ValidationFailedError(f"Query by one of date range, actor, entity or action, not {', '.join(selectors)}")

    with storage_errors(db):
        if start:
            events = audit_recorder.query_by_date_range(db, start, end, limit)
        elif actor_id:
            events = audit_recorder.query_by_actor(db, actor_id, limit)
        elif entity_type:
            events = audit_recorder.query_by_entity(db, entity_type, entity_id, limit)
        elif action:
            events = audit_recorder.query_by_action(db, action, limit)
        else:
            events = audit_recorder.query_recent(db, limit)
    return [to_audit_out(e) for e in events]


@router.get("/statistics", response_model=AuditStatisticsOut)
def audit_statistics(
    actor_id: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    authz: AuthorizationService = Depends(get_authorization_service),
):
    authz.require_minimum_rank(caller, settings.ADMIN_TIER_MIN_RANK)
    with storage_errors(db):
        return audit_recorder.statistics(db, actor_id, entity_type, start, end)


@router.get("/dead-letter", response_model=DeadLetterOut)
def audit_dead_letter(
    caller: Caller = Depends(get_caller),
    authz: AuthorizationService = Depends(get_authorization_service),
):
    """Audit payloads that could not be appended."""
    authz.require_minimum_rank(caller, authz.directory.highest_rank)
    return audit_dispatcher.dead_letter.snapshot()


@router.delete("/{event_id}")
def delete_audit_event(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Always rejected: audit events are append-only."""
    audit_recorder.delete(db, event_id)


@router.post("/{event_id}/deactivate")
def deactivate_audit_event(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Always rejected: audit events have no lifecycle."""
    audit_recorder.deactivate(db, event_id)
