"""Celery app and tasks for fire-and-forget audit delivery."""

from celery import Celery
from access_core.core.config import settings

celery_app = Celery(
    "access_core",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_acks_late=True,
    task_soft_time_limit=30,
    task_time_limit=60,
)


@celery_app.task(bind=True, name="append_audit_event", max_retries=3, default_retry_delay=5)
def append_audit_event(self, payload: dict) -> int:
    """Persist one audit payload produced by AuditDispatcher.emit.

    Storage outages are retried; anything else, or running out of retries,
    lands in the worker's dead-letter buffer.
    """
    from access_core.core.exceptions import StorageUnavailableError
    from access_core.db.session import SessionLocal, storage_errors
    from access_core.services.audit_service import audit_dispatcher, audit_recorder

    db = SessionLocal()
    try:
        with storage_errors(db):
            event = audit_recorder.append(db, **payload)
            db.commit()
            return event.id
    except StorageUnavailableError as exc:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc)
        audit_dispatcher.record_failure(payload, exc)
        raise
    except Exception as exc:
        db.rollback()
        audit_dispatcher.record_failure(payload, exc)
        raise
    finally:
        db.close()
