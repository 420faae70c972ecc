"""Database engine, session factory, and dependency injection."""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from access_core.core.config import settings
from access_core.core.exceptions import ConflictError, StorageUnavailableError


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 40,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_options(settings.DATABASE_URL),
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def storage_errors(db: Session) -> Iterator[None]:
    """Translate persistence failures into the core's error taxonomy.

    The session is rolled back before the translated error propagates.
    """
    try:
        yield
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError("Record was modified concurrently, retry the operation") from exc
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Record conflicts with an existing record") from exc
    except (OperationalError, DBAPIError) as exc:
        db.rollback()
        raise StorageUnavailableError() from exc
