"""
Pytest fixtures for the access core.

Provides:
- A per-test SQLite database with the role directory seeded
- An account factory covering every role and lifecycle state
- Service instances wired to a fresh audit dead-letter buffer
- A TestClient with bearer tokens for any account
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUDIT_ASYNC"] = "false"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from access_core.core.config import settings
from access_core.db.base import Base
from access_core.db.seeds.seed_roles import seed_roles
from access_core.db.session import get_db
from access_core.models import Account, Role
from access_core.services.account_service import AccountService
from access_core.services.audit_service import AuditDeadLetter, AuditDispatcher
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.lifecycle_service import LifecycleService, RecordLocks
from access_core.services.role_directory import RoleDirectory


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'access_core.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_roles(session)
    yield session
    session.close()


@pytest.fixture
def directory():
    return RoleDirectory.default()


@pytest.fixture
def authz(directory):
    return AuthorizationService(directory)


@pytest.fixture
def dead_letter():
    return AuditDeadLetter(maxlen=50)


@pytest.fixture
def dispatcher(session_factory, dead_letter):
    return AuditDispatcher(session_factory, dead_letter)


@pytest.fixture
def account_service(authz, dispatcher):
    return AccountService(authz, audit=dispatcher)


@pytest.fixture
def lifecycle(authz, dispatcher):
    return LifecycleService(authz, audit=dispatcher, locks=RecordLocks())


@pytest.fixture
def make_account(db):
    """Factory: persist an account with the given role and state."""
    counter = {"n": 0}

    def _make(
        role="employee",
        client_id=None,
        department_id=None,
        active=True,
        exists=True,
        first_name=None,
        last_name="Tester",
        email=None,
        legacy_only=False,
    ):
        counter["n"] += 1
        n = counter["n"]
        role_ref = None if legacy_only else db.query(Role).filter(Role.name == role).first()
        account = Account(
            email=email or f"{role}{n}@example.com",
            first_name=first_name or f"{role.title()}{n}",
            last_name=last_name,
            role_id=role_ref.id if role_ref else None,
            role_name=role,
            client_id=client_id,
            department_id=department_id,
            active=active,
            exists=exists,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def caller_for():
    def _caller(account, explicit_role=None):
        return Caller(account=account, explicit_role=explicit_role, ip_address="127.0.0.1", user_agent="pytest")
    return _caller


@pytest.fixture
def superadmin(make_account):
    return make_account("superadmin")


@pytest.fixture
def admin(make_account):
    return make_account("admin")


@pytest.fixture
def client_admin(make_account):
    return make_account("client", client_id="client-a")


@pytest.fixture
def dept_manager(make_account):
    return make_account("department_manager", client_id="client-a", department_id="dept-1")


def make_token(account_id, role=None):
    payload = {"sub": account_id}
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    def _headers(account, role=None):
        return {"Authorization": f"Bearer {make_token(account.id, role)}"}
    return _headers


@pytest.fixture
def api_client(session_factory, db, directory, dispatcher, monkeypatch):
    """TestClient bound to the test database and a private audit dispatcher."""
    from access_core import main
    from access_core.api import deps

    monkeypatch.setattr(deps, "AccountService", lambda authz: AccountService(authz, audit=dispatcher))
    monkeypatch.setattr(deps, "LifecycleService", lambda authz: LifecycleService(authz, audit=dispatcher))

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.state.role_directory = directory
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()
