"""Shared FastAPI dependencies: caller identity and service wiring."""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from access_core.core.exceptions import UnauthenticatedError
from access_core.core.security import read_credentials, security_scheme
from access_core.db.session import get_db, storage_errors
from access_core.models.account import Account
from access_core.services.account_service import AccountService
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.lifecycle_service import LifecycleService
from access_core.services.role_directory import RoleDirectory


def get_role_directory(request: Request) -> RoleDirectory:
    """The directory loaded at startup."""
    directory = getattr(request.app.state, "role_directory", None)
    if directory is None:
        directory = RoleDirectory.default()
        request.app.state.role_directory = directory
    return directory


def get_authorization_service(
    directory: RoleDirectory = Depends(get_role_directory),
) -> AuthorizationService:
    return AuthorizationService(directory)


def get_account_service(
    authz: AuthorizationService = Depends(get_authorization_service),
) -> AccountService:
    return AccountService(authz)


def get_lifecycle_service(
    authz: AuthorizationService = Depends(get_authorization_service),
) -> LifecycleService:
    return LifecycleService(authz)


async def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: Session = Depends(get_db),
) -> Caller:
    """Resolve the authenticated caller; inactive or archived accounts are rejected."""
    account_id, explicit_role = read_credentials(credentials)
    with storage_errors(db):
        account = (
            db.query(Account)
            .filter(Account.id == account_id, Account.active == True, Account.exists == True)
            .first()
        )
    if account is None:
        raise UnauthenticatedError("Not authenticated")
    return Caller(
        account=account,
        explicit_role=explicit_role,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent", "")[:500] or None,
    )
