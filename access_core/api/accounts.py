"""Accounts API router: scoped listing and lifecycle transitions."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from access_core.api.deps import get_account_service, get_caller, get_lifecycle_service
from access_core.core.config import settings
from access_core.db.session import get_db
from access_core.models.account import Account
from access_core.schemas.schemas import (
    AccountCreateRequest, AccountListResponse, AccountOut, AccountStatisticsOut,
    AccountUpdateRequest, ReasonRequest, StatusChangeRequest,
)
from access_core.services.account_service import AccountService
from access_core.services.authorization_service import AuthorizationService, Caller
from access_core.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/accounts", tags=["accounts"])


def to_account_out(account: Account, authz: AuthorizationService) -> AccountOut:
    return AccountOut(
        id=account.id,
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        role=authz.resolve_role(account),
        client_id=account.client_id,
        department_id=account.department_id,
        active=account.active,
        exists=account.exists,
        last_login_at=account.last_login_at,
        created_at=account.created_at,
        updated_at=account.updated_at,
        created_by=account.created_by,
        modified_by=account.modified_by,
    )


@router.get("/", response_model=AccountListResponse)
def list_accounts(
    role: Optional[str] = Query(None),
    organization: Optional[str] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    active: Optional[bool] = Query(None),
    client_id: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    sort: Optional[str] = Query(None),
    direction: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    accounts: AccountService = Depends(get_account_service),
):
    """List accounts visible to the caller."""
    result = accounts.list_accounts(
        db, caller,
        target_role=role,
        organization=organization,
        filters={
            "active": active,
            "client_id": client_id,
            "department_id": department_id,
            "created_after": created_after,
            "created_before": created_before,
        },
        search=q,
        page=page,
        limit=min(limit, settings.MAX_PAGE_SIZE),
        sort_field=sort,
        sort_direction=direction,
    )
    result["accounts"] = [to_account_out(a, accounts.authz) for a in result["accounts"]]
    return result


@router.get("/statistics", response_model=AccountStatisticsOut)
def account_statistics(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    accounts: AccountService = Depends(get_account_service),
):
    """Totals and role distribution within the caller's scope."""
    return accounts.account_statistics(db, caller)


@router.get("/{account_id}", response_model=AccountOut)
def get_account(
    account_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    accounts: AccountService = Depends(get_account_service),
):
    return to_account_out(accounts.get_account(db, caller, account_id), accounts.authz)


@router.post("/", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
def create_account(
    body: AccountCreateRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Create an account in the visible-active state."""
    account = lifecycle.create_account(db, caller, **body.model_dump())
    return to_account_out(account, lifecycle.authz)


@router.put("/{account_id}", response_model=AccountOut)
def update_account(
    account_id: str,
    body: AccountUpdateRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    account = lifecycle.update_account(db, caller, account_id, body.model_dump(exclude_unset=True))
    return to_account_out(account, lifecycle.authz)


@router.patch("/{account_id}/status", response_model=AccountOut)
def toggle_status(
    account_id: str,
    body: StatusChangeRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Activate or deactivate without ever archiving."""
    account = lifecycle.toggle_status(db, caller, account_id, body.active, body.reason)
    return to_account_out(account, lifecycle.authz)


@router.post("/{account_id}/deactivate", response_model=AccountOut)
def deactivate_account(
    account_id: str,
    body: Optional[ReasonRequest] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    account = lifecycle.deactivate(db, caller, account_id, body.reason if body else None)
    return to_account_out(account, lifecycle.authz)


@router.post("/{account_id}/reactivate", response_model=AccountOut)
def reactivate_account(
    account_id: str,
    body: Optional[ReasonRequest] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    account = lifecycle.reactivate(db, caller, account_id, body.reason if body else None)
    return to_account_out(account, lifecycle.authz)


@router.delete("/{account_id}", response_model=AccountOut)
def archive_account(
    account_id: str,
    reason: Optional[str] = Query(None, max_length=500),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Archive an account. Superadmin only; there is no way back."""
    account = lifecycle.archive(db, caller, account_id, reason)
    return to_account_out(account, lifecycle.authz)
