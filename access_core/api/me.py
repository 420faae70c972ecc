"""Caller profile and role directory endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from access_core.api.accounts import to_account_out
from access_core.api.deps import get_authorization_service, get_caller
from access_core.core.config import settings
from access_core.schemas.schemas import AccountOut, RoleOut
from access_core.services.authorization_service import AuthorizationService, Caller

router = APIRouter(tags=["me"])


@router.get("/me", response_model=AccountOut)
def get_me(
    caller: Caller = Depends(get_caller),
    authz: AuthorizationService = Depends(get_authorization_service),
):
    """Get the caller's own account."""
    out = to_account_out(caller.account, authz)
    out.role = authz.resolve_role(caller)
    return out


@router.get("/roles", response_model=List[RoleOut])
def list_roles(
    caller: Caller = Depends(get_caller),
    authz: AuthorizationService = Depends(get_authorization_service),
):
    """Role directory. Ranks are internal, so admin tier only."""
    authz.require_minimum_rank(caller, settings.ADMIN_TIER_MIN_RANK)
    return [
        RoleOut(name=d.name, rank=d.rank, organization=d.organization, description=d.description)
        for d in authz.directory.definitions()
    ]
