"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field, StrictBool
from typing import Optional, List, Dict, Any
from datetime import datetime


# ---- Roles ----
class RoleOut(BaseModel):
    name: str
    rank: int
    organization: str
    description: Optional[str] = None


# ---- Accounts ----
class AccountOut(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    client_id: Optional[str] = None
    department_id: Optional[str] = None
    active: bool
    exists: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    modified_by: Optional[str] = None

class AccountListResponse(BaseModel):
    accounts: List[AccountOut]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

class AccountCreateRequest(BaseModel):
    email: str = Field(..., min_length=3)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    role: str
    password: Optional[str] = None
    client_id: Optional[str] = None
    department_id: Optional[str] = None

class AccountUpdateRequest(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None

class StatusChangeRequest(BaseModel):
    active: StrictBool
    reason: Optional[str] = Field(None, max_length=500)

class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class AccountStatisticsOut(BaseModel):
    total: int
    active: int
    inactive: int
    role_distribution: Dict[str, int]


# ---- Audit ----
class AuditEventOut(BaseModel):
    id: int
    actor_id: str
    actor_role: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime

class AuditStatisticsOut(BaseModel):
    total: int
    by_action: Dict[str, int]

class DeadLetterOut(BaseModel):
    failures: int
    entries: List[Dict[str, Any]]
