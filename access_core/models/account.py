"""Account model: the managed user record."""

import uuid

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, CheckConstraint,
    and_, event, false, func, not_, true,
)
from sqlalchemy.orm import relationship

from access_core.core.exceptions import InvalidLifecycleStateError
from access_core.db.base import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Account(Base):
    """Any person with system access.

    Lifecycle is carried by the (active, exists) pair:

    * (True, True)   visible-active
    * (False, True)  visible-inactive
    * (False, False) archived

    (True, False) is never persisted.
    """
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)

    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True, index=True)
    role_name = Column(String(50), nullable=True)  # legacy denormalized role

    client_id = Column(String(36), nullable=True, index=True)
    department_id = Column(String(36), nullable=True, index=True)

    active = Column(Boolean, default=True, nullable=False)
    exists = Column("exists", Boolean, default=True, nullable=False, index=True)

    created_by = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    modified_by = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
    version = Column(Integer, nullable=False)

    role = relationship("Role", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    @property
    def lifecycle_state(self) -> str:
        if self.exists and self.active:
            return "visible_active"
        if self.exists:
            return "visible_inactive"
        return "archived"

    @property
    def is_archived(self) -> bool:
        return not self.exists


Account.__table__.append_constraint(
    CheckConstraint(
        not_(and_(Account.__table__.c.active == true(), Account.__table__.c["exists"] == false())),
        name="ck_accounts_lifecycle",
    )
)


@event.listens_for(Account, "before_insert")
@event.listens_for(Account, "before_update")
def _reject_invalid_lifecycle(mapper, connection, target: Account) -> None:
    active = True if target.active is None else target.active
    exists = True if target.exists is None else target.exists
    if active and not exists:
        raise InvalidLifecycleStateError()
