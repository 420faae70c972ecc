"""Role model for RBAC."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum, func
from access_core.db.base import Base


class OrganizationEnum(str, enum.Enum):
    amexing = "amexing"
    client = "client"
    external = "external"


class Role(Base):
    """Named permission tier with an immutable rank and owning organization."""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False, index=True)
    rank = Column(Integer, nullable=False)
    organization = Column(Enum(OrganizationEnum), nullable=False, index=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
