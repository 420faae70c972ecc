"""Role directory: immutable role name → rank/organization table."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from access_core.models.role import Role

logger = logging.getLogger("access_core.roles")

SUPERADMIN = "superadmin"
ADMIN = "admin"
CLIENT = "client"
DEPARTMENT_MANAGER = "department_manager"
EMPLOYEE = "employee"
EMPLOYEE_AMEXING = "employee_amexing"
DRIVER = "driver"
GUEST = "guest"

ORG_AMEXING = "amexing"
ORG_CLIENT = "client"
ORG_EXTERNAL = "external"


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    rank: int
    organization: str
    description: Optional[str] = None


DEFAULT_ROLES: Tuple[RoleDefinition, ...] = (
    RoleDefinition(SUPERADMIN, 7, ORG_AMEXING, "Full platform access"),
    RoleDefinition(ADMIN, 6, ORG_AMEXING, "Platform administration"),
    RoleDefinition(CLIENT, 5, ORG_CLIENT, "Client company administrator"),
    RoleDefinition(DEPARTMENT_MANAGER, 4, ORG_CLIENT, "Client department manager"),
    RoleDefinition(EMPLOYEE, 3, ORG_CLIENT, "Client company employee"),
    RoleDefinition(EMPLOYEE_AMEXING, 3, ORG_AMEXING, "Platform operator staff"),
    RoleDefinition(DRIVER, 2, ORG_AMEXING, "Driver"),
    RoleDefinition(GUEST, 1, ORG_EXTERNAL, "Guest access"),
)


class RoleDirectory:
    """Read-only snapshot of the role table.

    Built once at startup and passed to the services that need it; nothing
    looks roles up from global state at decision time.
    """

    def __init__(self, definitions: Iterable[RoleDefinition]):
        table: Dict[str, RoleDefinition] = {}
        for definition in definitions:
            if definition.name in table:
                raise ValueError(f"Duplicate role definition: {definition.name}")
            table[definition.name] = definition
        self._table: Mapping[str, RoleDefinition] = MappingProxyType(table)

    @classmethod
    def default(cls) -> "RoleDirectory":
        return cls(DEFAULT_ROLES)

    @classmethod
    def from_session(cls, db: Session) -> "RoleDirectory":
        """Load the directory from the roles table, falling back to the defaults."""
        rows = db.query(Role).order_by(Role.rank.desc()).all()
        if not rows:
            logger.warning("Role table is empty, using built-in role directory")
            return cls.default()
        return cls(
            RoleDefinition(
                name=r.name,
                rank=r.rank,
                organization=getattr(r.organization, "value", r.organization),
                description=r.description,
            )
            for r in rows
        )

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def get(self, name: Optional[str]) -> Optional[RoleDefinition]:
        if name is None:
            return None
        return self._table.get(name)

    def rank(self, name: Optional[str]) -> int:
        """Rank of a role, 0 for unknown names."""
        definition = self.get(name)
        return definition.rank if definition else 0

    def organization(self, name: Optional[str]) -> Optional[str]:
        definition = self.get(name)
        return definition.organization if definition else None

    def names_in(self, organization: str) -> Tuple[str, ...]:
        return tuple(d.name for d in self._table.values() if d.organization == organization)

    def names_below(self, rank: int) -> Tuple[str, ...]:
        return tuple(d.name for d in self._table.values() if d.rank < rank)

    @property
    def highest_rank(self) -> int:
        return max((d.rank for d in self._table.values()), default=0)

    def definitions(self) -> Tuple[RoleDefinition, ...]:
        return tuple(sorted(self._table.values(), key=lambda d: (-d.rank, d.name)))
