"""Seed the role directory into the database."""

from sqlalchemy.orm import Session
from access_core.models.role import OrganizationEnum, Role
from access_core.services.role_directory import DEFAULT_ROLES


def seed_roles(db: Session) -> None:
    """Insert default roles if they don't already exist. Existing rows are left untouched."""
    created = 0
    for definition in DEFAULT_ROLES:
        existing = db.query(Role).filter(Role.name == definition.name).first()
        if not existing:
            db.add(Role(
                name=definition.name,
                rank=definition.rank,
                organization=OrganizationEnum(definition.organization),
                description=definition.description,
            ))
            created += 1

    db.commit()
    print(f"✅ Seeded {created} roles ({len(DEFAULT_ROLES)} defined)")
