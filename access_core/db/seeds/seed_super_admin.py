"""Seed the super-admin account from env vars."""

from sqlalchemy.orm import Session
from access_core.models.account import Account
from access_core.models.role import Role
from access_core.core.security import hash_password
from access_core.core.config import settings
from access_core.services.role_directory import SUPERADMIN


def seed_super_admin(db: Session) -> None:
    """Create the super-admin account if not already present."""
    superadmin_role = db.query(Role).filter(Role.name == SUPERADMIN).first()
    if not superadmin_role:
        print(f"⚠️  {SUPERADMIN} role not found. Run seed_roles first.")
        return

    existing = db.query(Account).filter(Account.email == settings.SUPER_ADMIN_EMAIL).first()
    if existing:
        print(f"ℹ️  Super admin '{settings.SUPER_ADMIN_EMAIL}' already exists, skipping.")
        return

    admin = Account(
        email=settings.SUPER_ADMIN_EMAIL,
        hashed_password=hash_password(settings.SUPER_ADMIN_PASSWORD),
        first_name="Super",
        last_name="Admin",
        active=True,
        exists=True,
        role_id=superadmin_role.id,
        role_name=SUPERADMIN,
    )
    db.add(admin)
    db.commit()
    print(f"✅ Created super admin: {settings.SUPER_ADMIN_EMAIL}")
