"""Access Core CLI tool (accessctl)."""

import typer
from sqlalchemy.engine import make_url

app = typer.Typer(name="accessctl", help="Access Core CLI")
db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


def _server_connection():
    """Connect to the MySQL server named in DATABASE_URL, without selecting a database."""
    import pymysql
    from access_core.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"❌ DATABASE_URL is not a MySQL URL ({url.drivername})", err=True)
        raise typer.Exit(code=1)
    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    return conn, url.database


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    conn, db_name = _server_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.commit()
        typer.echo(f"✅ Database '{db_name}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables."""
    import access_core.models  # noqa: F401  registers mappers
    from access_core.db.base import Base
    from access_core.db.session import engine

    Base.metadata.create_all(bind=engine)
    typer.echo("✅ Tables created")


@db_app.command("seed")
def db_seed():
    """Seed roles and the super-admin account."""
    from access_core.db.session import SessionLocal
    from access_core.db.seeds.seed_roles import seed_roles
    from access_core.db.seeds.seed_super_admin import seed_super_admin

    db = SessionLocal()
    try:
        seed_roles(db)
        seed_super_admin(db)
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@app.command("roles")
def list_roles():
    """Print the role directory as the service would load it."""
    from access_core.db.session import SessionLocal
    from access_core.services.role_directory import RoleDirectory

    db = SessionLocal()
    try:
        directory = RoleDirectory.from_session(db)
    finally:
        db.close()
    for d in directory.definitions():
        typer.echo(f"  [{d.rank}] {d.name} ({d.organization})")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("access_core.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
