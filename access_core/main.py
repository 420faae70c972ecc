"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from access_core.core.config import settings
from access_core.core.middleware import setup_middleware
from access_core.core.exceptions import AccessCoreError, PermissionDeniedError, StorageUnavailableError
from access_core.db.session import SessionLocal
from access_core.services.role_directory import RoleDirectory

from access_core.api.accounts import router as accounts_router
from access_core.api.audit import router as audit_router
from access_core.api.me import router as me_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("access_core")


def load_role_directory() -> RoleDirectory:
    """Read the role table once; the built-in directory stands in when it is unreachable."""
    db = SessionLocal()
    try:
        return RoleDirectory.from_session(db)
    except Exception as e:
        logger.warning(f"⚠️  Role table not available, using built-in roles: {e}")
        return RoleDirectory.default()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("🚀 Starting Access Core API")
    if getattr(app.state, "role_directory", None) is None:
        app.state.role_directory = load_role_directory()
    logger.info("✅ Role directory ready (%d roles)", len(app.state.role_directory.definitions()))

    yield

    logger.info("🔻 Shutting down Access Core API")


app = FastAPI(
    title="Access Core API",
    description="Role-based access control and account lifecycle for the admin panel",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(AccessCoreError)
async def access_core_exception_handler(request: Request, exc: AccessCoreError):
    content = {"detail": exc.message}
    headers = None
    if isinstance(exc, PermissionDeniedError):
        content["constraint"] = exc.constraint
    if isinstance(exc, StorageUnavailableError):
        headers = {"Retry-After": "1"}
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# Register routers
app.include_router(me_router, prefix="/api")
app.include_router(accounts_router, prefix="/api")
app.include_router(audit_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
