import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import (
    CORS_ALLOW_ORIGIN_REGEX,
    CORS_ORIGINS,
    DATABASE_URL,
    DEV_ADMIN_EMAIL,
    DEV_ADMIN_NAME,
    DEV_ADMIN_PASSWORD,
)
from app.core.database import Base, SessionLocal, engine
from app.core.error_handlers import register_error_handlers
from app.core.logging_setup import configure_logging
from app.core.startup_checks import ensure_migrations_applied, validate_database_environment, validate_secrets
from app.core.tenant_settings import init_tenant_settings
from app.middleware.observability import ObservabilityMiddleware
import app.models  # models must be imported before create_all

from app.models.user import User, UserRole
from app.routers.auth import router as auth_router
from app.routers.orders import router as orders_router
from app.routers.payments import router as payments_router
from app.routers.platform_admin import router as platform_admin_router
from app.routers.tenant import router as tenant_router
from app.services.auth import hash_password, password_looks_hashed
from app.services.event_handlers import register_event_handlers
from app.services.security_events import security_events

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield
    security_events.stop()


app = FastAPI(
    title="White Label Restaurants API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

register_error_handlers(app)
register_event_handlers()


def _resolve_admin_password_hash(password: str) -> str:
    if password_looks_hashed(password):
        logger.info("%s password already hashed; storing as-is", BOOTSTRAP_PREFIX)
        return password
    return hash_password(password)


def _bootstrap_platform_admin() -> None:
    if not DEV_ADMIN_PASSWORD:
        logger.warning("%s skipped: configure DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    email = DEV_ADMIN_EMAIL.lower()
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            if UserRole.parse(existing.role) is not UserRole.PLATFORM_ADMIN:
                logger.error("%s email taken by a non-admin account id=%s", BOOTSTRAP_PREFIX, existing.id)
            else:
                logger.info("%s exists id=%s email=%s", BOOTSTRAP_PREFIX, existing.id, existing.email)
            return

        admin = User(
            name=DEV_ADMIN_NAME,
            email=email,
            password_hash=_resolve_admin_password_hash(DEV_ADMIN_PASSWORD),
            role=UserRole.PLATFORM_ADMIN.value,
            is_active=True,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info("%s created success id=%s email=%s", BOOTSTRAP_PREFIX, admin.id, admin.email)
    except Exception:
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        validate_secrets()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        init_tenant_settings()
        _bootstrap_platform_admin()
        security_events.start()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(tenant_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(platform_admin_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
