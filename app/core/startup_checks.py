from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.core.config import DATABASE_URL, IS_PROD, JWT_REFRESH_SECRET_KEY, JWT_SECRET_KEY, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"
CONFIG_PREFIX = "[CONFIG]"


def _runtime_env() -> str:
    return os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()


def validate_database_environment() -> None:
    if _runtime_env() in {"prod", "production"} and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def validate_secrets() -> None:
    if IS_PROD and (not JWT_SECRET_KEY or not JWT_REFRESH_SECRET_KEY):
        logger.critical("%s JWT secrets must be configured in production", CONFIG_PREFIX)
        raise RuntimeError("JWT_SECRET_KEY and JWT_REFRESH_SECRET_KEY are required in production")
    if not STRIPE_SECRET_KEY:
        logger.warning("%s STRIPE_SECRET_KEY not set; card payments are disabled", CONFIG_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if _runtime_env() == "test":
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
        return
    if DATABASE_URL.startswith("sqlite"):
        logger.info("%s skipped migration check for sqlite (schema created from models)", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    alembic_cfg = Config(str(alembic_config_path))
    script_directory = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        inspector = inspect(connection)
        if "alembic_version" not in inspector.get_table_names():
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")

        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s migration state verified", MIGRATIONS_PREFIX)
