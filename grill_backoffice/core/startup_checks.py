from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from grill_backoffice.core import config

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"
WEBHOOKS_PREFIX = "[WEBHOOKS]"


def validate_database_environment() -> None:
    if config.IS_PROD and config.DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def validate_webhook_configuration() -> None:
    if config.IS_PROD:
        if not config.SQUARE_WEBHOOK_SIGNATURE_KEY:
            logger.critical("%s SQUARE_WEBHOOK_SIGNATURE_KEY is required in production", WEBHOOKS_PREFIX)
            raise RuntimeError("SQUARE_WEBHOOK_SIGNATURE_KEY is required in production")
        if config.ALLOW_UNVERIFIED_WEBHOOKS:
            logger.critical("%s ALLOW_UNVERIFIED_WEBHOOKS is forbidden in production", WEBHOOKS_PREFIX)
            raise RuntimeError("ALLOW_UNVERIFIED_WEBHOOKS is forbidden in production")
        return

    if config.ALLOW_UNVERIFIED_WEBHOOKS:
        logger.warning("%s webhook signature verification disabled by ALLOW_UNVERIFIED_WEBHOOKS", WEBHOOKS_PREFIX)
    elif not config.SQUARE_WEBHOOK_SIGNATURE_KEY:
        logger.warning("%s SQUARE_WEBHOOK_SIGNATURE_KEY not set; webhooks will be rejected", WEBHOOKS_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if config.IS_TEST:
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
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
