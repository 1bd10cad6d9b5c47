"""Database engine and session management."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def create_db_engine(url: str) -> Engine:
    """Create a sync engine for the given database URL."""
    return create_engine(url, pool_pre_ping=True)


def create_session_factory(url: str) -> sessionmaker[Session]:
    """Create a session factory bound to a fresh engine."""
    return sessionmaker(bind=create_db_engine(url), expire_on_commit=False)


def run_migrations(url: str) -> None:
    """Apply Alembic migrations up to head."""
    alembic_cfg = Config(str(_ALEMBIC_INI))
    # Keep the process logging setup; alembic.ini would replace the root handlers.
    alembic_cfg.attributes["configure_logger"] = False
    # Escape percent-encoded credentials for configparser interpolation.
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations applied")

