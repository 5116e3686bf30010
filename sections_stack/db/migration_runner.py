"""
Migration Runner - Applies pending Alembic migrations at application startup.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sections_stack.config import settings

logger = logging.getLogger(__name__)

# alembic.ini lives at the project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs. head revision of the schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def sync_database_url(url: str) -> str:
    """Alembic's command API is synchronous: swap asyncpg for psycopg2."""
    return url.replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option(
        "sqlalchemy.url", sync_database_url(settings.database_url).replace("%", "%%")
    )
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Only upgrades when the database is behind the newest script.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("Alembic config not found at %s, skipping migrations", ALEMBIC_INI_PATH)
        return

    try:
        alembic_cfg = _alembic_config()
        engine = create_engine(sync_database_url(settings.database_url))

        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info("Database schema is up to date (revision: %s)", current)
                return

            logger.info("Running migrations from %s to %s", current, head)
            command.upgrade(alembic_cfg, "head")

            new_current = _get_current_revision(engine)
            logger.info("Migrations complete. Database now at revision: %s", new_current)

        finally:
            engine.dispose()

    except Exception as e:
        logger.error("Migration failed: %s", e)
        raise RuntimeError(f"Database migration failed: {e}") from e


def check_migrations_status() -> MigrationStatus:
    """Report migration status without applying anything."""
    alembic_cfg = _alembic_config()
    engine = create_engine(sync_database_url(settings.database_url))
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()
