"""
Migration Runner - Applies pending Alembic migrations at application startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP=true. Alembic's command API is
synchronous, so the asyncpg URL is swapped for psycopg2.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from loyalty.config import settings
from loyalty.observability.logging import get_logger

logger = get_logger(__name__)

# alembic.ini lives at the project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current and head revision of the schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def sync_database_url(url: str | None = None) -> str:
    """Synchronous (psycopg2) form of the configured database URL."""
    return (url or settings.database_url).replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def check_migrations_status() -> MigrationStatus:
    """Compare the database revision with the newest migration script."""
    alembic_cfg = _alembic_config()
    engine = create_engine(sync_database_url())
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Upgrade the schema to head if it is behind.

    Raises:
        RuntimeError: A migration failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        status = check_migrations_status()
        if not status.pending:
            logger.info("schema_up_to_date", revision=status.current_revision)
            return

        logger.info(
            "migrations_starting",
            from_revision=status.current_revision,
            to_revision=status.head_revision,
        )
        command.upgrade(_alembic_config(), "head")

        logger.info("migrations_complete", revision=check_migrations_status().current_revision)

    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
