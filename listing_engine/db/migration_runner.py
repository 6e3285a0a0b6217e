"""
Migration Runner - Applies pending Alembic migrations.

Alembic's command API is synchronous, so the async driver in DATABASE_URL is
swapped for its synchronous counterpart before connecting.
"""

from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import Engine, create_engine
from structlog import get_logger

from listing_engine.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"

_SYNC_DRIVERS = (
    ("postgresql+asyncpg://", "postgresql+psycopg2://"),
    ("postgres://", "postgresql+psycopg2://"),
    ("sqlite+aiosqlite://", "sqlite://"),
)


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        """True when the database is behind the newest migration."""
        return self.current_revision != self.head_revision


def sync_database_url(url: str | None = None) -> str:
    """Convert an async driver URL to the synchronous driver alembic uses."""
    url = url or settings.database_url
    for async_prefix, sync_prefix in _SYNC_DRIVERS:
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix) :]
    return url


def _alembic_config(sync_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


def check_migrations_status() -> MigrationStatus:
    """
    Check migration status without applying anything.

    Raises:
        FileNotFoundError: If alembic.ini is missing
    """
    if not ALEMBIC_INI_PATH.exists():
        raise FileNotFoundError(f"Alembic config not found at {ALEMBIC_INI_PATH}")

    sync_url = sync_database_url()
    engine = create_engine(sync_url)
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(_alembic_config(sync_url)),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Raises:
        RuntimeError: If a migration fails
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    sync_url = sync_database_url()
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)

    try:
        current = _get_current_revision(engine)
        head = _get_head_revision(alembic_cfg)
        if current == head:
            logger.info("database_schema_up_to_date", revision=current)
            return

        logger.info("migrations_starting", from_revision=current, to_revision=head)
        command.upgrade(alembic_cfg, "head")
        logger.info("migrations_complete", revision=_get_current_revision(engine))
    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()


if __name__ == "__main__":
    run_migrations()
