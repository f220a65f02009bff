from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import make_url

from wgdash.observability import configure_logging
from wgdash.settings import get_settings

logger = logging.getLogger("wgdash.cli.migrate_db")


def _alembic_ini() -> Path:
    path = Path(os.getenv("WGDASH_ALEMBIC_INI") or "alembic.ini")
    if not path.is_absolute():
        path = Path.cwd() / path
    if not path.exists():
        raise RuntimeError(f"alembic.ini not found: {path} (set WGDASH_ALEMBIC_INI)")
    return path


def _alembic_config(*, database_url: str) -> Config:
    cfg = Config(str(_alembic_ini()))
    # ConfigParser interpolation: a literal % in the URL must be doubled.
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return cfg


def migrate_db() -> None:
    """Apply Alembic migrations up to head (creates the schema on an empty database)."""
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required")

    command.upgrade(_alembic_config(database_url=settings.database_url), "head")
    # Only the backend name: the URL may carry credentials.
    logger.info("db_migrated backend=%s", make_url(settings.database_url).get_backend_name())


def main() -> None:
    configure_logging(get_settings().log_level)
    migrate_db()


if __name__ == "__main__":
    main()
