# src/gym_floor/scripts/migrate.py
"""Upgrade the configured database to the latest schema revision."""
from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from gym_floor.core.settings import settings

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def build_config(url: str | None = None) -> Config:
    """Return an Alembic config pointed at the project's migrations folder."""
    cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    # Sync driver URL for Alembic (asyncpg -> psycopg)
    cfg.set_main_option("sqlalchemy.url", url or settings.database_url_sync)
    return cfg


def run_upgrade_head(url: str | None = None) -> None:
    command.upgrade(build_config(url), "head")


if __name__ == "__main__":
    run_upgrade_head()
