"""Apply Alembic migrations once the configured database accepts connections.

Deploys run this before the API starts so the schema always matches the ORM
models in ``study_planner.db.models``. With ``--check`` it only compares the
database revision with the newest migration and exits 2 when they differ.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("study_planner.migrations")
DATABASE_URL_ENV = "STUDY_PLANNER_DATABASE_URL"
DEFAULT_TIMEOUT = int(os.getenv("STUDY_PLANNER_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("STUDY_PLANNER_DB_MIGRATION_POLL_INTERVAL", "3"))
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run study planner migrations after a readiness probe.")
    parser.add_argument(
        "--revision",
        default=os.getenv("STUDY_PLANNER_DB_MIGRATION_REVISION", "head"),
        help="Revision to upgrade to (default: head).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the database (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between readiness probes (default: {DEFAULT_POLL_INTERVAL}).",
    )
    parser.add_argument(
        "--config",
        default=str(BACKEND_ROOT / "alembic.ini"),
        help="Path to alembic.ini.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether the schema is at the head revision; exit 2 when it is behind.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """Prefer an explicit ``sqlalchemy.url``; fall back to the environment."""
    url = config.get_main_option("sqlalchemy.url")
    if url and not url.startswith("%("):
        return url
    env_url = os.getenv(DATABASE_URL_ENV)
    if not env_url:
        raise RuntimeError(f"{DATABASE_URL_ENV} must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url.replace("%", "%%"))
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    deadline = time.time() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None

    try:
        engine = create_engine(database_url, pool_pre_ping=True)
        while True:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            if time.time() >= deadline:
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError("Database did not become ready in time.") from last_error


@dataclass(frozen=True)
class SchemaStatus:
    current: Optional[str]
    head: Optional[str]

    @property
    def up_to_date(self) -> bool:
        return self.current == self.head


def schema_status(config: Config, database_url: str) -> SchemaStatus:
    """Compare the revision stamped in the database with the newest script."""
    head = ScriptDirectory.from_config(config).get_current_head()
    engine = create_engine(database_url)
    try:
        with engine.connect() as connection:
            current = MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
    return SchemaStatus(current=current, head=head)


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    LOGGER.info("Upgrading schema to %s (timeout=%ss poll=%ss)", revision, timeout, poll_interval)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    LOGGER.info("Migrations complete.")


def check_schema(*, timeout: int, poll_interval: float, config: Config) -> int:
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    status = schema_status(config, database_url)
    if status.up_to_date:
        LOGGER.info("Schema is at head (%s).", status.head)
        return 0
    LOGGER.warning("Schema is behind: database at %s, head is %s.", status.current, status.head)
    return 2


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("STUDY_PLANNER_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        config = get_alembic_config(args.config)
        if args.check:
            return check_schema(timeout=args.timeout, poll_interval=args.poll_interval, config=config)
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=config,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
