from collections.abc import Generator, Mapping
from dataclasses import dataclass
import logging
from pathlib import Path
import time

from sqlalchemy import MetaData, Table, create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from glaze.core.config import GlazeConfig, POSTGRES_URL_PREFIXES

DRIVER_URL_PREFIX = "postgresql+psycopg2://"


def to_sqlalchemy_url(database: str) -> str:
    for prefix in POSTGRES_URL_PREFIXES:
        if database.startswith(prefix):
            return DRIVER_URL_PREFIX + database[len(prefix):]
    return database


@dataclass
class DatabaseHandle:
    engine: Engine
    session_factory: sessionmaker
    tables: Mapping[str, Table]

    @classmethod
    def for_engine(cls, engine: Engine, tables: Mapping[str, Table]) -> "DatabaseHandle":
        factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
        return cls(engine=engine, session_factory=factory, tables=dict(tables))

    @property
    def metadata(self) -> list[MetaData]:
        seen: list[MetaData] = []
        for table in self.tables.values():
            if not any(table.metadata is known for known in seen):
                seen.append(table.metadata)
        return seen

    def get_db(self) -> Generator[Session, None, None]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def ping(self) -> None:
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


def create_database_engine(database: str, tables: Mapping[str, Table]) -> DatabaseHandle:
    engine = create_engine(to_sqlalchemy_url(database), pool_pre_ping=True)
    return DatabaseHandle.for_engine(engine, tables)


def push_schema(
    handle: DatabaseHandle,
    logger: logging.Logger,
    attempts: int = 10,
    delay_seconds: float = 2,
) -> None:
    """Create any missing schema tables directly, without migration files."""
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            for metadata in handle.metadata:
                selected = [table for table in handle.tables.values() if table.metadata is metadata]
                metadata.create_all(bind=handle.engine, tables=selected)
            logger.info(
                "Schema pushed to database",
                extra={"event": "schema_pushed", "tables": sorted(handle.tables)},
            )
            return
        except SQLAlchemyError as exc:
            last_error = exc
            logger.warning(
                "Schema push attempt failed",
                extra={
                    "event": "schema_push_retry",
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(exc).split("\n")[0],
                },
            )
            if attempt < attempts:
                time.sleep(delay_seconds)

    raise RuntimeError(f"Schema push failed after {attempts} attempts: {last_error}")


def check_migrations(handle: DatabaseHandle, config: GlazeConfig, logger: logging.Logger) -> bool:
    """Report whether the migrations folder and bookkeeping table are in place.

    Returns False when anything is missing or cannot be checked; the server
    still starts and /ready keeps reporting database connectivity.
    """
    if config.skip_migration_checks:
        logger.info("Skipping pending migration checks", extra={"event": "migration_checks_skipped"})
        return True

    ready = True
    folder = Path(config.migrations_folder)
    if not folder.is_dir():
        ready = False
        logger.warning(
            "Migrations folder not found",
            extra={"event": "migrations_folder_missing", "folder": str(folder)},
        )

    try:
        has_table = inspect(handle.engine).has_table(
            config.migrations_table, schema=config.migrations_schema
        )
    except SQLAlchemyError as exc:
        logger.warning(
            "Could not check migrations table",
            extra={"event": "migrations_check_failed", "error": str(exc).split("\n")[0]},
        )
        return False

    if not has_table:
        ready = False
        logger.warning(
            "Migrations table not found; run your migrations before serving traffic",
            extra={
                "event": "migrations_table_missing",
                "table": f"{config.migrations_schema}.{config.migrations_table}",
            },
        )
    return ready


def prepare_database(
    handle: DatabaseHandle,
    config: GlazeConfig,
    logger: logging.Logger,
    attempts: int = 10,
    delay_seconds: float = 2,
) -> None:
    if config.is_push:
        push_schema(handle, logger, attempts=attempts, delay_seconds=delay_seconds)
    else:
        check_migrations(handle, config, logger)
