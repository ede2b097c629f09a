from collections.abc import Callable, Mapping
from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI
from sqlalchemy import Table

from glaze import GLAZE_VERSION
from glaze.core.config import GlazeConfig, Settings, get_settings, resolve_config
from glaze.core.errors import ConfigurationError
from glaze.db.session import DatabaseHandle, create_database_engine, prepare_database
from glaze.logging.logging_config import create_child_logger, create_logger
from glaze.routers.content_router import build_content_router
from glaze.routers.system_router import build_system_router

EngineFactory = Callable[[str, Mapping[str, Table]], DatabaseHandle]


def create_glaze_server(
    partial: Mapping[str, Any] | GlazeConfig,
    *,
    engine_factory: EngineFactory = create_database_engine,
    logger: logging.Logger | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Resolve ``partial`` and build the FastAPI app serving it.

    Raises :class:`ConfigurationError` before any database handle is
    created when the configuration is invalid.
    """
    settings = settings or get_settings()

    try:
        config = resolve_config(partial, environment=settings.environment)
    except ConfigurationError as exc:
        (logger or create_logger(settings=settings)).error(
            "Startup configuration validation failed: %s",
            exc,
            extra={"event": "startup_config_invalid", "field": exc.field, "error": str(exc)},
        )
        raise

    logger = logger or create_logger(config.logger, settings=settings)
    logger.info(
        f"Glaze v{GLAZE_VERSION} starting",
        extra={"event": "api_starting", "strategy": config.strategy, "environment": settings.environment},
    )

    logger.info("Connecting to PostgreSQL", extra={"event": "db_connecting"})
    db = engine_factory(config.database, config.db_schema)
    prefix = config.prefix.rstrip("/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            prepare_database(db, config, logger)
            logger.info(
                f"Glaze v{GLAZE_VERSION} ready",
                extra={"event": "api_startup_complete", "prefix": config.prefix or "/"},
            )
            yield
        finally:
            db.dispose()

    app = FastAPI(title=settings.app_name, version=GLAZE_VERSION, lifespan=lifespan)
    app.state.config = config
    app.state.db = db
    app.state.logger = logger

    # Registered first so custom handlers win on a shared path and method.
    if config.custom_routes is not None:
        app.include_router(config.custom_routes, prefix=prefix)

    app.include_router(build_system_router(db, logger, GLAZE_VERSION), prefix=prefix)

    if config.content_api_enabled:
        app.include_router(
            build_content_router(
                db,
                config.db_schema,
                config.content_api_exclude,
                create_child_logger(logger, component="content_api"),
            ),
            prefix=prefix,
        )

    return app


class GlazeServer:
    """A Glaze FastAPI app bundled with its resolved configuration."""

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def config(self) -> GlazeConfig:
        return self.app.state.config

    async def __call__(self, scope, receive, send) -> None:
        await self.app(scope, receive, send)

    def start(self, port: int | None = None, host: str | None = None) -> "GlazeServer":
        import uvicorn

        final_port = port if port is not None else self.config.port
        uvicorn.run(self.app, host=host or get_settings().host, port=final_port, log_config=None)
        return self


def glaze(
    partial: Mapping[str, Any] | GlazeConfig,
    *,
    engine_factory: EngineFactory = create_database_engine,
    logger: logging.Logger | None = None,
    settings: Settings | None = None,
) -> GlazeServer:
    app = create_glaze_server(partial, engine_factory=engine_factory, logger=logger, settings=settings)
    return GlazeServer(app)
