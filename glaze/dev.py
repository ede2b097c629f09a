"""
Development entrypoint.

Run a schema module against a local database:

    DATABASE_URL=postgres://postgres@localhost:5432/glaze_blog GLAZE_SCHEMA=examples.blog.schema glaze-dev
"""

import logging
import pkgutil
import sys

from glaze import GLAZE_VERSION
from glaze.core.config import Settings, get_settings
from glaze.core.errors import ConfigurationError
from glaze.logging.logging_config import create_logger
from glaze.main import GlazeServer, glaze

BANNER_WIDTH = 41

MISSING_DATABASE_HELP = """DATABASE_URL is required.

Run with:
  DATABASE_URL=postgres://postgres@localhost:5432/glaze_blog glaze-dev

Or create a .env file:
  DATABASE_URL=postgres://postgres@localhost:5432/glaze_blog
"""

SCHEMA_PATH_HELP = (
    "GLAZE_SCHEMA must name an importable schema module or attribute, "
    "e.g. GLAZE_SCHEMA=examples.blog.schema"
)


def format_banner(port: int, prefix: str = "/api", version: str = GLAZE_VERSION) -> str:
    api = f"http://localhost:{port}{prefix}"
    title = f"Glaze v{version}"
    lines = [
        "┌" + "─" * 53 + "┐",
        f"│  {title.ljust(51)}│",
        "├" + "─" * 53 + "┤",
        f"│  API:     {api.ljust(BANNER_WIDTH)} │",
        f"│  Health:  {(api + '/health').ljust(BANNER_WIDTH)} │",
        f"│  Ready:   {(api + '/ready').ljust(BANNER_WIDTH)} │",
        "└" + "─" * 53 + "┘",
    ]
    return "\n".join(lines)


def start_dev_server(server: GlazeServer, port: int | None = None, logger: logging.Logger | None = None) -> None:
    final_port = port if port is not None else server.config.port
    logger = logger or server.app.state.logger
    logger.info("\n" + format_banner(final_port, server.config.prefix), extra={"event": "dev_server_banner"})
    server.start(final_port)


def main(settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    try:
        logger = create_logger(settings=settings)
    except ValueError as exc:
        print(f"\nGlaze failed to start: {exc}\n", file=sys.stderr)
        return 1

    if not settings.resolved_database_url:
        logger.error(MISSING_DATABASE_HELP, extra={"event": "database_url_missing"})
        return 1
    if not settings.schema_path:
        logger.error(SCHEMA_PATH_HELP, extra={"event": "schema_path_missing"})
        return 1

    try:
        schema = pkgutil.resolve_name(settings.schema_path)
    except (ImportError, AttributeError, ValueError) as exc:
        logger.error(
            "Could not import GLAZE_SCHEMA %r: %s\n%s",
            settings.schema_path,
            exc,
            SCHEMA_PATH_HELP,
            extra={"event": "schema_import_failed"},
        )
        return 1

    try:
        server = glaze(
            {"database": settings.resolved_database_url, "schema": schema, "port": settings.port},
            logger=logger,
            settings=settings,
        )
    except ConfigurationError:
        return 1

    start_dev_server(server, settings.port, logger)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
