"""Blog example development server."""

import sys

from glaze.core.config import get_settings
from glaze.dev import MISSING_DATABASE_HELP, start_dev_server
from glaze.logging.logging_config import create_logger
from glaze.main import glaze

from examples.blog import schema


def main() -> None:
    settings = get_settings()
    logger = create_logger(settings=settings)

    if not settings.resolved_database_url:
        logger.error(MISSING_DATABASE_HELP, extra={"event": "database_url_missing"})
        sys.exit(1)

    server = glaze(
        {"database": settings.resolved_database_url, "schema": schema},
        logger=logger,
        settings=settings,
    )
    start_dev_server(server, settings.port, logger)


if __name__ == "__main__":
    main()
