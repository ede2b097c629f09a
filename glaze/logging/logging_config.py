import logging
import re
import sys
from typing import Any, TextIO

from pythonjsonlogger import jsonlogger

from glaze.core.config import PRODUCTION, Settings, get_settings
from glaze.core.schemas import LEVEL_ALIASES, LoggerOptions

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset({"password", "token", "api_key", "apikey", "secret", "database_url"})

# user:password@ inside connection URLs
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)(?P<user>[^:/@\s]+):[^@\s/]+@")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "silent": logging.CRITICAL + 10,
}


# Attributes every LogRecord carries; anything else came in through extra.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def redact_url_credentials(text: str) -> str:
    return _URL_CREDENTIALS.sub(rf"\g<scheme>\g<user>:{REDACTED}@", text)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, str):
        return redact_url_credentials(value)
    return value


class RedactingFilter(logging.Filter):
    """Masks secrets in log extras and credentials embedded in URLs."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_url_credentials(record.getMessage())
        record.args = ()
        for key, value in list(record.__dict__.items()):
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, REDACTED)
            elif isinstance(value, dict):
                setattr(record, key, _redact(value))
            elif isinstance(value, str) and key not in _RECORD_ATTRS:
                setattr(record, key, redact_url_credentials(value))
        return True


def _level_for(options: LoggerOptions, settings: Settings) -> int:
    name = (options.level or settings.log_level or "info").strip().lower()
    name = LEVEL_ALIASES.get(name, name)
    if name not in _LEVELS:
        allowed = ", ".join(sorted(_LEVELS))
        raise ValueError(f"Unknown log level: {name!r}. Set LOG_LEVEL to one of: {allowed}")
    return _LEVELS[name]


def create_logger(
    options: LoggerOptions | None = None,
    settings: Settings | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Build the named logger used by a Glaze server.

    Production writes JSON lines with ISO timestamps for log aggregation;
    anything else writes short human-readable lines.
    """
    options = options or LoggerOptions()
    settings = settings or get_settings()
    environment = options.env or settings.environment

    logger = logging.getLogger(options.name)
    logger.handlers.clear()
    logger.setLevel(_level_for(options, settings))
    logger.propagate = False

    handler = logging.StreamHandler(stream or sys.stdout)
    if environment == PRODUCTION:
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)
    return logger


class BoundLogger(logging.LoggerAdapter):
    """Adds fixed context extras to every record, keeping per-call extras."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def create_child_logger(logger: logging.Logger, **bindings: Any) -> BoundLogger:
    """Wrap ``logger`` so every record carries ``bindings`` as extras."""
    return BoundLogger(logger, bindings)
