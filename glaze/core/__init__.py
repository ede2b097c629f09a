"""Core primitives: settings, resolved server config, errors."""

from glaze.core.config import GlazeConfig, Settings, get_settings, resolve_config
from glaze.core.errors import ConfigurationError

__all__ = ["ConfigurationError", "GlazeConfig", "Settings", "get_settings", "resolve_config"]
