"""Core infrastructure: configuration and logging."""

from gateroute.core.config import (
    CompilerConfig,
    GaterouteConfig,
    LoggingConfig,
    clear_config,
    get_config,
    load_config_from_file,
)
from gateroute.core.logging import configure_logging

__all__ = [
    "CompilerConfig",
    "GaterouteConfig",
    "LoggingConfig",
    "clear_config",
    "configure_logging",
    "get_config",
    "load_config_from_file",
]
