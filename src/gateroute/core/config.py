"""Configuration types with environment variable support.

All settings can be configured via environment variables with the GATEROUTE_ prefix.
Example: GATEROUTE_CONTROLLER_CLASS=nlb compiles Gateways for the NLB controller.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateroute.model.constants import MAX_WEIGHT, ControllerClass


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class CompilerConfig(BaseSettings):
    """Route compilation settings.

    All settings can be overridden via environment variables:
    - GATEROUTE_CONTROLLER_CLASS: alb or nlb
    - GATEROUTE_MAX_TARGET_GROUPS: Target group limit per load balancer
    - GATEROUTE_MAX_RULES_PER_ROUTE: Rule limit per route
    - GATEROUTE_MAX_BACKEND_WEIGHT: Largest accepted backend weight
    - GATEROUTE_ENFORCE_RESOURCE_LIMITS: Fail compilation when limits are exceeded
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEROUTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    controller_class: ControllerClass = Field(
        default=ControllerClass.ALB,
        description="Load balancer flavor Gateways are compiled for.",
    )
    max_target_groups: int = Field(
        default=100,
        ge=1,
        description="Maximum target groups per load balancer.",
    )
    max_rules_per_route: int = Field(
        default=100,
        ge=1,
        description="Maximum rules per route.",
    )
    max_backend_weight: int = Field(
        default=MAX_WEIGHT,
        ge=1,
        le=MAX_WEIGHT,
        description="Largest accepted backend weight.",
    )
    enforce_resource_limits: bool = Field(
        default=False,
        description="Raise instead of reporting when resource limits are exceeded.",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GATEROUTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Minimum log level.",
    )
    log_json: bool = Field(
        default=False,
        description="Render log events as JSON instead of console output.",
    )


class GaterouteConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.compiler.controller_class)
        print(config.logging.log_level)
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEROUTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def compiler(self) -> CompilerConfig:
        """Get compiler configuration."""
        return CompilerConfig()

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration."""
        return LoggingConfig()

    def to_env_dict(self) -> dict[str, str]:
        """Export current configuration as environment variable dictionary."""
        result = {}

        compiler = self.compiler
        result["GATEROUTE_CONTROLLER_CLASS"] = compiler.controller_class.value
        result["GATEROUTE_MAX_TARGET_GROUPS"] = str(compiler.max_target_groups)
        result["GATEROUTE_MAX_RULES_PER_ROUTE"] = str(compiler.max_rules_per_route)
        result["GATEROUTE_MAX_BACKEND_WEIGHT"] = str(compiler.max_backend_weight)
        result["GATEROUTE_ENFORCE_RESOURCE_LIMITS"] = str(compiler.enforce_resource_limits).lower()

        log = self.logging
        result["GATEROUTE_LOG_LEVEL"] = log.log_level
        result["GATEROUTE_LOG_JSON"] = str(log.log_json).lower()

        return result

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "compiler": {
                "controller_class": self.compiler.controller_class.value,
                "max_target_groups": self.compiler.max_target_groups,
                "max_rules_per_route": self.compiler.max_rules_per_route,
                "max_backend_weight": self.compiler.max_backend_weight,
                "enforce_resource_limits": self.compiler.enforce_resource_limits,
            },
            "logging": {
                "log_level": self.logging.log_level,
                "log_json": self.logging.log_json,
            },
        }


_config: GaterouteConfig | None = None


def get_config() -> GaterouteConfig:
    """Get the global configuration instance.

    Returns a cached instance of GaterouteConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = GaterouteConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
