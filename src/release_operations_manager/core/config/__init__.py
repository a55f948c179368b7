"""Configuration management with Pydantic validation."""

from release_operations_manager.core.config.models import (
    ConfigError,
    ReleaseManagerConfig,
    load_config,
)

__all__ = [
    "ConfigError",
    "ReleaseManagerConfig",
    "load_config",
]
