"""Release manager configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from release_operations_manager.integrations.kubernetes.config import KubernetesPluginConfig

logger = structlog.get_logger()

CONFIG_DIR = Path.home() / ".config" / "rops"
CACHE_DIR = Path.home() / ".cache" / "rops"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"

_TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is invalid."""


def _env_flag(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


class ReleaseManagerConfig(BaseModel):
    """Settings shared by every release operation."""

    model_config = ConfigDict(extra="forbid")

    namespace: str = "default"
    repository_config: Path = CONFIG_DIR / "repositories.yaml"
    repository_cache: Path = CACHE_DIR / "repository"
    keyring: Path | None = None
    linting: bool = True
    strict_lint: bool = False
    helm_binary: str | None = None
    max_history: int = Field(default=10, ge=0)
    request_timeout: float = 30.0
    retry_attempts: int = 3
    name_template: str = ""
    kubernetes: KubernetesPluginConfig = KubernetesPluginConfig()

    @field_validator("repository_config", "repository_cache", "keyring")
    @classmethod
    def expand_path(cls, v: Path | None) -> Path | None:
        """Expand ~ in configured paths."""
        return v.expanduser() if v is not None else None

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> ReleaseManagerConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            ROPS_NAMESPACE: Default release namespace
            ROPS_REPOSITORY_CONFIG: Path of repositories.yaml
            ROPS_REPOSITORY_CACHE: Directory for downloaded indexes
            ROPS_KEYRING: Keyring used to verify chart provenance
            ROPS_LINT: Enable the lint gate ("true"/"false")
            ROPS_STRICT_LINT: Treat lint warnings as failures
            ROPS_HELM_BINARY: Explicit helm binary path
            ROPS_MAX_HISTORY: Revisions kept per release (0 = unlimited)
            ROPS_REQUEST_TIMEOUT: Per-request timeout in seconds
            ROPS_RETRY_ATTEMPTS: Attempts for transient network errors
        """
        config_dict = dict(base_config) if base_config else {}

        string_vars = {
            "ROPS_NAMESPACE": "namespace",
            "ROPS_REPOSITORY_CONFIG": "repository_config",
            "ROPS_REPOSITORY_CACHE": "repository_cache",
            "ROPS_KEYRING": "keyring",
            "ROPS_HELM_BINARY": "helm_binary",
        }
        for env_var, key in string_vars.items():
            if value := os.environ.get(env_var):
                config_dict[key] = value

        if lint := os.environ.get("ROPS_LINT"):
            config_dict["linting"] = _env_flag(lint)
        if strict := os.environ.get("ROPS_STRICT_LINT"):
            config_dict["strict_lint"] = _env_flag(strict)
        if max_history := os.environ.get("ROPS_MAX_HISTORY"):
            config_dict["max_history"] = int(max_history)
        if request_timeout := os.environ.get("ROPS_REQUEST_TIMEOUT"):
            config_dict["request_timeout"] = float(request_timeout)
        if retry_attempts := os.environ.get("ROPS_RETRY_ATTEMPTS"):
            config_dict["retry_attempts"] = int(retry_attempts)

        kubernetes_base = config_dict.pop("kubernetes", None)
        instance = cls.model_validate(config_dict)
        instance.kubernetes = KubernetesPluginConfig.from_env(kubernetes_base)
        return instance


def load_config(path: Path | None = None) -> ReleaseManagerConfig:
    """Load configuration from YAML, then apply ``ROPS_*`` overrides.

    A missing file yields the defaults.

    Raises:
        ConfigError: If the file is not valid YAML or fails validation.
    """
    config_path = path or DEFAULT_CONFIG_PATH
    base: dict[str, Any] = {}

    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read configuration {config_path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Configuration {config_path} must be a mapping")
        base = loaded or {}
        logger.debug("config_loaded", path=str(config_path))

    try:
        return ReleaseManagerConfig.from_env(base)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
