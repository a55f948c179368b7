"""Unit tests for core config models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from release_operations_manager.core.config.models import (
    ConfigError,
    ReleaseManagerConfig,
    load_config,
)


@pytest.mark.unit
class TestReleaseManagerConfig:
    """Tests for ReleaseManagerConfig model."""

    def test_defaults(self) -> None:
        config = ReleaseManagerConfig()

        assert config.namespace == "default"
        assert config.linting is True
        assert config.strict_lint is False
        assert config.keyring is None
        assert config.max_history == 10
        assert config.repository_config.name == "repositories.yaml"

    def test_paths_expanded(self) -> None:
        config = ReleaseManagerConfig(keyring=Path("~/.gnupg/pubring.gpg"))

        assert config.keyring == Path("~/.gnupg/pubring.gpg").expanduser()

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("request_timeout", 0, "request_timeout must be positive"),
            ("retry_attempts", 0, "retry_attempts must be at least 1"),
            ("max_history", -1, "greater than or equal to 0"),
        ],
    )
    def test_invalid_values(self, field: str, value: int, message: str) -> None:
        with pytest.raises(ValidationError, match=message):
            ReleaseManagerConfig(**{field: value})

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            ReleaseManagerConfig(unknown_field="value")  # type: ignore[call-arg]

    def test_from_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROPS_NAMESPACE", "staging")
        monkeypatch.setenv("ROPS_LINT", "off")
        monkeypatch.setenv("ROPS_STRICT_LINT", "yes")
        monkeypatch.setenv("ROPS_MAX_HISTORY", "3")
        monkeypatch.setenv("ROPS_REQUEST_TIMEOUT", "12.5")
        monkeypatch.setenv("ROPS_KEYRING", "/etc/rops/pubring.gpg")
        monkeypatch.setenv("ROPS_K8S_CONTEXT", "kind-ci")

        config = ReleaseManagerConfig.from_env({"namespace": "default", "max_history": 20})

        assert config.namespace == "staging"
        assert config.linting is False
        assert config.strict_lint is True
        assert config.max_history == 3
        assert config.request_timeout == 12.5
        assert config.keyring == Path("/etc/rops/pubring.gpg")
        assert config.kubernetes.get_active_context() == "kind-ci"

    def test_from_env_keeps_base_kubernetes_section(self) -> None:
        base = {"kubernetes": {"active_cluster": "dev", "clusters": {"dev": {"context": "kind-dev"}}}}

        config = ReleaseManagerConfig.from_env(base)

        assert config.kubernetes.get_active_context() == "kind-dev"
        assert "kubernetes" in base


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config function."""

    def test_missing_file_uses_defaults(self, temp_dir: Path) -> None:
        config = load_config(temp_dir / "missing.yaml")

        assert config.namespace == "default"

    def test_reads_yaml(self, temp_config_file: Path, temp_dir: Path) -> None:
        config = load_config(temp_config_file)

        assert config.namespace == "staging"
        assert config.max_history == 5
        assert config.repository_cache == temp_dir / "cache"

    def test_env_beats_file(self, temp_config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROPS_NAMESPACE", "production")

        assert load_config(temp_config_file).namespace == "production"

    def test_empty_file(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("")

        assert load_config(path).namespace == "default"

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("namespace: [unclosed")

        with pytest.raises(ConfigError, match="Cannot read configuration"):
            load_config(path)

    def test_not_a_mapping(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="must be a mapping"):
            load_config(path)

    def test_validation_failure(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("max_history: -2\n")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)

    def test_bad_env_number(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROPS_MAX_HISTORY", "lots")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(temp_dir / "missing.yaml")
