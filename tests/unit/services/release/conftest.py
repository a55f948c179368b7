"""Shared fixtures for release service tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from release_operations_manager.core.config import ReleaseManagerConfig
from release_operations_manager.integrations.kubernetes.models.chart import (
    Chart,
    ChartFile,
    ChartMetadata,
)
from release_operations_manager.integrations.kubernetes.models.release import (
    Release,
    ReleaseStatus,
)
from release_operations_manager.services.release import InMemoryReleaseStore, ReleaseOrchestrator
from release_operations_manager.services.release.interfaces import RenderedChart

CONFIGMAP_MANIFEST = """---
# Source: web/templates/configmap.yaml
apiVersion: v1
kind: ConfigMap
metadata:
  name: web-config
data:
  key: value
"""


def make_chart(
    name: str = "web",
    version: str = "1.0.0",
    *,
    chart_type: str = "",
    values_text: str = "replicas: 1\n",
    path: Path | None = None,
    crd_files: list[ChartFile] | None = None,
    **metadata: Any,
) -> Chart:
    """Build an in-memory chart with a single template."""
    return Chart(
        metadata=ChartMetadata(name=name, version=version, type=chart_type, description="test chart", **metadata),
        values_text=values_text,
        templates=[ChartFile(name="templates/configmap.yaml", data=b"kind: ConfigMap")],
        crd_files=crd_files or [],
        path=path,
    )


def make_release(
    revision: int,
    status: ReleaseStatus,
    *,
    name: str = "web",
    namespace: str = "default",
    manifest: str = CONFIGMAP_MANIFEST,
    config: dict[str, Any] | None = None,
) -> Release:
    """Build a recorded release revision."""
    return Release(
        name=name,
        namespace=namespace,
        revision=revision,
        status=status,
        chart=ChartMetadata(name="web", version=f"1.0.{revision}"),
        config=config if config is not None else {"revision": revision},
        manifest=manifest,
    )


@pytest.fixture
def chart() -> Chart:
    return make_chart()


@pytest.fixture
def mock_loader(chart: Chart) -> MagicMock:
    """Chart loader returning the ``chart`` fixture."""
    loader = MagicMock()
    loader.load.return_value = chart
    return loader


@pytest.fixture
def mock_renderer() -> MagicMock:
    """Renderer returning a single ConfigMap."""
    renderer = MagicMock()
    renderer.render.return_value = RenderedChart(manifest=CONFIGMAP_MANIFEST)
    return renderer


@pytest.fixture
def mock_applier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_crd_client() -> MagicMock:
    crd_client = MagicMock()
    crd_client.get.return_value = None
    return crd_client


@pytest.fixture
def mock_linter() -> MagicMock:
    linter = MagicMock()
    linter.lint.return_value = []
    return linter


@pytest.fixture
def store() -> InMemoryReleaseStore:
    return InMemoryReleaseStore()


@pytest.fixture
def config() -> ReleaseManagerConfig:
    return ReleaseManagerConfig(max_history=0)


@pytest.fixture
def orchestrator(
    mock_loader: MagicMock,
    mock_renderer: MagicMock,
    store: InMemoryReleaseStore,
    mock_applier: MagicMock,
    mock_crd_client: MagicMock,
    mock_linter: MagicMock,
    config: ReleaseManagerConfig,
) -> ReleaseOrchestrator:
    """Orchestrator wired to mocks and an in-memory store."""
    return ReleaseOrchestrator(
        mock_loader,
        mock_renderer,
        store,
        mock_applier,
        mock_crd_client,
        linter=mock_linter,
        config=config,
    )
