"""Unit tests for chart and repository models."""

from __future__ import annotations

import pytest

from release_operations_manager.integrations.kubernetes.models.chart import (
    Chart,
    ChartDependency,
    ChartFile,
    ChartMetadata,
)
from release_operations_manager.integrations.kubernetes.models.repository import (
    RepositoryEntry,
    RepositoryIndex,
)

CHART_YAML = {
    "apiVersion": "v2",
    "name": "web",
    "version": "1.2.0",
    "appVersion": 2.4,
    "type": "application",
    "kubeVersion": ">=1.25.0-0",
    "annotations": {"category": "Infrastructure"},
    "dependencies": [
        {"name": "redis", "version": "^17.0.0", "repository": "@bitnami", "condition": "redis.enabled"},
        {"name": "postgresql", "version": "12.x", "repository": "https://charts.example.com", "alias": "db"},
    ],
}

CRD = """apiVersion: apiextensions.k8s.io/v1
kind: CustomResourceDefinition
metadata:
  name: widgets.example.com
"""


@pytest.mark.unit
@pytest.mark.kubernetes
class TestChartMetadata:
    """Tests for ChartMetadata."""

    def test_from_dict(self) -> None:
        metadata = ChartMetadata.from_dict(CHART_YAML)

        assert metadata.app_version == "2.4"
        assert metadata.kube_version == ">=1.25.0-0"
        assert metadata.is_installable
        assert [d.effective_name for d in metadata.dependencies] == ["redis", "db"]
        assert metadata.dependencies[0].condition == "redis.enabled"

    def test_to_dict_omits_empty_fields(self) -> None:
        assert ChartMetadata(name="web", version="1.0.0").to_dict() == {
            "apiVersion": "v2",
            "name": "web",
            "version": "1.0.0",
        }

    def test_library_not_installable(self) -> None:
        assert not ChartMetadata(name="common", version="2.0.0", type="library").is_installable

    def test_dependency_entry_skips_condition(self) -> None:
        dependency = ChartDependency(name="redis", version="17.3.0", repository="@bitnami", condition="redis.enabled")

        assert dependency.to_dict() == {"name": "redis", "version": "17.3.0", "repository": "@bitnami"}


@pytest.mark.unit
@pytest.mark.kubernetes
class TestChart:
    """Tests for Chart."""

    def test_default_values(self) -> None:
        assert Chart(metadata=ChartMetadata(name="web", version="1.0.0"), values_text="a: 1\n").default_values() == {"a": 1}
        assert Chart(metadata=ChartMetadata(name="web", version="1.0.0"), values_text="  \n").default_values() == {}
        assert Chart(metadata=ChartMetadata(name="web", version="1.0.0"), values_text="- 1\n").default_values() == {}

    def test_subchart_crds_first(self) -> None:
        subchart = Chart(
            metadata=ChartMetadata(name="redis", version="17.3.0"),
            crd_files=[ChartFile(name="crds/sub.yaml", data=CRD.replace("widgets", "gadgets").encode())],
        )
        chart = Chart(
            metadata=ChartMetadata(name="web", version="1.0.0"),
            crd_files=[ChartFile(name="crds/widgets.yaml", data=CRD.encode())],
            dependencies=[subchart],
        )

        documents = chart.crd_objects()

        assert [d.name for d in documents] == ["gadgets.example.com", "widgets.example.com"]
        assert documents[1].source == "web/crds/widgets.yaml"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestRepositoryModels:
    """Tests for repository entries and indexes."""

    def test_entry_url_normalized(self) -> None:
        entry = RepositoryEntry(name="stable", url="https://charts.example.com/")

        assert entry.url == "https://charts.example.com"
        assert not entry.is_oci
        assert RepositoryEntry(name="ghcr", url="oci://ghcr.io/charts").is_oci

    def test_index_from_dict(self) -> None:
        index = RepositoryIndex.from_dict(
            {
                "entries": {
                    "web": [
                        {"name": "web", "version": "1.0.0", "urls": ["web-1.0.0.tgz"], "digest": "abc"},
                        {"name": "web", "version": "0.9.0", "deprecated": True},
                    ]
                },
                "generated": "2024-01-01T00:00:00Z",
            },
            repository="https://charts.example.com",
        )

        versions = index.versions_of("web")
        assert [v.version for v in versions] == ["1.0.0", "0.9.0"]
        assert versions[0].repository == "https://charts.example.com"
        assert versions[1].deprecated
        assert versions[1].urls == []
        assert index.versions_of("api") == []
