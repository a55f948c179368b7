"""Unit tests for chart loading."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from release_operations_manager.services.release.chart_loader import (
    ChartLoader,
    is_archive,
    load_archive_bytes,
    load_from_files,
    load_path,
)
from release_operations_manager.services.release.exceptions import (
    ChartNotFoundError,
    ReleaseValidationError,
)

CHART_YAML = b"apiVersion: v2\nname: web\nversion: 1.2.0\ndescription: A web app\n"


def make_archive(files: dict[str, bytes], top: str = "web") -> bytes:
    """Gzipped tarball with every file under *top*/."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.mark.unit
class TestLoadFromFiles:
    """Tests for building charts from file contents."""

    def test_sorts_files_into_parts(self) -> None:
        chart = load_from_files(
            {
                "Chart.yaml": CHART_YAML,
                "values.yaml": b"replicas: 2\n",
                "templates/deployment.yaml": b"kind: Deployment",
                "templates/_helpers.tpl": b"{{- define \"x\" }}{{- end }}",
                "crds/widgets.yaml": b"kind: CustomResourceDefinition",
                "crds/README.md": b"docs",
                "README.md": b"readme",
            }
        )

        assert chart.name == "web"
        assert chart.version == "1.2.0"
        assert chart.metadata.description == "A web app"
        assert chart.default_values() == {"replicas": 2}
        assert [t.name for t in chart.templates] == ["templates/_helpers.tpl", "templates/deployment.yaml"]
        assert [c.name for c in chart.crd_files] == ["crds/widgets.yaml"]

    def test_subchart_directories_and_archives(self) -> None:
        chart = load_from_files(
            {
                "Chart.yaml": CHART_YAML,
                "charts/common/Chart.yaml": b"apiVersion: v2\nname: common\nversion: 0.3.0\n",
                "charts/redis-17.3.0.tgz": make_archive(
                    {"Chart.yaml": b"apiVersion: v2\nname: redis\nversion: 17.3.0\n"}, top="redis"
                ),
            }
        )

        assert sorted((s.name, s.version) for s in chart.dependencies) == [
            ("common", "0.3.0"),
            ("redis", "17.3.0"),
        ]

    def test_lock_file_parsed(self) -> None:
        chart = load_from_files(
            {
                "Chart.yaml": CHART_YAML,
                "Chart.lock": b"dependencies:\n- name: redis\n  version: 17.3.0\ndigest: sha256:abc\n",
            }
        )

        assert chart.lock is not None
        assert chart.lock.digest == "sha256:abc"
        assert chart.lock.dependencies[0].version == "17.3.0"

    def test_missing_chart_file(self) -> None:
        with pytest.raises(ReleaseValidationError, match="has no Chart.yaml"):
            load_from_files({"values.yaml": b""}, origin="web")

    def test_chart_without_name(self) -> None:
        with pytest.raises(ReleaseValidationError, match="has no name"):
            load_from_files({"Chart.yaml": b"version: 1.0.0\n"})

    def test_chart_file_not_a_mapping(self) -> None:
        with pytest.raises(ReleaseValidationError, match="must be a mapping"):
            load_from_files({"Chart.yaml": b"- a\n- b\n"})


@pytest.mark.unit
class TestLoadPath:
    """Tests for loading charts from disk."""

    def test_directory(self, tmp_path: Path) -> None:
        (tmp_path / "templates").mkdir()
        (tmp_path / "Chart.yaml").write_bytes(CHART_YAML)
        (tmp_path / "templates" / "service.yaml").write_text("kind: Service")

        chart = load_path(tmp_path)

        assert chart.path == tmp_path
        assert [t.name for t in chart.templates] == ["templates/service.yaml"]

    def test_directory_without_chart_file(self, tmp_path: Path) -> None:
        with pytest.raises(ChartNotFoundError):
            load_path(tmp_path)

    def test_archive(self, tmp_path: Path) -> None:
        archive = tmp_path / "web-1.2.0.tgz"
        archive.write_bytes(make_archive({"Chart.yaml": CHART_YAML, "templates/a.yaml": b"kind: A"}))

        chart = load_path(archive)

        assert chart.name == "web"
        assert chart.path == archive
        assert [t.name for t in chart.templates] == ["templates/a.yaml"]

    def test_archive_skips_unsafe_members(self) -> None:
        data = make_archive({"Chart.yaml": CHART_YAML, "../escape.yaml": b"kind: Escape"})

        chart = load_archive_bytes(data)

        assert chart.templates == []

    def test_corrupt_archive(self) -> None:
        with pytest.raises(ReleaseValidationError, match="cannot read chart archive"):
            load_archive_bytes(b"not a tarball")

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(ChartNotFoundError):
            load_path(tmp_path / "absent")

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("web-1.0.0.tgz", True), ("web.tar.gz", True), ("web", False), ("web.yaml", False)],
    )
    def test_is_archive(self, name: str, expected: bool) -> None:
        assert is_archive(name) is expected


@pytest.mark.unit
class TestChartLoader:
    """Tests for ChartLoader reference resolution."""

    @pytest.fixture
    def repositories(self, tmp_path: Path) -> MagicMock:
        archive = tmp_path / "web-1.2.0.tgz"
        archive.write_bytes(make_archive({"Chart.yaml": CHART_YAML}))
        repos = MagicMock()
        repos.cache_dir = tmp_path / "cache"
        repos.download_chart.return_value = archive
        repos.download_url.return_value = archive
        return repos

    def test_local_directory(self, tmp_path: Path) -> None:
        (tmp_path / "Chart.yaml").write_bytes(CHART_YAML)

        assert ChartLoader().load(str(tmp_path)).name == "web"

    def test_repository_reference(self, repositories: MagicMock, tmp_path: Path) -> None:
        chart = ChartLoader(repositories).load("stable/web", "^1.0.0")

        assert chart.version == "1.2.0"
        assert repositories.find_chart.call_args.args == ("stable", "web", "^1.0.0")
        assert repositories.download_chart.call_args.args[1] == tmp_path / "cache" / "charts"

    def test_url_reference(self, repositories: MagicMock) -> None:
        chart = ChartLoader(repositories).load("https://example.com/charts/web-1.2.0.tgz")

        assert chart.name == "web"
        assert repositories.download_url.call_args.args[0] == "https://example.com/charts/web-1.2.0.tgz"
        repositories.find_chart.assert_not_called()

    def test_remote_reference_without_repositories(self) -> None:
        with pytest.raises(ChartNotFoundError, match="no repository store configured"):
            ChartLoader().load("stable/web")

    def test_unknown_local_reference(self) -> None:
        with pytest.raises(ChartNotFoundError):
            ChartLoader().load("./does-not-exist")
