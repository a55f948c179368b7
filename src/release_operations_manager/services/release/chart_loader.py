"""Load charts from directories, archives, repositories and URLs."""

from __future__ import annotations

import io
import tarfile
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import structlog
import yaml

from release_operations_manager.integrations.kubernetes.models.chart import (
    Chart,
    ChartFile,
    ChartLock,
    ChartMetadata,
)
from release_operations_manager.services.release.exceptions import (
    ChartNotFoundError,
    ReleaseValidationError,
)

if TYPE_CHECKING:
    from release_operations_manager.services.release.context import OperationContext
    from release_operations_manager.services.release.repository import RepositoryIndexStore

logger = structlog.get_logger()

CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"
LOCK_FILE = "Chart.lock"
ARCHIVE_SUFFIXES = (".tgz", ".tar.gz")
CRD_SUFFIXES = (".yaml", ".yml", ".json")


def is_archive(path: Path | str) -> bool:
    return str(path).endswith(ARCHIVE_SUFFIXES)


def _parse_yaml_mapping(data: bytes, source: str) -> dict:
    try:
        loaded = yaml.safe_load(data) or {}
    except yaml.YAMLError as e:
        raise ReleaseValidationError(f"cannot parse {source}: {e}") from e
    if not isinstance(loaded, dict):
        raise ReleaseValidationError(f"{source} must be a mapping")
    return loaded


def load_from_files(files: dict[str, bytes], path: Path | None = None, origin: str = "") -> Chart:
    """Build a chart from ``relative path -> content`` pairs.

    Subcharts under ``charts/`` may be directories or archives.

    Raises:
        ReleaseValidationError: If Chart.yaml is missing or invalid.
    """
    origin = origin or (str(path) if path else "chart")
    if CHART_FILE not in files:
        raise ReleaseValidationError(f"{origin} has no {CHART_FILE}")

    metadata = ChartMetadata.from_dict(_parse_yaml_mapping(files[CHART_FILE], f"{origin}/{CHART_FILE}"))
    if not metadata.name:
        raise ReleaseValidationError(f"{origin}/{CHART_FILE} has no name")

    lock = None
    if LOCK_FILE in files:
        lock = ChartLock.from_dict(_parse_yaml_mapping(files[LOCK_FILE], f"{origin}/{LOCK_FILE}"))

    templates: list[ChartFile] = []
    crd_files: list[ChartFile] = []
    subchart_dirs: dict[str, dict[str, bytes]] = defaultdict(dict)
    subcharts: list[Chart] = []

    for name in sorted(files):
        parts = PurePosixPath(name).parts
        if parts[0] == "templates" and len(parts) > 1:
            templates.append(ChartFile(name=name, data=files[name]))
        elif parts[0] == "crds" and len(parts) > 1 and name.endswith(CRD_SUFFIXES):
            crd_files.append(ChartFile(name=name, data=files[name]))
        elif parts[0] == "charts" and len(parts) == 2 and is_archive(name):
            subcharts.append(load_archive_bytes(files[name], origin=f"{origin}/{name}"))
        elif parts[0] == "charts" and len(parts) > 2:
            subchart_dirs[parts[1]][str(PurePosixPath(*parts[2:]))] = files[name]

    for directory, sub_files in sorted(subchart_dirs.items()):
        sub_path = path / "charts" / directory if path else None
        subcharts.append(load_from_files(sub_files, sub_path, origin=f"{origin}/charts/{directory}"))

    values_text = files[VALUES_FILE].decode("utf-8") if VALUES_FILE in files else ""
    return Chart(
        metadata=metadata,
        values_text=values_text,
        templates=templates,
        crd_files=crd_files,
        dependencies=subcharts,
        lock=lock,
        path=path,
    )


def load_directory(path: Path) -> Chart:
    """Load an unpacked chart directory."""
    if not (path / CHART_FILE).is_file():
        raise ChartNotFoundError(str(path), reason=f"no {CHART_FILE} in directory")
    files = {
        file.relative_to(path).as_posix(): file.read_bytes()
        for file in path.rglob("*")
        if file.is_file()
    }
    return load_from_files(files, path)


def load_archive_bytes(data: bytes, path: Path | None = None, origin: str = "archive") -> Chart:
    """Load a gzipped chart tarball. Members live under a single top directory."""
    files: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive.getmembers():
                if not member.isfile():
                    continue
                parts = PurePosixPath(member.name).parts
                if len(parts) < 2 or ".." in parts or PurePosixPath(member.name).is_absolute():
                    continue
                extracted = archive.extractfile(member)
                if extracted is None:
                    continue
                files[str(PurePosixPath(*parts[1:]))] = extracted.read()
    except (tarfile.TarError, OSError) as e:
        raise ReleaseValidationError(f"cannot read chart archive {origin}: {e}") from e
    return load_from_files(files, path, origin=origin)


def load_archive(path: Path) -> Chart:
    return load_archive_bytes(path.read_bytes(), path, origin=str(path))


def load_path(path: Path) -> Chart:
    """Load a chart directory or archive from disk."""
    if path.is_dir():
        return load_directory(path)
    if path.is_file():
        return load_archive(path)
    raise ChartNotFoundError(str(path))


class ChartLoader:
    """Resolve chart references to loaded charts.

    Supported references: a chart directory, a ``.tgz`` archive,
    ``repo/chart`` for a configured repository, or an ``http(s)://`` archive URL.
    """

    def __init__(self, repositories: RepositoryIndexStore | None = None) -> None:
        self._repositories = repositories
        self._log = logger.bind(component="chart_loader")

    def load(self, reference: str, version: str = "", ctx: OperationContext | None = None) -> Chart:
        """Load *reference*, picking the highest version matching *version* for remote charts.

        Raises:
            ChartNotFoundError: If the reference cannot be resolved.
        """
        local = Path(reference).expanduser()
        if local.exists():
            chart = load_path(local)
        elif reference.startswith(("http://", "https://")):
            chart = load_archive(self._download(reference, ctx))
        elif "/" in reference and not reference.startswith((".", "/")):
            chart = load_archive(self._pull(reference, version, ctx))
        else:
            raise ChartNotFoundError(reference)

        if chart.metadata.deprecated:
            self._log.warning("chart_deprecated", chart=chart.name)
        self._log.debug("chart_loaded", chart=chart.name, version=chart.version, path=str(chart.path))
        return chart

    def _require_repositories(self, reference: str) -> RepositoryIndexStore:
        if self._repositories is None:
            raise ChartNotFoundError(reference, reason="no repository store configured")
        return self._repositories

    def _download(self, url: str, ctx: OperationContext | None) -> Path:
        repositories = self._require_repositories(url)
        return repositories.download_url(url, repositories.cache_dir / "charts", ctx=ctx)

    def _pull(self, reference: str, version: str, ctx: OperationContext | None) -> Path:
        repositories = self._require_repositories(reference)
        repository, _, name = reference.partition("/")
        chart_version = repositories.find_chart(repository, name, version, ctx=ctx)
        return repositories.download_chart(chart_version, repositories.cache_dir / "charts", ctx=ctx)
