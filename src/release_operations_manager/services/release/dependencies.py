"""Chart dependency resolution.

Declared dependencies are matched against the subcharts bundled under
``charts/`` by name (or alias) and version-range satisfaction. With updates
disabled, unmet dependencies fail immediately without touching the network.
With updates enabled, satisfying versions are downloaded from the repository
indexes, verified when a keyring is configured, and pinned in ``Chart.lock``;
the caller must then reload the chart.
"""

from __future__ import annotations

import hashlib
import json
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog
import yaml

from release_operations_manager.integrations.kubernetes.models.chart import (
    Chart,
    ChartDependency,
    ChartLock,
)
from release_operations_manager.services.release.chart_loader import LOCK_FILE, load_path
from release_operations_manager.services.release.context import OperationContext, ensure_context
from release_operations_manager.services.release.exceptions import (
    DependencyError,
    ReleaseError,
)
from release_operations_manager.services.release.interfaces import ChartRepository
from release_operations_manager.services.release.provenance import ProvenanceVerifier
from release_operations_manager.services.release.semver import (
    Constraint,
    InvalidVersionError,
    parse_version,
)

logger = structlog.get_logger()

LOCAL_REPOSITORY_SCHEME = "file://"


@dataclass
class DependencyResolution:
    """Outcome of a dependency check or update."""

    reload_required: bool = False
    lock: ChartLock | None = None
    downloaded: list[Path] = field(default_factory=list)


def lock_digest(declared: list[ChartDependency], locked: list[ChartDependency]) -> str:
    """Digest tying a lock file to the dependency declarations it was built from."""
    payload = json.dumps(
        {
            "requirements": [d.to_dict() for d in declared],
            "lock": [d.to_dict() for d in locked],
        },
        sort_keys=True,
    )
    return "sha256:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _satisfies(dependency: ChartDependency, version: str) -> bool:
    if not dependency.version:
        return True
    try:
        return Constraint.parse(dependency.version).allows(version)
    except InvalidVersionError as e:
        raise DependencyError(
            f"dependency '{dependency.name}' has an invalid version range "
            f"'{dependency.version}': {e}",
            unmet=[dependency],
        ) from e


class DependencyResolver:
    """Check, update and build chart dependencies."""

    def __init__(
        self,
        repositories: ChartRepository | None = None,
        verifier_factory: Callable[[Path], ProvenanceVerifier] = ProvenanceVerifier,
    ) -> None:
        self._repositories = repositories
        self._verifier_factory = verifier_factory
        self._log = logger.bind(component="dependencies")

    # -----------------------------------------------------------------------
    # Checking
    # -----------------------------------------------------------------------

    @staticmethod
    def bundled_version(chart: Chart, dependency: ChartDependency) -> str | None:
        """Version of the bundled subchart that satisfies *dependency*, if any."""
        for subchart in chart.dependencies:
            if subchart.name not in (dependency.name, dependency.alias):
                continue
            if _satisfies(dependency, subchart.version):
                return subchart.version
        return None

    def unmet_dependencies(self, chart: Chart) -> list[ChartDependency]:
        """Enabled declared dependencies with no satisfying bundled subchart."""
        return [
            dependency
            for dependency in chart.metadata.dependencies
            if dependency.enabled and self.bundled_version(chart, dependency) is None
        ]

    # -----------------------------------------------------------------------
    # Resolution
    # -----------------------------------------------------------------------

    def resolve(
        self,
        chart: Chart,
        allow_update: bool,
        keyring: Path | None = None,
        ctx: OperationContext | None = None,
    ) -> DependencyResolution:
        """Ensure every declared dependency is present and current.

        Raises:
            DependencyError: If dependencies are unmet and updates are disabled,
                or an update cannot find or verify a dependency.
        """
        unmet = self.unmet_dependencies(chart)
        if not unmet:
            self._log.debug("dependencies_satisfied", chart=chart.name)
            return DependencyResolution()

        if not allow_update:
            raise DependencyError.for_unmet(chart.name, unmet)

        return self._update(chart, unmet, keyring, ensure_context(ctx))

    def _chart_directory(self, chart: Chart) -> Path:
        if chart.path is None or not chart.path.is_dir():
            raise DependencyError(
                f"chart '{chart.name}' must be an unpacked directory to update dependencies"
            )
        return chart.path

    def _require_repositories(self, chart: Chart) -> ChartRepository:
        if self._repositories is None:
            raise DependencyError(f"no chart repositories available to resolve '{chart.name}'")
        return self._repositories

    def _update(
        self,
        chart: Chart,
        unmet: list[ChartDependency],
        keyring: Path | None,
        ctx: OperationContext,
    ) -> DependencyResolution:
        chart_dir = self._chart_directory(chart)
        charts_dir = chart_dir / "charts"
        charts_dir.mkdir(exist_ok=True)

        unmet_names = {d.effective_name for d in unmet}
        declared = [d for d in chart.metadata.dependencies if d.enabled]
        locked: list[ChartDependency] = []
        downloaded: list[Path] = []

        for dependency in declared:
            if dependency.effective_name not in unmet_names:
                version = self.bundled_version(chart, dependency) or dependency.version
                locked.append(self._locked(dependency, version))
                continue

            if dependency.repository.startswith(LOCAL_REPOSITORY_SCHEME):
                version = self._vendor_local(chart_dir, charts_dir, dependency)
            elif not dependency.repository:
                raise DependencyError(
                    f"dependency '{dependency.name}' is not bundled and declares no repository",
                    unmet=[dependency],
                )
            else:
                archive = self._fetch(chart, charts_dir, dependency, dependency.version or "*", keyring, ctx)
                downloaded.append(archive)
                version = self._archive_version(dependency, archive)
            locked.append(self._locked(dependency, version))

        lock = ChartLock(
            dependencies=locked,
            digest=lock_digest(declared, locked),
            generated=datetime.now(UTC).isoformat(),
        )
        (chart_dir / LOCK_FILE).write_text(yaml.safe_dump(lock.to_dict(), sort_keys=False), encoding="utf-8")
        self._log.info(
            "dependencies_updated",
            chart=chart.name,
            updated=sorted(unmet_names),
            downloaded=[p.name for p in downloaded],
        )
        return DependencyResolution(reload_required=True, lock=lock, downloaded=downloaded)

    def build(
        self,
        chart: Chart,
        keyring: Path | None = None,
        ctx: OperationContext | None = None,
    ) -> DependencyResolution:
        """Download exactly the versions pinned in ``Chart.lock``.

        Raises:
            DependencyError: If the chart has no lock file or a pinned version
                cannot be fetched.
        """
        ctx = ensure_context(ctx)
        if chart.lock is None:
            raise DependencyError(f"chart '{chart.name}' has no {LOCK_FILE}; run a dependency update")

        declared = [d for d in chart.metadata.dependencies if d.enabled]
        if lock_digest(declared, chart.lock.dependencies) != chart.lock.digest:
            self._log.warning("dependency_lock_out_of_sync", chart=chart.name)

        chart_dir = self._chart_directory(chart)
        charts_dir = chart_dir / "charts"
        charts_dir.mkdir(exist_ok=True)

        downloaded: list[Path] = []
        for pinned in chart.lock.dependencies:
            bundled = {s.version for s in chart.dependencies if s.name == pinned.name}
            if pinned.version in bundled:
                continue
            if pinned.repository.startswith(LOCAL_REPOSITORY_SCHEME):
                self._vendor_local(chart_dir, charts_dir, pinned)
                continue
            downloaded.append(
                self._fetch(chart, charts_dir, pinned, f"={pinned.version}", keyring, ctx)
            )

        self._log.info("dependencies_built", chart=chart.name, downloaded=[p.name for p in downloaded])
        return DependencyResolution(reload_required=bool(downloaded), lock=chart.lock, downloaded=downloaded)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _locked(dependency: ChartDependency, version: str) -> ChartDependency:
        return ChartDependency(
            name=dependency.name,
            version=version,
            repository=dependency.repository,
            alias=dependency.alias,
        )

    def _fetch(
        self,
        chart: Chart,
        charts_dir: Path,
        dependency: ChartDependency,
        constraint: str,
        keyring: Path | None,
        ctx: OperationContext,
    ) -> Path:
        """Download one dependency archive into ``charts/``.

        The archive is staged outside the chart and only moved into place,
        replacing older archives of the same chart, once its digest and
        provenance have been checked.
        """
        repositories = self._require_repositories(chart)
        try:
            chart_version = repositories.find_chart(
                dependency.repository, dependency.name, constraint, ctx=ctx
            )
            with tempfile.TemporaryDirectory(prefix="rops-dependency-") as staging:
                staged = repositories.download_chart(chart_version, Path(staging), ctx)
                if keyring is not None:
                    provenance = repositories.download_provenance(chart_version, Path(staging), ctx)
                    self._verifier_factory(keyring).verify(staged, provenance)
                self._remove_stale_archives(charts_dir, dependency.name)
                archive = Path(shutil.move(staged, charts_dir / staged.name))
        except DependencyError:
            raise
        except ReleaseError as e:
            raise DependencyError(
                f"cannot fetch dependency '{dependency.name}' ({constraint}) "
                f"from '{dependency.repository}': {e}",
                unmet=[dependency],
            ) from e
        return archive

    @staticmethod
    def _remove_stale_archives(charts_dir: Path, name: str) -> None:
        for candidate in charts_dir.glob(f"{name}-*.tgz"):
            suffix = candidate.name[len(name) + 1 : -len(".tgz")]
            if parse_version(suffix) is not None:
                candidate.unlink()

    @staticmethod
    def _archive_version(dependency: ChartDependency, archive: Path) -> str:
        prefix = f"{dependency.name}-"
        if archive.name.startswith(prefix) and archive.name.endswith(".tgz"):
            return archive.name[len(prefix) : -len(".tgz")]
        return load_path(archive).version

    def _vendor_local(self, chart_dir: Path, charts_dir: Path, dependency: ChartDependency) -> str:
        source = (chart_dir / dependency.repository[len(LOCAL_REPOSITORY_SCHEME) :]).resolve()
        if not source.is_dir():
            raise DependencyError(
                f"local dependency '{dependency.name}' not found at {source}",
                unmet=[dependency],
            )
        subchart = load_path(source)
        if not _satisfies(dependency, subchart.version):
            raise DependencyError(
                f"local dependency '{dependency.name}' version {subchart.version} "
                f"does not satisfy '{dependency.version}'",
                unmet=[dependency],
            )
        target = charts_dir / dependency.name
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(source, target)
        return subchart.version
