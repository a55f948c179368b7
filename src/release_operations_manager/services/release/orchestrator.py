"""Release orchestrator.

Decides between install and upgrade and drives one release operation through
dependency resolution, values composition, the lint gate, CRD migration,
rendering, recording and applying. Every collaborator is injected, so the
decision logic never talks to a cluster, a repository or a binary directly.
"""

from __future__ import annotations

import copy
import re
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import structlog
import yaml

from release_operations_manager.core.config import ReleaseManagerConfig
from release_operations_manager.integrations.kubernetes.exceptions import KubernetesError
from release_operations_manager.integrations.kubernetes.manifest_applier import (
    load_manifest_documents,
    resource_identifier,
)
from release_operations_manager.integrations.kubernetes.models.release import (
    ListOptions,
    Release,
    ReleaseSpec,
    ReleaseStateMask,
    ReleaseStatus,
)
from release_operations_manager.services.release.chart_loader import is_archive, load_path
from release_operations_manager.services.release.context import OperationContext, ensure_context
from release_operations_manager.services.release.crd_migration import CRDMigrationEngine
from release_operations_manager.services.release.dependencies import (
    DependencyResolution,
    DependencyResolver,
)
from release_operations_manager.services.release.exceptions import (
    ReleaseError,
    ReleaseFailedError,
    ReleaseNotFoundError,
    ReleaseValidationError,
    RenderError,
    RollbackError,
)
from release_operations_manager.services.release.interfaces import (
    ChartLinter,
    ChartLoaderProtocol,
    LintMessage,
    ManifestApplier,
    ReleaseStore,
    RenderedChart,
    RollbackPolicy,
    SchemaDefinitionClient,
    TemplateRenderer,
)
from release_operations_manager.services.release.lint import ChartLint, enforce_lint
from release_operations_manager.services.release.rollback import (
    DefaultRollbackPolicy,
    RevisionRollbackPolicy,
)
from release_operations_manager.services.release.values import ValuesComposer, deep_merge

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.models.chart import Chart
    from release_operations_manager.integrations.kubernetes.models.repository import RepositoryEntry
    from release_operations_manager.services.release.repository import RepositoryIndexStore

logger = structlog.get_logger()

ANY_VERSION = ">0.0.0-0"
MAX_RELEASE_NAME_LENGTH = 53
RANDOM_SUFFIX_LENGTH = 5
TEMPLATE_RELEASE_NAME = "release-name"

_RELEASE_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_REUSABLE_STATUSES = (ReleaseStatus.UNINSTALLED, ReleaseStatus.FAILED)


@dataclass
class TemplateOptions:
    """Extra inputs for :meth:`ReleaseOrchestrator.template_chart`.

    When ``output`` is set, the rendered text is written to it, including the
    partial output of a failed render.
    """

    kube_version: str = ""
    api_versions: tuple[str, ...] = ()
    output: TextIO | None = None


def validate_release_name(name: str) -> None:
    """Raise ReleaseValidationError unless *name* is a valid release name."""
    if not name:
        raise ReleaseValidationError("release name is required")
    if len(name) > MAX_RELEASE_NAME_LENGTH:
        raise ReleaseValidationError(
            f"release name '{name}' exceeds max length of {MAX_RELEASE_NAME_LENGTH}"
        )
    if not _RELEASE_NAME_RE.match(name):
        raise ReleaseValidationError(
            f"release name '{name}' must be lowercase alphanumeric characters, '-' or '.', "
            "and must start and end with an alphanumeric character"
        )


def chart_base_name(reference: str) -> str:
    """Chart name guessed from a reference, used for generated release names."""
    base = reference.rstrip("/").rsplit("/", 1)[-1]
    for suffix in (".tgz", ".tar.gz"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return base if base not in ("", ".") else "chart"


def render_name_template(template: str, chart_name: str) -> str:
    """Expand ``{chart}``, ``{timestamp}`` and ``{random}`` in *template*."""
    alphabet = string.ascii_lowercase + string.digits
    try:
        return template.format(
            chart=chart_name,
            timestamp=int(time.time()),
            random="".join(secrets.choice(alphabet) for _ in range(RANDOM_SUFFIX_LENGTH)),
        )
    except (KeyError, IndexError, ValueError) as e:
        raise ReleaseValidationError(f"invalid name template '{template}': {e}") from e


def parse_selector(selector: str) -> list[tuple[str, str, bool]]:
    """Parse ``key=value,key!=value`` into (key, value, negated) triples."""
    requirements: list[tuple[str, str, bool]] = []
    for part in filter(None, (p.strip() for p in selector.split(","))):
        if "!=" in part:
            key, _, value = part.partition("!=")
            requirements.append((key.strip(), value.strip(), True))
        elif "=" in part:
            key, _, value = part.partition("=")
            requirements.append((key.strip(), value.strip().lstrip("="), False))
        else:
            raise ReleaseValidationError(f"invalid selector requirement '{part}'")
    return requirements


def release_labels(release: Release) -> dict[str, str]:
    """Labels a release can be selected by."""
    return {
        "name": release.name,
        "namespace": release.namespace,
        "status": release.status.value,
        "version": str(release.revision),
        "chart": release.chart.name,
    }


class ReleaseOrchestrator:
    """Install, upgrade, roll back and inspect releases.

    The orchestrator also satisfies the rollback policy protocol; its
    :meth:`rollback_release` restores the last deployed state.
    """

    def __init__(
        self,
        loader: ChartLoaderProtocol,
        renderer: TemplateRenderer,
        store: ReleaseStore,
        applier: ManifestApplier,
        crd_client: SchemaDefinitionClient,
        repositories: RepositoryIndexStore | None = None,
        linter: ChartLinter | None = None,
        config: ReleaseManagerConfig | None = None,
        *,
        resolver: DependencyResolver | None = None,
        composer: ValuesComposer | None = None,
    ) -> None:
        self._loader = loader
        self._renderer = renderer
        self._store = store
        self._applier = applier
        self._repositories = repositories
        self._linter = linter or ChartLint(renderer)
        self._config = config or ReleaseManagerConfig()
        self._resolver = resolver or DependencyResolver(repositories)
        self._composer = composer or ValuesComposer()
        self._migrations = CRDMigrationEngine(crd_client)
        self._log = logger.bind(component="orchestrator")

    # -----------------------------------------------------------------------
    # Install / upgrade
    # -----------------------------------------------------------------------

    def install_or_upgrade(
        self,
        spec: ReleaseSpec,
        rollback: RollbackPolicy | None = None,
        ctx: OperationContext | None = None,
    ) -> Release:
        """Upgrade the release if an active one exists, otherwise install it."""
        ctx = ensure_context(ctx)
        ctx.check()
        existing = self._store.list_releases(namespace=spec.namespace, states=ReleaseStateMask.ACTIVE)
        if any(r.name == spec.release_name and r.namespace == spec.namespace for r in existing):
            self._log.debug("release_exists", release=spec.release_name, namespace=spec.namespace)
            return self.upgrade(spec, rollback=rollback, ctx=ctx)
        return self.install(spec, ctx=ctx)

    def install(self, spec: ReleaseSpec, ctx: OperationContext | None = None) -> Release:
        """Install a new release.

        Raises:
            ReleaseValidationError: If the name is invalid or already in use,
                or the chart is not installable.
            ReleaseFailedError: If applying fails. ``partial_release`` holds the
                failed revision.
        """
        ctx = ensure_context(ctx).with_timeout(spec.timeout)
        name = self._resolve_name(spec)
        namespace = spec.namespace
        log = self._log.bind(release=name, namespace=namespace)

        revision = 1
        if not spec.dry_run:
            revision = self._next_install_revision(name, namespace, spec.replace, ctx)

        chart = self._load_chart(spec, ctx)
        self._require_installable(chart)
        chart = self._resolve_dependencies(chart, spec.dependency_update, ctx)
        values = self._compose(spec)
        self._lint(chart, values, namespace)

        log.info("installing_release", chart=chart.name, version=chart.version, dry_run=spec.dry_run)
        rendered = self._renderer.render(
            chart,
            values,
            release_name=name,
            namespace=namespace,
            include_crds=not spec.skip_crds,
            disable_hooks=spec.disable_hooks,
            post_renderer=spec.post_renderer,
            post_renderer_args=spec.post_renderer_args,
        )
        release = self._new_release(
            name, namespace, revision, ReleaseStatus.PENDING_INSTALL, chart, values, rendered
        )
        if spec.dry_run:
            release.description = "Dry run complete"
            return release

        ctx.check()
        self._store.create(release)
        try:
            self._applier.apply(
                release.manifest,
                namespace,
                force=spec.force,
                create_namespace=spec.create_namespace,
                wait=spec.wait,
                timeout=ctx.request_timeout,
            )
        except (KubernetesError, ReleaseError) as e:
            self._fail_install(spec, release, e)

        release.touch(ReleaseStatus.DEPLOYED, spec.description or "Install complete")
        self._store.update(release)
        log.info("release_installed", revision=release.revision, chart=release.chart_label)
        return release

    def upgrade(
        self,
        spec: ReleaseSpec,
        rollback: RollbackPolicy | None = None,
        ctx: OperationContext | None = None,
    ) -> Release:
        """Upgrade an existing release.

        If rendering fails before anything is recorded and *rollback* is given,
        the policy is invoked and its outcome is folded into the raised error.

        Raises:
            ReleaseNotFoundError: If the release has no active revision.
            ReleaseFailedError: If the upgrade failed.
            RollbackError: If the upgrade failed and so did the rollback.
        """
        ctx = ensure_context(ctx).with_timeout(spec.timeout)
        name = spec.release_name
        namespace = spec.namespace
        validate_release_name(name)
        log = self._log.bind(release=name, namespace=namespace)

        ctx.check()
        history = self._store.history(name, namespace)
        current, latest = self._current_release(name, namespace, history)

        chart = self._load_chart(spec, ctx)
        chart = self._resolve_dependencies(chart, spec.dependency_update, ctx)
        values = self._compose_upgrade(spec, current)
        self._lint(chart, values, namespace)

        if spec.upgrade_crds and not spec.skip_crds:
            log.debug("upgrading_crds", chart=chart.name)
            try:
                crds = chart.crd_objects()
            except ValueError as e:
                raise ReleaseValidationError(str(e), release=name, namespace=namespace) from e
            self._migrations.migrate(crds, ctx)

        log.info(
            "upgrading_release",
            chart=chart.name,
            version=chart.version,
            from_revision=current.revision,
            dry_run=spec.dry_run,
        )
        try:
            rendered = self._renderer.render(
                chart,
                values,
                release_name=name,
                namespace=namespace,
                is_upgrade=True,
                disable_hooks=spec.disable_hooks,
                post_renderer=spec.post_renderer,
                post_renderer_args=spec.post_renderer_args,
            )
        except RenderError as e:
            self._log.debug("release_upgrade_failed", release=name, error=str(e))
            if rollback is None:
                raise
            self._rollback_after_failure(spec, rollback, e)

        release = self._new_release(
            name, namespace, latest.revision + 1, ReleaseStatus.PENDING_UPGRADE, chart, values, rendered
        )
        if spec.dry_run:
            release.description = "Dry run complete"
            return release

        ctx.check()
        self._store.create(release)
        try:
            self._applier.apply(
                release.manifest,
                namespace,
                force=spec.force,
                wait=spec.wait,
                timeout=ctx.request_timeout,
            )
        except (KubernetesError, ReleaseError) as e:
            self._fail_upgrade(spec, current, release, e)

        release.touch(ReleaseStatus.DEPLOYED, spec.description or "Upgrade complete")
        self._store.update(release)
        for previous in history:
            if previous.status is ReleaseStatus.DEPLOYED:
                previous.touch(ReleaseStatus.SUPERSEDED)
                self._store.update(previous)

        max_history = self._config.max_history if spec.max_history is None else spec.max_history
        self._prune_history(name, namespace, max_history)
        log.info("release_upgraded", revision=release.revision, chart=release.chart_label)
        return release

    # -----------------------------------------------------------------------
    # Rollback / uninstall
    # -----------------------------------------------------------------------

    def rollback_release(self, spec: ReleaseSpec) -> None:
        """Restore the last deployed state of ``spec.release_name``."""
        DefaultRollbackPolicy(self._store, self._applier).rollback_release(spec)

    def rollback_to_revision(
        self,
        name: str,
        revision: int,
        namespace: str | None = None,
        *,
        force: bool = False,
    ) -> Release:
        """Restore a specific revision and return the new release revision."""
        ns = namespace or self._config.namespace
        spec = ReleaseSpec(release_name=name, chart=name, namespace=ns, force=force)
        RevisionRollbackPolicy(self._store, self._applier, revision, force=force).rollback_release(spec)
        return self._store.get(name, ns)

    def uninstall_release(self, spec: ReleaseSpec) -> Release:
        """Delete the release's resources and its history (unless ``keep_history``).

        Raises:
            ReleaseNotFoundError: If the release has no stored revisions.
            ReleaseValidationError: If the release is already uninstalled.
        """
        name = spec.release_name
        namespace = spec.namespace
        history = self._store.history(name, namespace)
        if not history:
            raise ReleaseNotFoundError(name, namespace)

        latest = history[-1]
        if latest.status is ReleaseStatus.UNINSTALLED:
            raise ReleaseValidationError("release is already uninstalled", release=name, namespace=namespace)

        if spec.dry_run:
            return latest

        self._log.info("uninstalling_release", release=name, namespace=namespace, revision=latest.revision)
        self._applier.delete(latest.manifest, namespace)

        latest.touch(ReleaseStatus.UNINSTALLED, spec.description or "Uninstallation complete")
        if spec.keep_history:
            self._store.update(latest)
        else:
            for release in history:
                self._store.delete(name, namespace, release.revision)
        self._log.info("release_uninstalled", release=name, namespace=namespace, kept_history=spec.keep_history)
        return latest

    def uninstall_release_by_name(self, name: str) -> Release:
        """Uninstall *name* from the configured namespace, purging its history."""
        return self.uninstall_release(
            ReleaseSpec(release_name=name, chart=name, namespace=self._config.namespace)
        )

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def list_deployed_releases(self) -> list[Release]:
        return self.list_releases_by_state_mask(ReleaseStateMask.DEPLOYED)

    def list_releases_by_state_mask(self, states: ReleaseStateMask) -> list[Release]:
        return self.list_releases(ListOptions(namespace=self._config.namespace, states=states))

    def list_releases(self, options: ListOptions | None = None) -> list[Release]:
        """Latest revision of every release matching *options*, sorted by name."""
        options = options or ListOptions()
        releases = self._store.list_releases(namespace=options.namespace, states=options.states)
        if options.selector:
            requirements = parse_selector(options.selector)
            releases = [
                r
                for r in releases
                if all(
                    (release_labels(r).get(key) == value) != negated
                    for key, value, negated in requirements
                )
            ]
        return sorted(releases, key=lambda r: (r.namespace, r.name))

    def get_release(self, name: str, namespace: str | None = None) -> Release:
        return self._store.get(name, namespace or self._config.namespace)

    def get_release_values(
        self,
        name: str,
        all_values: bool = False,
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """User-supplied values of the latest revision, or the fully computed
        values (chart defaults included) when *all_values* is set."""
        release = self.get_release(name, namespace)
        if all_values:
            return deep_merge(release.chart_values, release.config)
        return copy.deepcopy(release.config)

    def list_release_history(
        self,
        name: str,
        max_revisions: int = 0,
        namespace: str | None = None,
    ) -> list[Release]:
        """The last *max_revisions* revisions (all when 0), oldest first."""
        ns = namespace or self._config.namespace
        history = self._store.history(name, ns)
        if not history:
            raise ReleaseNotFoundError(name, ns)
        return history[-max_revisions:] if max_revisions > 0 else history

    @staticmethod
    def annotation_with_release(release: Release, key: str) -> str | None:
        """Look up a chart annotation of a recorded release."""
        return release.chart.annotations.get(key)

    # -----------------------------------------------------------------------
    # Charts
    # -----------------------------------------------------------------------

    def template_chart(self, spec: ReleaseSpec, options: TemplateOptions | None = None) -> str:
        """Render a chart locally, CRDs and hooks included.

        Raises:
            RenderError: After writing any partial output to ``options.output``.
        """
        options = options or TemplateOptions()
        named = spec.release_name or spec.generate_name or spec.name_template or self._config.name_template
        name = self._resolve_name(spec) if named else TEMPLATE_RELEASE_NAME
        chart = self._load_chart(spec, None)
        self._require_installable(chart)
        chart = self._resolve_dependencies(chart, spec.dependency_update, None)
        values = self._compose(spec)

        try:
            rendered = self._renderer.render(
                chart,
                values,
                release_name=name,
                namespace=spec.namespace,
                include_crds=True,
                disable_hooks=spec.disable_hooks,
                kube_version=options.kube_version,
                api_versions=options.api_versions,
                post_renderer=spec.post_renderer,
                post_renderer_args=spec.post_renderer_args,
            )
        except RenderError as e:
            if e.partial is not None and options.output is not None:
                options.output.write(e.partial.as_text())
            raise

        text = rendered.as_text()
        if options.output is not None:
            options.output.write(text)
        return text

    def lint_chart(self, spec: ReleaseSpec) -> list[LintMessage]:
        """Lint a chart with the ReleaseSpec values; library charts are allowed.

        Raises:
            LintError: If any blocking finding exists.
        """
        chart = self._load_chart(spec, None)
        values = self._compose(spec)
        messages = self._linter.lint(chart, values, namespace=spec.namespace)
        enforce_lint(chart.name, messages, strict=self._config.strict_lint)
        return messages

    def get_chart(self, reference: str, version: str = "") -> tuple[Chart, Path | None]:
        chart = self._loader.load(reference, version)
        return chart, chart.path

    # -----------------------------------------------------------------------
    # Repositories and dependencies
    # -----------------------------------------------------------------------

    def _require_repositories(self) -> RepositoryIndexStore:
        if self._repositories is None:
            raise ReleaseValidationError("no chart repository store configured")
        return self._repositories

    def add_or_update_chart_repo(self, entry: RepositoryEntry, ctx: OperationContext | None = None) -> None:
        self._require_repositories().add_repository(entry, ctx=ctx)

    def update_chart_repos(self, ctx: OperationContext | None = None) -> list[str]:
        return self._require_repositories().update_repositories(ctx=ctx)

    def dependency_build(
        self,
        chart_path: str | Path,
        verify: bool = False,
        keyring: Path | None = None,
        ctx: OperationContext | None = None,
    ) -> DependencyResolution:
        """Download the dependency versions pinned in the chart's lock file."""
        path = Path(chart_path).expanduser()
        if is_archive(path):
            raise ReleaseValidationError(f"dependency build needs a chart directory, got {path}")
        keyring = keyring or self._config.keyring
        if verify and keyring is None:
            raise ReleaseValidationError("verification requested but no keyring configured")
        return self._resolver.build(load_path(path), keyring if verify else None, ctx)

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    def _resolve_name(self, spec: ReleaseSpec) -> str:
        """Explicit name, then name template, then a generated name."""
        if spec.release_name and spec.generate_name:
            raise ReleaseValidationError("cannot set both a release name and generate_name")

        template = spec.name_template or self._config.name_template
        if spec.release_name:
            name = spec.release_name
        elif template:
            name = render_name_template(template, chart_base_name(spec.chart))
        elif spec.generate_name:
            name = f"{chart_base_name(spec.chart)}-{int(time.time())}"
        else:
            raise ReleaseValidationError("must either provide a release name or set generate_name")

        validate_release_name(name)
        return name

    def _next_install_revision(
        self, name: str, namespace: str, replace: bool, ctx: OperationContext
    ) -> int:
        ctx.check()
        history = self._store.history(name, namespace)
        if not history:
            return 1
        latest = history[-1]
        if replace and latest.status in _REUSABLE_STATUSES:
            return latest.revision + 1
        raise ReleaseValidationError(
            "cannot re-use a name that is still in use", release=name, namespace=namespace
        )

    def _current_release(
        self, name: str, namespace: str, history: list[Release]
    ) -> tuple[Release, Release]:
        """Return (release the upgrade starts from, latest revision)."""
        if not history or history[-1].status is ReleaseStatus.UNINSTALLED:
            raise ReleaseNotFoundError(name, namespace)
        latest = history[-1]
        if latest.status.is_pending:
            raise ReleaseValidationError(
                f"another operation is in progress ({latest.status.value})",
                release=name,
                namespace=namespace,
            )
        deployed = [r for r in history if r.status is ReleaseStatus.DEPLOYED]
        return (deployed[-1] if deployed else latest), latest

    def _load_chart(self, spec: ReleaseSpec, ctx: OperationContext | None) -> Chart:
        return self._loader.load(spec.chart, spec.version or ANY_VERSION, ctx)

    @staticmethod
    def _require_installable(chart: Chart) -> None:
        if not chart.metadata.is_installable:
            raise ReleaseValidationError(
                f"chart '{chart.name}' has an unsupported type and is not installable: "
                f"'{chart.metadata.type}'"
            )

    def _resolve_dependencies(
        self, chart: Chart, allow_update: bool, ctx: OperationContext | None
    ) -> Chart:
        resolution = self._resolver.resolve(chart, allow_update, keyring=self._config.keyring, ctx=ctx)
        if not resolution.reload_required:
            return chart
        if chart.path is None:
            raise ReleaseValidationError(f"chart '{chart.name}' cannot be reloaded without a path")
        self._log.debug("reloading_chart", chart=chart.name, path=str(chart.path))
        return self._loader.load(str(chart.path), "", ctx)

    def _compose(self, spec: ReleaseSpec) -> dict[str, Any]:
        return self._composer.compose(
            values_yaml=spec.values_yaml,
            overrides=spec.value_overrides,
            values_files=spec.values_files,
            set_values=spec.set_values,
            set_string_values=spec.set_string_values,
            metadata=spec.metadata,
        )

    def _compose_upgrade(self, spec: ReleaseSpec, current: Release) -> dict[str, Any]:
        """New values, merged over the previous ones when reusing.

        With neither ``reset_values`` nor ``reuse_values``, an upgrade that
        supplies no values keeps the previous ones.
        """
        values = self._composer.compose(
            values_yaml=spec.values_yaml,
            overrides=spec.value_overrides,
            values_files=spec.values_files,
            set_values=spec.set_values,
            set_string_values=spec.set_string_values,
        )
        if spec.reuse_values and not spec.reset_values:
            values = deep_merge(current.config, values)
        elif not spec.reset_values and not values:
            values = copy.deepcopy(current.config)

        if spec.metadata is not None:
            self._composer.inject_metadata(values, spec.metadata)
        return values

    def _lint(self, chart: Chart, values: dict[str, Any], namespace: str) -> None:
        if not self._config.linting:
            return
        messages = self._linter.lint(chart, values, namespace=namespace)
        enforce_lint(chart.name, messages, strict=self._config.strict_lint)

    @staticmethod
    def _new_release(
        name: str,
        namespace: str,
        revision: int,
        status: ReleaseStatus,
        chart: Chart,
        values: dict[str, Any],
        rendered: RenderedChart,
    ) -> Release:
        return Release(
            name=name,
            namespace=namespace,
            revision=revision,
            status=status,
            chart=chart.metadata,
            config=values,
            chart_values=chart.default_values(),
            manifest=rendered.manifest,
            hooks=list(rendered.hooks),
            description=f"{status.value.replace('-', ' ').capitalize()}",
        )

    def _rollback_after_failure(
        self, spec: ReleaseSpec, rollback: RollbackPolicy, error: ReleaseError
    ) -> None:
        try:
            rollback.rollback_release(spec)
        except Exception as rollback_error:
            raise RollbackError(
                error, rollback_error, release=spec.release_name, namespace=spec.namespace
            ) from error
        raise ReleaseFailedError(
            f"release failed, rollback succeeded: release error: {error}",
            release=spec.release_name,
            namespace=spec.namespace,
        ) from error

    def _fail_install(self, spec: ReleaseSpec, release: Release, error: Exception) -> None:
        release.touch(ReleaseStatus.FAILED, f"Release \"{release.name}\" failed: {error}")
        self._store.update(release)
        self._log.error("release_install_failed", release=release.name, namespace=release.namespace, error=str(error))

        if not spec.atomic:
            raise ReleaseFailedError(
                f"install failed: {error}",
                release=release.name,
                namespace=release.namespace,
                partial_release=release,
            ) from error

        try:
            self.uninstall_release(
                ReleaseSpec(
                    release_name=release.name,
                    chart=spec.chart,
                    namespace=release.namespace,
                    keep_history=spec.keep_history,
                )
            )
        except (KubernetesError, ReleaseError) as uninstall_error:
            raise ReleaseFailedError(
                f"install failed, uninstall failed: release error: {error}, "
                f"uninstall error: {uninstall_error}",
                release=release.name,
                namespace=release.namespace,
                partial_release=release,
            ) from error
        raise ReleaseFailedError(
            f"install failed and was uninstalled due to atomic being set: {error}",
            release=release.name,
            namespace=release.namespace,
            partial_release=release,
        ) from error

    def _fail_upgrade(
        self, spec: ReleaseSpec, current: Release, release: Release, error: Exception
    ) -> None:
        release.touch(ReleaseStatus.FAILED, f"Upgrade \"{release.name}\" failed: {error}")
        self._store.update(release)
        self._log.error("release_upgrade_failed", release=release.name, namespace=release.namespace, error=str(error))

        if spec.cleanup_on_fail and not spec.atomic:
            self._cleanup_created_resources(current, release)

        if not spec.atomic:
            raise ReleaseFailedError(
                f"upgrade failed: {error}",
                release=release.name,
                namespace=release.namespace,
                partial_release=release,
            ) from error

        try:
            DefaultRollbackPolicy(self._store, self._applier).rollback_release(spec)
        except Exception as rollback_error:
            raise RollbackError(
                error, rollback_error, release=release.name, namespace=release.namespace
            ) from error
        raise ReleaseFailedError(
            f"release failed, rollback succeeded: release error: {error}",
            release=release.name,
            namespace=release.namespace,
            partial_release=release,
        ) from error

    def _cleanup_created_resources(self, current: Release, release: Release) -> None:
        """Delete resources the failed revision introduced."""
        try:
            existing = {resource_identifier(d) for d in load_manifest_documents(current.manifest)}
            created = [
                d for d in load_manifest_documents(release.manifest) if resource_identifier(d) not in existing
            ]
            if created:
                self._applier.delete(yaml.safe_dump_all(created, sort_keys=False), release.namespace)
        except KubernetesError as e:
            # The upgrade error is what gets raised; cleanup problems are only reported.
            self._log.warning("cleanup_on_fail_failed", release=release.name, error=str(e))
            return
        self._log.info("cleanup_on_fail_completed", release=release.name, deleted=len(created))

    def _prune_history(self, name: str, namespace: str, max_history: int) -> None:
        """Delete the oldest revisions beyond *max_history* (0 keeps everything)."""
        if max_history <= 0:
            return
        history = self._store.history(name, namespace)
        excess = len(history) - max_history
        for release in history[: max(excess, 0)]:
            if release.status is ReleaseStatus.DEPLOYED:
                continue
            self._store.delete(name, namespace, release.revision)
            self._log.debug("revision_pruned", release=name, revision=release.revision)
