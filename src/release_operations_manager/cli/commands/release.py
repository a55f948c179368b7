"""Release commands: install, upgrade, deploy, uninstall, rollback and queries."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from pydantic import ValidationError

from release_operations_manager.cli.commands.base import (
    DryRunOption,
    NamespaceOption,
    OutputOption,
    console,
    handle_release_error,
    orchestrator_session,
    parse_duration,
)
from release_operations_manager.cli.output import (
    OutputFormat,
    Table,
    colorize_status,
    print_structured,
)
from release_operations_manager.core.config import ReleaseManagerConfig
from release_operations_manager.integrations.kubernetes.exceptions import KubernetesError
from release_operations_manager.integrations.kubernetes.models.release import (
    ListOptions,
    Release,
    ReleaseSpec,
    ReleaseStateMask,
)
from release_operations_manager.services.release import ReleaseError, TemplateOptions

app = typer.Typer(help="Install, upgrade and inspect releases.", no_args_is_help=True)
logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Release-specific options
# ---------------------------------------------------------------------------

ReleaseArgument = Annotated[str, typer.Argument(help="Release name")]
ChartArgument = Annotated[
    str,
    typer.Argument(help="Chart reference (directory, .tgz, repo/chart, or URL)"),
]
ValuesFilesOption = Annotated[
    list[str] | None,
    typer.Option("--values", "-f", help="Values YAML file (can specify multiple)"),
]
SetValuesOption = Annotated[
    list[str] | None,
    typer.Option("--set", help="Set values (a.b=c,d[0]=e; can specify multiple)"),
]
SetStringOption = Annotated[
    list[str] | None,
    typer.Option("--set-string", help="Set STRING values (can specify multiple)"),
]
VersionOption = Annotated[
    str | None,
    typer.Option("--version", help="Chart version constraint (default: any, pre-releases included)"),
]
TimeoutOption = Annotated[
    str | None,
    typer.Option("--timeout", help="Time to wait for any single operation (e.g. 5m0s)"),
]
WaitOption = Annotated[bool, typer.Option("--wait", help="Wait for resources to be ready")]
AtomicOption = Annotated[
    bool,
    typer.Option("--atomic", help="Undo the operation on failure (implies --wait)"),
]
CreateNamespaceOption = Annotated[
    bool,
    typer.Option("--create-namespace", help="Create the release namespace if missing"),
]
DependencyUpdateOption = Annotated[
    bool,
    typer.Option("--dependency-update", help="Fetch missing dependencies before installing"),
]
SkipCrdsOption = Annotated[bool, typer.Option("--skip-crds", help="Do not install or upgrade CRDs")]
NoHooksOption = Annotated[bool, typer.Option("--no-hooks", help="Do not render lifecycle hooks")]
ForceOption = Annotated[
    bool,
    typer.Option("--force", help="Force resource updates through server-side apply"),
]
DescriptionOption = Annotated[
    str | None,
    typer.Option("--description", help="Custom description recorded on the revision"),
]
PostRendererOption = Annotated[
    str | None,
    typer.Option("--post-renderer", help="Executable that rewrites the rendered manifest on stdin"),
]
PostRendererArgsOption = Annotated[
    list[str] | None,
    typer.Option("--post-renderer-args", help="Argument for the post-renderer (repeatable)"),
]

STATE_FILTERS: dict[str, ReleaseStateMask] = {
    "deployed": ReleaseStateMask.DEPLOYED,
    "failed": ReleaseStateMask.FAILED,
    "pending": ReleaseStateMask.PENDING,
    "superseded": ReleaseStateMask.SUPERSEDED,
    "uninstalled": ReleaseStateMask.UNINSTALLED,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_spec(config: ReleaseManagerConfig, namespace: str | None, **fields: Any) -> ReleaseSpec:
    """Build a ReleaseSpec from CLI values, dropping unset options."""
    data = {k: v for k, v in fields.items() if v is not None}
    for key in ("values_files", "set_values", "set_string_values", "post_renderer_args"):
        if key in data:
            data[key] = tuple(data[key])
    data["namespace"] = namespace or config.namespace
    try:
        return ReleaseSpec(**data)
    except ValidationError as e:
        console.print("[red]Error:[/red] Invalid release options")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "spec"
            console.print(f"  - {location}: {error['msg']}")
        raise typer.Exit(1) from None


def release_summary(release: Release) -> dict[str, Any]:
    return {
        "name": release.name,
        "namespace": release.namespace,
        "revision": release.revision,
        "status": release.status.value,
        "chart": release.chart_label,
        "app_version": release.chart.app_version,
        "updated": release.updated,
        "description": release.description,
    }


def _print_release(release: Release, dry_run: bool = False) -> None:
    summary = release_summary(release)
    console.print(f"NAME: [cyan]{summary['name']}[/cyan]")
    console.print(f"NAMESPACE: {summary['namespace']}")
    console.print(f"REVISION: {summary['revision']}")
    console.print(f"STATUS: {colorize_status(summary['status'])}")
    console.print(f"CHART: {summary['chart']}")
    console.print(f"DESCRIPTION: {summary['description']}")
    if dry_run:
        console.print("\n[yellow]Dry run, nothing was recorded or applied.[/yellow]\nMANIFEST:")
        console.print(release.manifest, markup=False, highlight=False)


def _print_releases_table(releases: list[Release]) -> None:
    table = Table(title="Releases")
    table.add_column("Name", style="cyan")
    table.add_column("Namespace")
    table.add_column("Revision", justify="right")
    table.add_column("Updated", style="dim")
    table.add_column("Status")
    table.add_column("Chart", style="dim")
    table.add_column("App Version", style="dim")
    for release in releases:
        table.add_row(
            release.name,
            release.namespace,
            str(release.revision),
            release.updated,
            colorize_status(release.status.value),
            release.chart_label,
            release.chart.app_version,
        )
    console.print(table)
    console.print(f"\n[dim]Total: {len(releases)} release(s)[/dim]")


def _print_history_table(releases: list[Release]) -> None:
    table = Table(title="Release History")
    table.add_column("Revision", style="cyan", justify="right")
    table.add_column("Updated", style="dim")
    table.add_column("Status")
    table.add_column("Chart", style="dim")
    table.add_column("Description")
    for release in releases:
        table.add_row(
            str(release.revision),
            release.updated,
            colorize_status(release.status.value),
            release.chart_label,
            release.description,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Install / upgrade / deploy
# ---------------------------------------------------------------------------


@app.command("install")
def install(
    args: Annotated[list[str], typer.Argument(help="[NAME] CHART")],
    namespace: NamespaceOption = None,
    values_files: ValuesFilesOption = None,
    set_values: SetValuesOption = None,
    set_string_values: SetStringOption = None,
    version: VersionOption = None,
    generate_name: Annotated[
        bool, typer.Option("--generate-name", "-g", help="Generate the release name")
    ] = False,
    name_template: Annotated[
        str | None,
        typer.Option("--name-template", help="Name template ({chart}, {timestamp}, {random})"),
    ] = None,
    replace: Annotated[
        bool, typer.Option("--replace", help="Re-use the name of an uninstalled or failed release")
    ] = False,
    create_namespace: CreateNamespaceOption = False,
    dependency_update: DependencyUpdateOption = False,
    skip_crds: SkipCrdsOption = False,
    no_hooks: NoHooksOption = False,
    wait: WaitOption = False,
    atomic: AtomicOption = False,
    timeout: TimeoutOption = None,
    force: ForceOption = False,
    description: DescriptionOption = None,
    post_renderer: PostRendererOption = None,
    post_renderer_args: PostRendererArgsOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Install a chart as a new release.

    Examples:
        rops release install web ./charts/web
        rops release install web bitnami/nginx --version '^15.0.0' -f prod.yaml
        rops release install ./charts/web --generate-name
    """
    if len(args) not in (1, 2):
        raise typer.BadParameter("expected [NAME] CHART")
    release_name, chart = (args[0], args[1]) if len(args) == 2 else ("", args[0])

    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            release_name=release_name,
            chart=chart,
            version=version,
            values_files=values_files,
            set_values=set_values,
            set_string_values=set_string_values,
            generate_name=generate_name,
            name_template=name_template,
            replace=replace,
            create_namespace=create_namespace,
            dependency_update=dependency_update,
            skip_crds=skip_crds,
            disable_hooks=no_hooks,
            wait=wait,
            atomic=atomic,
            timeout=parse_duration(timeout),
            force=force,
            description=description,
            post_renderer=post_renderer,
            post_renderer_args=post_renderer_args,
            dry_run=dry_run,
        )
        try:
            release = orchestrator.install(spec)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)
        _print_release(release, dry_run)


def _upgrade_options(**fields: Any) -> dict[str, Any]:
    fields["timeout"] = parse_duration(fields.get("timeout"))
    return fields


@app.command("upgrade")
def upgrade(
    release: ReleaseArgument,
    chart: ChartArgument,
    namespace: NamespaceOption = None,
    values_files: ValuesFilesOption = None,
    set_values: SetValuesOption = None,
    set_string_values: SetStringOption = None,
    version: VersionOption = None,
    reuse_values: Annotated[
        bool, typer.Option("--reuse-values", help="Merge new values over the last release's")
    ] = False,
    reset_values: Annotated[
        bool, typer.Option("--reset-values", help="Use only the new values and chart defaults")
    ] = False,
    upgrade_crds: Annotated[
        bool, typer.Option("--upgrade-crds", help="Migrate bundled CRDs before upgrading")
    ] = False,
    rollback_on_failure: Annotated[
        bool,
        typer.Option("--rollback-on-failure", help="Restore the last deployed state if rendering fails"),
    ] = False,
    cleanup_on_fail: Annotated[
        bool, typer.Option("--cleanup-on-fail", help="Delete resources created by a failed upgrade")
    ] = False,
    max_history: Annotated[
        int | None, typer.Option("--history-max", help="Revisions to keep (0 for no limit)")
    ] = None,
    dependency_update: DependencyUpdateOption = False,
    skip_crds: SkipCrdsOption = False,
    no_hooks: NoHooksOption = False,
    wait: WaitOption = False,
    atomic: AtomicOption = False,
    timeout: TimeoutOption = None,
    force: ForceOption = False,
    description: DescriptionOption = None,
    post_renderer: PostRendererOption = None,
    post_renderer_args: PostRendererArgsOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Upgrade an existing release.

    Examples:
        rops release upgrade web ./charts/web --reuse-values --set image.tag=1.25
        rops release upgrade web bitnami/nginx --upgrade-crds --atomic
    """
    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            **_upgrade_options(
                release_name=release,
                chart=chart,
                version=version,
                values_files=values_files,
                set_values=set_values,
                set_string_values=set_string_values,
                reuse_values=reuse_values,
                reset_values=reset_values,
                upgrade_crds=upgrade_crds,
                cleanup_on_fail=cleanup_on_fail,
                max_history=max_history,
                dependency_update=dependency_update,
                skip_crds=skip_crds,
                disable_hooks=no_hooks,
                wait=wait,
                atomic=atomic,
                timeout=timeout,
                force=force,
                description=description,
                post_renderer=post_renderer,
                post_renderer_args=post_renderer_args,
                dry_run=dry_run,
            ),
        )
        try:
            result = orchestrator.upgrade(spec, rollback=orchestrator if rollback_on_failure else None)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)
        _print_release(result, dry_run)


@app.command("deploy")
def deploy(
    release: ReleaseArgument,
    chart: ChartArgument,
    namespace: NamespaceOption = None,
    values_files: ValuesFilesOption = None,
    set_values: SetValuesOption = None,
    set_string_values: SetStringOption = None,
    version: VersionOption = None,
    reuse_values: Annotated[bool, typer.Option("--reuse-values")] = False,
    reset_values: Annotated[bool, typer.Option("--reset-values")] = False,
    upgrade_crds: Annotated[bool, typer.Option("--upgrade-crds")] = False,
    rollback_on_failure: Annotated[bool, typer.Option("--rollback-on-failure")] = False,
    create_namespace: CreateNamespaceOption = False,
    dependency_update: DependencyUpdateOption = False,
    skip_crds: SkipCrdsOption = False,
    wait: WaitOption = False,
    atomic: AtomicOption = False,
    timeout: TimeoutOption = None,
    post_renderer: PostRendererOption = None,
    post_renderer_args: PostRendererArgsOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Install the release, or upgrade it if it already exists.

    Examples:
        rops release deploy web ./charts/web -n production --create-namespace
    """
    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            **_upgrade_options(
                release_name=release,
                chart=chart,
                version=version,
                values_files=values_files,
                set_values=set_values,
                set_string_values=set_string_values,
                reuse_values=reuse_values,
                reset_values=reset_values,
                upgrade_crds=upgrade_crds,
                create_namespace=create_namespace,
                dependency_update=dependency_update,
                skip_crds=skip_crds,
                wait=wait,
                atomic=atomic,
                timeout=timeout,
                post_renderer=post_renderer,
                post_renderer_args=post_renderer_args,
                dry_run=dry_run,
            ),
        )
        try:
            result = orchestrator.install_or_upgrade(
                spec, rollback=orchestrator if rollback_on_failure else None
            )
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)
        _print_release(result, dry_run)


# ---------------------------------------------------------------------------
# Rollback / uninstall
# ---------------------------------------------------------------------------


@app.command("rollback")
def rollback(
    release: ReleaseArgument,
    revision: Annotated[
        int | None,
        typer.Argument(help="Revision to restore (default: last deployed state)"),
    ] = None,
    namespace: NamespaceOption = None,
    force: ForceOption = False,
) -> None:
    """Roll a release back by recording a new revision.

    Examples:
        rops release rollback web
        rops release rollback web 3 --force
    """
    with orchestrator_session() as (orchestrator, config):
        ns = namespace or config.namespace
        try:
            if revision is None:
                orchestrator.rollback_release(
                    build_spec(config, ns, release_name=release, chart=release, force=force)
                )
                restored = orchestrator.get_release(release, ns)
            else:
                restored = orchestrator.rollback_to_revision(release, revision, ns, force=force)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)
        console.print(
            f"[green]Rollback was a success.[/green] {restored.name} is now at revision {restored.revision}"
        )


@app.command("uninstall")
def uninstall(
    release: ReleaseArgument,
    namespace: NamespaceOption = None,
    keep_history: Annotated[
        bool, typer.Option("--keep-history", help="Keep the revision history")
    ] = False,
    dry_run: DryRunOption = False,
) -> None:
    """Delete a release's resources.

    Examples:
        rops release uninstall web
        rops release uninstall web --keep-history
    """
    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            release_name=release,
            chart=release,
            keep_history=keep_history,
            dry_run=dry_run,
        )
        try:
            orchestrator.uninstall_release(spec)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)
        if dry_run:
            console.print(f"[yellow]Dry run:[/yellow] release '{release}' would be uninstalled")
        else:
            console.print(f"[green]release '{release}' uninstalled[/green]")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@app.command("list")
def list_releases(
    namespace: NamespaceOption = None,
    all_namespaces: Annotated[
        bool, typer.Option("--all-namespaces", "-A", help="List releases across all namespaces")
    ] = False,
    state: Annotated[
        list[str] | None,
        typer.Option(
            "--state",
            help="Filter by state: deployed, failed, pending, superseded, uninstalled (repeatable)",
        ),
    ] = None,
    all_states: Annotated[bool, typer.Option("--all", "-a", help="Show releases in every state")] = False,
    selector: Annotated[
        str | None,
        typer.Option("--selector", "-l", help="Selector on name, status, version or chart"),
    ] = None,
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """List releases (deployed only, unless filtered otherwise).

    Examples:
        rops release list -A
        rops release list --state failed --state pending
        rops release list -l status=deployed,chart!=redis -o json
    """
    states = ReleaseStateMask.ALL if all_states else ReleaseStateMask(0)
    for name in state or []:
        if name.lower() not in STATE_FILTERS:
            raise typer.BadParameter(f"unknown state '{name}'", param_hint="--state")
        states |= STATE_FILTERS[name.lower()]
    if not states:
        states = ReleaseStateMask.DEPLOYED

    with orchestrator_session() as (orchestrator, config):
        options = ListOptions(
            namespace=None if all_namespaces else (namespace or config.namespace),
            states=states,
            selector=selector or "",
        )
        try:
            releases = orchestrator.list_releases(options)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    if output != OutputFormat.TABLE:
        print_structured(console, [release_summary(r) for r in releases], output)
    elif not releases:
        console.print("[yellow]No releases found[/yellow]")
    else:
        _print_releases_table(releases)


@app.command("history")
def history(
    release: ReleaseArgument,
    namespace: NamespaceOption = None,
    max_revisions: Annotated[
        int, typer.Option("--max", help="Maximum number of revisions to show (0 for all)")
    ] = 256,
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """Show the revision history of a release."""
    with orchestrator_session() as (orchestrator, config):
        try:
            revisions = orchestrator.list_release_history(
                release, max_revisions, namespace or config.namespace
            )
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    if output != OutputFormat.TABLE:
        print_structured(console, [release_summary(r) for r in revisions], output)
    else:
        _print_history_table(revisions)


@app.command("status")
def status(
    release: ReleaseArgument,
    namespace: NamespaceOption = None,
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """Show the latest revision of a release."""
    with orchestrator_session() as (orchestrator, config):
        try:
            current = orchestrator.get_release(release, namespace or config.namespace)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    if output != OutputFormat.TABLE:
        print_structured(console, release_summary(current), output)
    else:
        _print_release(current)


@app.command("values")
def values(
    release: ReleaseArgument,
    namespace: NamespaceOption = None,
    all_values: Annotated[
        bool, typer.Option("--all", "-a", help="Include chart defaults")
    ] = False,
    output: OutputOption = OutputFormat.YAML,
) -> None:
    """Show the values of the latest revision of a release."""
    with orchestrator_session() as (orchestrator, config):
        try:
            data = orchestrator.get_release_values(release, all_values, namespace or config.namespace)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    print_structured(console, data, OutputFormat.JSON if output == OutputFormat.JSON else OutputFormat.YAML)


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------


@app.command("template")
def template(
    args: Annotated[list[str], typer.Argument(help="[NAME] CHART")],
    namespace: NamespaceOption = None,
    values_files: ValuesFilesOption = None,
    set_values: SetValuesOption = None,
    set_string_values: SetStringOption = None,
    version: VersionOption = None,
    dependency_update: DependencyUpdateOption = False,
    no_hooks: NoHooksOption = False,
    kube_version: Annotated[
        str | None, typer.Option("--kube-version", help="Kubernetes version for capabilities")
    ] = None,
    api_versions: Annotated[
        list[str] | None,
        typer.Option("--api-versions", help="Extra API versions for capabilities (repeatable)"),
    ] = None,
    post_renderer: PostRendererOption = None,
    post_renderer_args: PostRendererArgsOption = None,
) -> None:
    """Render chart templates locally, CRDs and hooks included.

    Partial output is still printed when rendering fails.
    """
    if len(args) not in (1, 2):
        raise typer.BadParameter("expected [NAME] CHART")
    release_name, chart = (args[0], args[1]) if len(args) == 2 else ("", args[0])

    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            release_name=release_name,
            chart=chart,
            version=version,
            values_files=values_files,
            set_values=set_values,
            set_string_values=set_string_values,
            dependency_update=dependency_update,
            disable_hooks=no_hooks,
            post_renderer=post_renderer,
            post_renderer_args=post_renderer_args,
        )
        options = TemplateOptions(
            kube_version=kube_version or "",
            api_versions=tuple(api_versions or ()),
            output=sys.stdout,
        )
        try:
            orchestrator.template_chart(spec, options)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)


@app.command("lint")
def lint(
    chart: ChartArgument,
    namespace: NamespaceOption = None,
    values_files: ValuesFilesOption = None,
    set_values: SetValuesOption = None,
    set_string_values: SetStringOption = None,
    version: VersionOption = None,
) -> None:
    """Lint a chart with the given values."""
    with orchestrator_session() as (orchestrator, config):
        spec = build_spec(
            config,
            namespace,
            chart=chart,
            version=version,
            values_files=values_files,
            set_values=set_values,
            set_string_values=set_string_values,
        )
        try:
            messages = orchestrator.lint_chart(spec)
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    for message in messages:
        console.print(f"  {message}", markup=False)
    console.print(f"[green]1 chart(s) linted, 0 chart(s) failed[/green] ({len(messages)} finding(s))")


@app.command("dependency-build")
def dependency_build(
    chart_path: Annotated[str, typer.Argument(help="Chart directory")],
    verify: Annotated[
        bool, typer.Option("--verify", help="Verify downloaded charts against the keyring")
    ] = False,
    keyring: Annotated[
        str | None, typer.Option("--keyring", help="Keyring for --verify (default from config)")
    ] = None,
) -> None:
    """Download the dependency versions pinned in Chart.lock."""
    with orchestrator_session() as (orchestrator, _config):
        try:
            resolution = orchestrator.dependency_build(
                chart_path, verify=verify, keyring=Path(keyring).expanduser() if keyring else None
            )
        except (ReleaseError, KubernetesError) as e:
            handle_release_error(e)

    for archive in resolution.downloaded:
        console.print(f"Downloaded [cyan]{archive.name}[/cyan]")
    console.print("[green]Dependencies are up to date[/green]")
    logger.debug("dependency_build_completed", chart=chart_path, downloaded=len(resolution.downloaded))
