"""Chart repository commands."""

from __future__ import annotations

from typing import Annotated

import typer
from pydantic import ValidationError

from release_operations_manager.cli.commands.base import (
    OutputOption,
    console,
    handle_release_error,
    load_settings,
    open_repositories,
)
from release_operations_manager.cli.output import OutputFormat, Table, print_structured
from release_operations_manager.integrations.kubernetes.models.repository import RepositoryEntry
from release_operations_manager.services.release import ReleaseError

app = typer.Typer(help="Manage chart repositories.", no_args_is_help=True)


@app.command("add")
def add(
    name: Annotated[str, typer.Argument(help="Repository name")],
    url: Annotated[str, typer.Argument(help="Repository URL")],
    username: Annotated[str | None, typer.Option("--username", help="Repository username")] = None,
    password: Annotated[str | None, typer.Option("--password", help="Repository password")] = None,
    ca_file: Annotated[str | None, typer.Option("--ca-file", help="CA bundle for TLS")] = None,
    cert_file: Annotated[str | None, typer.Option("--cert-file", help="Client certificate")] = None,
    key_file: Annotated[str | None, typer.Option("--key-file", help="Client key")] = None,
    insecure_skip_tls_verify: Annotated[
        bool, typer.Option("--insecure-skip-tls-verify", help="Skip TLS certificate checks")
    ] = False,
    pass_credentials: Annotated[
        bool, typer.Option("--pass-credentials", help="Send credentials to every host")
    ] = False,
) -> None:
    """Add or update a chart repository and download its index.

    Examples:
        rops repo add bitnami https://charts.bitnami.com/bitnami
    """
    try:
        entry = RepositoryEntry(
            name=name,
            url=url,
            username=username,
            password=password,
            ca_file=ca_file,
            cert_file=cert_file,
            key_file=key_file,
            insecure_skip_tls_verify=insecure_skip_tls_verify,
            pass_credentials_all=pass_credentials,
        )
    except ValidationError as e:
        raise typer.BadParameter(str(e)) from None

    config = load_settings()
    with open_repositories(config) as repositories:
        try:
            repositories.add_repository(entry)
        except ReleaseError as e:
            handle_release_error(e)
    console.print(f"[green]\"{name}\" has been added to your repositories[/green]")


@app.command("update")
def update(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Repositories to update (all if omitted)"),
    ] = None,
) -> None:
    """Download the latest index of every (or the named) repository."""
    config = load_settings()
    with open_repositories(config) as repositories:
        try:
            updated = repositories.update_repositories(names)
        except ReleaseError as e:
            handle_release_error(e)
    if not updated:
        console.print("[yellow]No repositories configured[/yellow]")
        return
    for name in updated:
        console.print(f"...Successfully got an update from the \"{name}\" chart repository")
    console.print("[green]Update Complete.[/green]")


@app.command("list")
def list_repositories(output: OutputOption = OutputFormat.TABLE) -> None:
    """List configured chart repositories."""
    config = load_settings()
    with open_repositories(config) as repositories:
        try:
            entries = repositories.list_repositories()
        except ReleaseError as e:
            handle_release_error(e)

    if output != OutputFormat.TABLE:
        print_structured(console, [{"name": e.name, "url": e.url} for e in entries], output)
        return
    if not entries:
        console.print("[yellow]No repositories configured[/yellow]")
        return

    table = Table(title="Chart Repositories")
    table.add_column("Name", style="cyan")
    table.add_column("URL")
    for entry in entries:
        table.add_row(entry.name, entry.url)
    console.print(table)


@app.command("remove")
def remove(name: Annotated[str, typer.Argument(help="Repository name")]) -> None:
    """Remove a chart repository and its cached index."""
    config = load_settings()
    with open_repositories(config) as repositories:
        try:
            repositories.remove_repository(name)
        except ReleaseError as e:
            handle_release_error(e)
    console.print(f"[green]\"{name}\" has been removed from your repositories[/green]")
