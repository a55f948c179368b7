"""Table output shared by the CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from rich.table import Table as RichTable

if TYPE_CHECKING:
    from rich.console import ConsoleRenderable, RichCast

OverflowMethod = Literal["fold", "crop", "ellipsis", "ignore"]

STATUS_STYLES = {
    "deployed": "green",
    "failed": "red",
    "uninstalled": "red",
    "pending-install": "yellow",
    "pending-upgrade": "yellow",
    "pending-rollback": "yellow",
    "superseded": "dim",
}


class Table(RichTable):
    """Rich table whose columns wrap long values instead of truncating them.

    Release manifests, chart references and descriptions are routinely wider
    than the terminal, so ``overflow="fold"`` is the default.
    """

    def add_column(
        self,
        header: ConsoleRenderable | RichCast | str = "",
        footer: ConsoleRenderable | RichCast | str = "",
        *,
        overflow: OverflowMethod = "fold",
        **kwargs: Any,
    ) -> None:
        super().add_column(header, footer, overflow=overflow, **kwargs)


def colorize_status(status: str) -> str:
    """Wrap a release status in its Rich style markup."""
    style = STATUS_STYLES.get(status.lower())
    return f"[{style}]{status}[/{style}]" if style else status
