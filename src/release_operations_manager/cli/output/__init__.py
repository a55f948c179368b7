"""Centralized CLI output utilities.

Usage:
    from release_operations_manager.cli.output import Table, colorize_status

    table = Table(title="Releases")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_row("web", colorize_status("deployed"))
    console.print(table)
"""

from release_operations_manager.cli.output.formatters import OutputFormat, print_structured
from release_operations_manager.cli.output.table import Table, colorize_status

__all__ = ["OutputFormat", "Table", "colorize_status", "print_structured"]
