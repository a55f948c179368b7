"""Structured (JSON/YAML) output for CLI commands."""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any

import yaml
from rich.console import Console


class OutputFormat(StrEnum):
    """Supported output formats for CLI commands."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


def print_structured(console: Console, data: Any, output: OutputFormat) -> None:
    """Print *data* as JSON or YAML without Rich markup processing."""
    if output == OutputFormat.JSON:
        console.print_json(json.dumps(data, default=str))
    else:
        console.print(yaml.safe_dump(data, sort_keys=False, default_flow_style=False), markup=False, end="")
