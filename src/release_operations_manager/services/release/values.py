"""Values composition.

Builds the final values mapping of a release from default text, values files,
structured overrides and ``--set`` style expressions.

Merge rules:
    - If both sides hold a mapping for a key, the mappings merge recursively.
    - Otherwise the override replaces the base value outright. Lists are
      never merged element-wise.

The reserved top-level key ``releaseMetadata`` is written last from the
caller's metadata passthrough. It replaces any user-supplied subtree under
that key; the overwritten keys are logged as a warning.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml

from release_operations_manager.services.release.exceptions import ReleaseValidationError

logger = structlog.get_logger()

RESERVED_METADATA_KEY = "releaseMetadata"

_SEGMENT_RE = re.compile(r"^(?P<name>[^\[\]]*)(?P<indices>(?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")
_INT_RE = re.compile(r"^[-+]?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^[-+]?(\d+\.\d*|\.\d+)([eE][-+]?\d+)?$")

MAX_LIST_INDEX = 65536


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new mapping with *override* merged onto *base*."""
    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_values_text(text: str, source: str = "values") -> dict[str, Any]:
    """Parse YAML values text. Empty text parses to an empty mapping.

    Raises:
        ReleaseValidationError: On malformed YAML or a non-mapping document.
    """
    if not text or not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ReleaseValidationError(f"failed to parse {source}: {e}") from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ReleaseValidationError(
            f"{source} must be a mapping, got {type(loaded).__name__}"
        )
    return loaded


# ---------------------------------------------------------------------------
# --set parsing
# ---------------------------------------------------------------------------


def _split_unescaped(text: str, separator: str, *, respect_braces: bool = False) -> list[str]:
    """Split on *separator* unless escaped with a backslash or inside ``{}``.

    Escape sequences are kept so later stages can unescape them.
    """
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(text[i : i + 2])
            i += 2
            continue
        if respect_braces and char == "{":
            depth += 1
        elif respect_braces and char == "}" and depth:
            depth -= 1
        if char == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    parts.append("".join(current))
    return parts


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def _typed(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "~"):
        return None
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


def _parse_value(raw: str, as_string: bool) -> Any:
    if as_string:
        return _unescape(raw)
    if raw.startswith("{") and raw.endswith("}"):
        inner = raw[1:-1]
        if not inner:
            return []
        return [_typed(_unescape(item)) for item in _split_unescaped(inner, ",")]
    return _typed(_unescape(raw))


def _parse_key(key: str, expression: str) -> list[tuple[str, list[int]]]:
    path: list[tuple[str, list[int]]] = []
    for raw_segment in _split_unescaped(key, "."):
        m = _SEGMENT_RE.match(raw_segment)
        name = _unescape(m.group("name")) if m else ""
        if m is None or not name:
            raise ReleaseValidationError(f"invalid key '{key}' in set expression '{expression}'")
        indices = [int(i) for i in _INDEX_RE.findall(m.group("indices"))]
        if any(i > MAX_LIST_INDEX for i in indices):
            raise ReleaseValidationError(
                f"list index in '{key}' exceeds the maximum of {MAX_LIST_INDEX}"
            )
        path.append((name, indices))
    return path


def _assign(target: dict[str, Any], path: list[tuple[str, list[int]]], value: Any) -> None:
    current: Any = target
    for position, (name, indices) in enumerate(path):
        last_segment = position == len(path) - 1

        if not indices:
            if last_segment:
                current[name] = value
                return
            child = current.get(name)
            if not isinstance(child, dict):
                child = current[name] = {}
            current = child
            continue

        container = current.get(name)
        if not isinstance(container, list):
            container = current[name] = []
        for depth, index in enumerate(indices):
            while len(container) <= index:
                container.append(None)
            if depth < len(indices) - 1:
                if not isinstance(container[index], list):
                    container[index] = []
                container = container[index]
            elif last_segment:
                container[index] = value
                return
            else:
                if not isinstance(container[index], dict):
                    container[index] = {}
                current = container[index]


def parse_set_into(target: dict[str, Any], expression: str, *, as_string: bool = False) -> None:
    """Apply one ``--set`` expression (``a.b=1,c[0]=x``) to *target* in place.

    Raises:
        ReleaseValidationError: If a pair has no ``=`` or the key is malformed.
    """
    for pair in _split_unescaped(expression, ",", respect_braces=True):
        if not pair:
            continue
        key_and_value = _split_unescaped(pair, "=")
        if len(key_and_value) < 2:
            raise ReleaseValidationError(f"key '{pair}' has no value in set expression '{expression}'")
        key = key_and_value[0]
        raw_value = "=".join(key_and_value[1:])
        _assign(target, _parse_key(key, expression), _parse_value(raw_value, as_string))


def parse_set_values(expressions: Iterable[str], *, as_string: bool = False) -> dict[str, Any]:
    """Parse ``--set`` expressions into a fresh mapping."""
    result: dict[str, Any] = {}
    for expression in expressions:
        parse_set_into(result, expression, as_string=as_string)
    return result


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class ValuesComposer:
    """Compose release values with override precedence."""

    def __init__(self, reserved_key: str = RESERVED_METADATA_KEY) -> None:
        self._reserved_key = reserved_key
        self._log = logger.bind(component="values")

    def compose(
        self,
        values_yaml: str = "",
        overrides: Iterable[Mapping[str, Any]] = (),
        values_files: Iterable[str | Path] = (),
        set_values: Iterable[str] = (),
        set_string_values: Iterable[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge all value sources in precedence order.

        Order: base text, values files, structured overrides, ``set_values``,
        ``set_string_values``, then the metadata passthrough.

        Raises:
            ReleaseValidationError: On malformed YAML, unreadable files or bad
                set expressions.
        """
        composed = parse_values_text(values_yaml)

        for path in values_files:
            composed = deep_merge(composed, self._read_values_file(Path(path)))

        for override in overrides:
            if not isinstance(override, Mapping):
                raise ReleaseValidationError(
                    f"value override must be a mapping, got {type(override).__name__}"
                )
            composed = deep_merge(composed, override)

        for expression in set_values:
            parse_set_into(composed, expression)
        for expression in set_string_values:
            parse_set_into(composed, expression, as_string=True)

        if metadata is not None:
            self.inject_metadata(composed, metadata)

        self._log.debug("values_composed", keys=sorted(composed))
        return composed

    def _read_values_file(self, path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ReleaseValidationError(f"cannot read values file {path}: {e}") from e
        return parse_values_text(text, source=str(path))

    def inject_metadata(self, composed: dict[str, Any], metadata: Mapping[str, Any]) -> None:
        """Write *metadata* under the reserved key, replacing whatever is there."""
        existing = composed.get(self._reserved_key)
        if existing:
            overwritten = sorted(existing) if isinstance(existing, dict) else [self._reserved_key]
            self._log.warning(
                "reserved_values_overwritten",
                key=self._reserved_key,
                overwritten=overwritten,
            )
        composed[self._reserved_key] = copy.deepcopy(dict(metadata))
