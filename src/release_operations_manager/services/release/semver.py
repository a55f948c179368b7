"""Semantic versions and version-range constraints for chart dependencies.

Constraint syntax:

* comparison operators ``=``, ``!=``, ``>``, ``<``, ``>=``, ``<=``
* ``~1.2.3`` (patch-level changes) and ``^1.2.3`` (no breaking changes)
* wildcards ``1.2.x``, ``1.*``, ``*`` and partial versions ``1.2``
* hyphen ranges ``1.2 - 1.4.5``
* ``,`` or whitespace between terms means AND, ``||`` means OR

A pre-release version only satisfies a term that itself names a pre-release,
so ``>=1.0.0`` never matches ``1.1.0-rc.1`` while ``>=1.0.0-0`` does.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable
from dataclasses import dataclass

_VERSION_RE = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_PARTIAL_RE = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_OPERATOR_SPACE_RE = re.compile(r"(!=|>=|<=|=>|=<|~>|[=<>~^])\s+")
_HYPHEN_RE = re.compile(r"(\S+)\s+-\s+(\S+)")
_TERM_RE = re.compile(r"^(!=|>=|<=|=>|=<|~>|[=<>~^])?(.+)$")

_OPERATOR_ALIASES = {"=>": ">=", "=<": "<=", "~>": "~"}


class InvalidVersionError(ValueError):
    """Raised when a version or constraint string cannot be parsed."""


def _prerelease_key(prerelease: tuple[str, ...]) -> tuple[tuple[int, int, str], ...]:
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in prerelease)


@functools.total_ordering
@dataclass(frozen=True, slots=True)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: str = ""

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a (possibly partial) version. Missing parts default to zero."""
        m = _VERSION_RE.match(text.strip())
        if m is None:
            raise InvalidVersionError(f"invalid semantic version: {text!r}")
        major, minor, patch, pre, build = m.groups()
        return cls(
            int(major),
            int(minor or 0),
            int(patch or 0),
            tuple(pre.split(".")) if pre else (),
            build or "",
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _key(self) -> tuple[object, ...]:
        # A release sorts after all of its pre-releases.
        pre = (1,) if not self.prerelease else (0, _prerelease_key(self.prerelease))
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __lt__(self, other: Version) -> bool:
        return self._key() < other._key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + self.build
        return text


def parse_version(text: str) -> Version | None:
    """Parse *text* or return None when it is not a valid version."""
    try:
        return Version.parse(text)
    except InvalidVersionError:
        return None


@dataclass(frozen=True, slots=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[str, ...]

    @property
    def floor(self) -> Version:
        return Version(self.major or 0, self.minor or 0, self.patch or 0, self.prerelease)

    @property
    def is_wild(self) -> bool:
        return self.major is None or self.minor is None or self.patch is None

    def next_ceiling(self) -> Version | None:
        """Smallest version above every version the wildcard covers."""
        if self.major is None:
            return None
        if self.minor is None:
            return Version(self.major + 1, 0, 0)
        return Version(self.major, self.minor + 1, 0)


def _parse_partial(text: str) -> _Partial:
    m = _PARTIAL_RE.match(text)
    if m is None:
        raise InvalidVersionError(f"invalid version in constraint: {text!r}")

    def part(value: str | None) -> int | None:
        if value is None or value in ("x", "X", "*"):
            return None
        return int(value)

    major, minor, patch = part(m.group(1)), part(m.group(2)), part(m.group(3))
    # Anything after a wildcard is a wildcard too.
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    pre = m.group(4)
    return _Partial(major, minor, patch, tuple(pre.split(".")) if pre else ())


@dataclass(frozen=True, slots=True)
class _Bound:
    op: str
    version: Version

    def allows(self, v: Version) -> bool:
        match self.op:
            case "=":
                return v == self.version
            case "!=":
                return v != self.version
            case ">":
                return v > self.version
            case ">=":
                return v >= self.version
            case "<":
                return v < self.version
            case "<=":
                return v <= self.version
            case _:
                raise AssertionError(f"unexpected operator: {self.op}")


@dataclass(frozen=True, slots=True)
class _Outside:
    """Matches versions outside ``[lower, upper)``; ``upper`` None means unbounded."""

    lower: Version
    upper: Version | None

    def allows(self, v: Version) -> bool:
        if v < self.lower:
            return True
        return self.upper is not None and v >= self.upper


@dataclass(frozen=True, slots=True)
class _Term:
    text: str
    checks: tuple[_Bound | _Outside, ...]
    names_prerelease: bool

    def allows(self, v: Version) -> bool:
        if v.is_prerelease and not self.names_prerelease:
            return False
        return all(check.allows(v) for check in self.checks)


def _range(lower: Version, upper: Version | None) -> tuple[_Bound, ...]:
    checks = [_Bound(">=", lower)]
    if upper is not None:
        checks.append(_Bound("<", upper))
    return tuple(checks)


def _expand(op: str, p: _Partial) -> tuple[_Bound | _Outside, ...]:
    floor = p.floor
    ceiling = p.next_ceiling()

    if op == "~":
        if p.major is None:
            return _range(Version(0, 0, 0), None)
        if p.minor is None:
            return _range(floor, Version(p.major + 1, 0, 0))
        return _range(floor, Version(p.major, p.minor + 1, 0))

    if op == "^":
        if p.major is None:
            return _range(Version(0, 0, 0), None)
        if p.major > 0 or p.minor is None:
            return _range(floor, Version(p.major + 1, 0, 0))
        if p.minor > 0 or p.patch is None:
            return _range(floor, Version(0, p.minor + 1, 0))
        return _range(floor, Version(0, 0, (p.patch or 0) + 1))

    if not p.is_wild:
        return (_Bound(op, floor),)

    match op:
        case "=":
            return _range(floor, ceiling)
        case "!=":
            return (_Outside(floor, ceiling),)
        case ">":
            if ceiling is None:
                # Nothing is greater than every version.
                return (_Bound("<", Version(0, 0, 0)),)
            return (_Bound(">=", ceiling),)
        case ">=":
            return (_Bound(">=", floor),)
        case "<":
            return (_Bound("<", floor),)
        case "<=":
            return () if ceiling is None else (_Bound("<", ceiling),)
        case _:
            raise AssertionError(f"unexpected operator: {op}")


def _parse_term(text: str) -> _Term:
    m = _TERM_RE.match(text)
    if m is None:
        raise InvalidVersionError(f"invalid constraint term: {text!r}")
    op = m.group(1) or "="
    op = _OPERATOR_ALIASES.get(op, op)
    partial = _parse_partial(m.group(2))
    return _Term(text=text, checks=_expand(op, partial), names_prerelease=bool(partial.prerelease))


@dataclass(frozen=True, slots=True)
class Constraint:
    """A parsed version-range expression (OR of AND groups)."""

    text: str
    groups: tuple[tuple[_Term, ...], ...]

    @classmethod
    def parse(cls, text: str) -> Constraint:
        """Parse a constraint expression.

        Raises:
            InvalidVersionError: If any term cannot be parsed.
        """
        groups: list[tuple[_Term, ...]] = []
        for raw_group in text.split("||"):
            group_text = _HYPHEN_RE.sub(r">=\1 <=\2", raw_group.strip())
            group_text = _OPERATOR_SPACE_RE.sub(r"\1", group_text)
            tokens = [t for t in re.split(r"[,\s]+", group_text) if t]
            if not tokens:
                tokens = ["*"]
            groups.append(tuple(_parse_term(t) for t in tokens))
        return cls(text=text, groups=tuple(groups))

    def allows(self, version: Version | str) -> bool:
        if isinstance(version, str):
            parsed = parse_version(version)
            if parsed is None:
                return False
            version = parsed
        return any(all(term.allows(version) for term in group) for group in self.groups)

    def __str__(self) -> str:
        return self.text


def satisfies(version: str, constraint: str) -> bool:
    """Whether *version* satisfies the *constraint* expression."""
    return Constraint.parse(constraint).allows(version)


def max_satisfying(versions: Iterable[str], constraint: str) -> str | None:
    """Return the highest version in *versions* that satisfies *constraint*.

    Unparseable versions are ignored.
    """
    parsed_constraint = Constraint.parse(constraint)
    best: tuple[Version, str] | None = None
    for text in versions:
        version = parse_version(text)
        if version is None or not parsed_constraint.allows(version):
            continue
        if best is None or version > best[0]:
            best = (version, text)
    return best[1] if best else None
