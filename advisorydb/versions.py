"""Cargo-style version requirement matching.

Advisories describe ``patched`` and ``unaffected`` ranges with the same
requirement syntax Cargo uses in ``Cargo.toml``: comma-separated
comparators such as ``>= 1.2.3, < 2``, ``^0.4``, ``~1.1`` or ``=2.0``.
Version values themselves are handled by the ``semver`` library.
"""

import re
from dataclasses import dataclass, field

import semver

_COMPARATOR_RE = re.compile(
    r"""^\s*
    (?P<op>>=|<=|>|<|=|\^|~)?\s*
    (?P<major>\d+|\*|x|X)
    (?:\.(?P<minor>\d+|\*|x|X))?
    (?:\.(?P<patch>\d+|\*|x|X))?
    (?:-(?P<pre>[0-9A-Za-z.-]+))?
    (?:\+[0-9A-Za-z.-]+)?
    \s*$""",
    re.VERBOSE,
)

_WILDCARDS = {"*", "x", "X"}


def parse_version(text: str) -> semver.Version:
    """Parse a full ``MAJOR.MINOR.PATCH`` version.

    Args:
        text: Version string, e.g. ``1.2.3`` or ``0.4.0-alpha.1``.

    Returns:
        ``semver.Version`` instance.

    Raises:
        ValueError: if the string is not a valid semantic version.
    """
    return semver.Version.parse((text or "").strip())


@dataclass(frozen=True)
class Comparator:
    """A single ``op version`` constraint with a fully expanded version."""

    op: str
    version: semver.Version

    def matches(self, version: semver.Version) -> bool:
        if self.op == "=":
            return version == self.version
        if self.op == ">":
            return version > self.version
        if self.op == ">=":
            return version >= self.version
        if self.op == "<":
            return version < self.version
        if self.op == "<=":
            return version <= self.version
        raise ValueError(f"unknown comparator operator: {self.op}")

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


@dataclass(frozen=True)
class VersionReq:
    """A parsed version requirement (all comparators must match).

    Attributes:
        text: Original requirement string.
        comparators: Expanded primitive comparators.
    """

    text: str
    comparators: tuple[Comparator, ...] = field(default_factory=tuple)

    def matches(self, version: semver.Version | str) -> bool:
        """Check whether a version satisfies every comparator."""
        if isinstance(version, str):
            version = parse_version(version)
        # Pre-releases only satisfy a requirement that names the same
        # major.minor.patch with a pre-release of its own.
        if version.prerelease and not any(
            c.version.prerelease and c.version.finalize_version() == version.finalize_version()
            for c in self.comparators
        ):
            return False
        return all(c.matches(version) for c in self.comparators)

    def __str__(self) -> str:
        return self.text


def _num(value: str | None) -> int | None:
    if value is None or value in _WILDCARDS:
        return None
    return int(value)


def _expand(op: str, major: int | None, minor: int | None, patch: int | None, pre: str | None) -> list[Comparator]:
    """Expand one comparator with a possibly partial version into primitives."""
    if major is None:
        return []

    lower = semver.Version(major, minor or 0, patch or 0, pre)

    if op == "^":
        if major > 0 or minor is None:
            upper = semver.Version(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            upper = semver.Version(0, minor + 1, 0)
        else:
            upper = semver.Version(0, 0, patch + 1)
        return [Comparator(">=", lower), Comparator("<", upper)]

    if op == "~":
        if minor is None:
            upper = semver.Version(major + 1, 0, 0)
        else:
            upper = semver.Version(major, minor + 1, 0)
        return [Comparator(">=", lower), Comparator("<", upper)]

    if op == "=":
        if minor is None:
            return [Comparator(">=", lower), Comparator("<", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", lower), Comparator("<", semver.Version(major, minor + 1, 0))]
        return [Comparator("=", lower)]

    if op == ">":
        if minor is None:
            return [Comparator(">=", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", semver.Version(major, minor + 1, 0))]
        return [Comparator(">", lower)]

    if op == "<=":
        if minor is None:
            return [Comparator("<", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator("<", semver.Version(major, minor + 1, 0))]
        return [Comparator("<=", lower)]

    # >= and <
    return [Comparator(op, lower)]


def parse_requirement(text: str) -> VersionReq:
    """Parse a Cargo-style version requirement.

    Args:
        text: Requirement string, e.g. ``">= 1.2.3, < 2.0.0"``.

    Returns:
        ``VersionReq`` with its comparators expanded.

    Raises:
        ValueError: if any comparator is malformed.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValueError("empty version requirement")

    comparators: list[Comparator] = []
    for part in raw.split(","):
        m = _COMPARATOR_RE.match(part)
        if not m:
            raise ValueError(f"invalid version requirement: {text!r}")
        op = m.group("op") or "^"
        major = _num(m.group("major"))
        minor = _num(m.group("minor"))
        patch = _num(m.group("patch"))
        if minor is None:
            patch = None
        comparators.extend(_expand(op, major, minor, patch, m.group("pre")))

    return VersionReq(text=raw, comparators=tuple(comparators))


def matches_any(requirements: list[str], version: semver.Version | str) -> bool:
    """Return True if ``version`` satisfies at least one requirement string."""
    if isinstance(version, str):
        version = parse_version(version)
    return any(parse_requirement(r).matches(version) for r in requirements)
