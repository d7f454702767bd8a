"""``Cargo.lock`` parsing."""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import semver

from .versions import parse_version

CRATES_IO_SOURCES = (
    "registry+https://github.com/rust-lang/crates.io-index",
    "sparse+https://index.crates.io/",
)


def is_crates_io_source(source: str) -> bool:
    """Check whether a lockfile source string points at crates.io."""
    return source.rstrip("/") in {s.rstrip("/") for s in CRATES_IO_SOURCES}


@dataclass(frozen=True)
class Package:
    """A package pinned in a lockfile.

    Attributes:
        name: Package name.
        version: Locked version.
        source: Registry or git source; ``None`` for path dependencies.
        checksum: Registry checksum, if recorded.
        dependencies: Raw dependency entries (``name [version] [(source)]``).
    """

    name: str
    version: semver.Version
    source: str | None = None
    checksum: str | None = None
    dependencies: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_crates_io(self) -> bool:
        """True for crates.io packages and for packages without a source."""
        return self.source is None or is_crates_io_source(self.source)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": str(self.version),
            "source": self.source,
            "checksum": self.checksum,
            "dependencies": list(self.dependencies),
        }


@dataclass
class Lockfile:
    """Parsed lockfile contents."""

    version: int | None = None
    packages: list[Package] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.packages)

    def find(self, name: str) -> list[Package]:
        return [p for p in self.packages if p.name == name]


def parse_lockfile(text: str) -> Lockfile:
    """Parse the contents of a ``Cargo.lock`` file.

    Supports lockfile format versions 1 through 4.  Version 1 files keep
    checksums in a ``[metadata]`` table keyed by ``checksum <name> <version> (<source>)``.

    Args:
        text: Lockfile contents.

    Returns:
        ``Lockfile`` with one ``Package`` per ``[[package]]`` table.

    Raises:
        ValueError: for invalid TOML or packages without a name or a valid version.
    """
    data = tomllib.loads(text)
    metadata = data.get("metadata") or {}

    raw_packages = data.get("package") or []
    if not isinstance(raw_packages, list):
        raise ValueError("lockfile [[package]] entries must be an array of tables")

    packages: list[Package] = []
    for entry in raw_packages:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        version_str = str(entry.get("version") or "").strip()
        if not name or not version_str:
            raise ValueError(f"lockfile package is missing name or version: {entry!r}")
        try:
            version = parse_version(version_str)
        except ValueError:
            raise ValueError(f"invalid version {version_str!r} for package {name}") from None

        source = entry.get("source") or None
        checksum = entry.get("checksum")
        if checksum is None and source:
            checksum = metadata.get(f"checksum {name} {version_str} ({source})")

        deps = entry.get("dependencies") or []
        packages.append(
            Package(
                name=name,
                version=version,
                source=source,
                checksum=checksum,
                dependencies=tuple(str(d) for d in deps),
            )
        )

    version_field = data.get("version")
    return Lockfile(version=int(version_field) if isinstance(version_field, int) else None, packages=packages)


def load_lockfile(path: Path) -> Lockfile:
    """Load a ``Cargo.lock`` from disk.

    Raises:
        FileNotFoundError: if the file doesn't exist.
        ValueError: if content is malformed.
    """
    return parse_lockfile(path.read_text(encoding="utf-8"))
