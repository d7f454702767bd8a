"""Advisory database loading and querying.

The database is a directory checkout laid out like the upstream
advisory repository::

    crates/<package>/RUSTSEC-YYYY-NNNN.md
    rust/<component>/RUSTSEC-YYYY-NNNN.md

Legacy ``.toml`` advisories are accepted alongside Markdown ones.
"""

import datetime as dt
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterator

from .advisory import Advisory, AdvisoryFormatError, Affected, Severity, Versions
from .lockfile import Lockfile, Package, is_crates_io_source
from .parsers import load_advisory

COLLECTIONS = ("crates", "rust")
COMMIT_FILE = ".advisorydb-commit.json"


@dataclass(frozen=True)
class CommitInfo:
    """The database commit a checkout was fetched from.

    Attributes:
        commit_id: Full commit hash.
        timestamp: Commit time (timezone-aware).
    """

    commit_id: str
    timestamp: dt.datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "commit_id": self.commit_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommitInfo":
        ts = data.get("timestamp")
        timestamp = None
        if ts:
            timestamp = dt.datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
        return cls(commit_id=str(data["commit_id"]), timestamp=timestamp)


def read_commit_info(root: Path) -> CommitInfo | None:
    """Read commit metadata written by ``fetch``; ``None`` if absent or unreadable."""
    path = root / COMMIT_FILE
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            return CommitInfo.from_dict(json.load(f))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        print(f"⚠️ Ignoring unreadable commit metadata {path}: {e}")
        return None


def write_commit_info(root: Path, commit: CommitInfo) -> None:
    """Write commit metadata atomically (write-then-rename)."""
    path = root / COMMIT_FILE
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(commit.to_dict(), f, indent=2)
        f.write("\n")
    tmp.replace(path)


@dataclass(frozen=True)
class Query:
    """Filter for selecting advisories.

    Builder methods return a new ``Query``, so partially built queries
    can be shared::

        q = Query.crate_scope().target_os("windows").severity(Severity.HIGH)

    Attributes mirror the builder names; ``None`` means "don't filter".
    ``informational`` selects only informational advisories when ``True``
    and excludes them when ``False``.
    """

    collection_: str | None = None
    package_name_: str | None = None
    package_version_: Any = None
    package_source_: str | None = None
    severity_: Severity | None = None
    target_arch_: str | None = None
    target_os_: str | None = None
    year_: int | None = None
    informational_: bool | None = None
    withdrawn_: bool | None = None

    @classmethod
    def crate_scope(cls) -> "Query":
        """Advisories about crates: no withdrawn, no informational ones."""
        return cls(collection_="crates", withdrawn_=False, informational_=False)

    def collection(self, collection: str) -> "Query":
        return replace(self, collection_=collection)

    def package_name(self, name: str) -> "Query":
        return replace(self, package_name_=name)

    def package_version(self, version: Any) -> "Query":
        return replace(self, package_version_=version)

    def package(self, package: Package) -> "Query":
        return replace(
            self,
            package_name_=package.name,
            package_version_=package.version,
            package_source_=package.source,
        )

    def severity(self, severity: Severity) -> "Query":
        return replace(self, severity_=severity)

    def target_arch(self, arch: str) -> "Query":
        return replace(self, target_arch_=arch)

    def target_os(self, os: str) -> "Query":
        return replace(self, target_os_=os)

    def year(self, year: int) -> "Query":
        return replace(self, year_=year)

    def informational(self, setting: bool) -> "Query":
        return replace(self, informational_=setting)

    def withdrawn(self, setting: bool) -> "Query":
        return replace(self, withdrawn_=setting)

    def matches(self, advisory: Advisory) -> bool:
        """Check whether an advisory passes every configured filter."""
        if self.collection_ is not None and advisory.collection != self.collection_:
            return False

        if self.package_name_ is not None and advisory.package != self.package_name_:
            return False

        if self.package_version_ is not None and not advisory.is_vulnerable(self.package_version_):
            return False

        if self.package_source_ is not None:
            if not is_crates_io_source(self.package_source_):
                return False

        if self.severity_ is not None:
            adv_severity = advisory.severity
            if adv_severity is not None and adv_severity < self.severity_:
                return False

        if self.target_arch_ is not None and advisory.affected.arch:
            if self.target_arch_ not in advisory.affected.arch:
                return False

        if self.target_os_ is not None and advisory.affected.os:
            if self.target_os_ not in advisory.affected.os:
                return False

        if self.year_ is not None and advisory.year != self.year_:
            return False

        if self.informational_ is not None and advisory.is_informational != self.informational_:
            return False

        if self.withdrawn_ is not None and advisory.is_withdrawn != self.withdrawn_:
            return False

        return True


@dataclass
class Vulnerability:
    """A locked package matched by an advisory.

    Attributes:
        advisory: The matching advisory.
        versions: Its patched/unaffected ranges.
        affected: Its platform/function scoping.
        package: The locked package.
    """

    advisory: Advisory
    versions: Versions
    affected: Affected
    package: Package

    @classmethod
    def new(cls, advisory: Advisory, package: Package) -> "Vulnerability":
        return cls(advisory=advisory, versions=advisory.versions, affected=advisory.affected, package=package)

    def to_dict(self) -> dict[str, Any]:
        return {
            "advisory": self.advisory.to_dict()["advisory"],
            "versions": self.versions.model_dump(),
            "affected": self.affected.model_dump(),
            "package": self.package.to_dict(),
        }


@dataclass
class Database:
    """In-memory advisory database.

    Attributes:
        root: Directory the database was loaded from, if any.
        advisories: Advisory ID to advisory.
        commit: Commit metadata of the checkout, if known.
    """

    root: Path | None = None
    advisories: dict[str, Advisory] = field(default_factory=dict)
    commit: CommitInfo | None = None
    _by_package: dict[str, list[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, root: Path) -> "Database":
        """Load every advisory below ``root``.

        Args:
            root: Database checkout directory.

        Returns:
            Loaded ``Database``.

        Raises:
            FileNotFoundError: if ``root`` doesn't exist.
            AdvisoryFormatError: on malformed or duplicate advisories.
        """
        if not root.exists() or not root.is_dir():
            raise FileNotFoundError(f"advisory database not found: {root}")

        db = cls(root=root, commit=read_commit_info(root))
        for collection in COLLECTIONS:
            coll_dir = root / collection
            if not coll_dir.is_dir():
                continue
            paths = sorted(coll_dir.glob("*/*.md")) + sorted(coll_dir.glob("*/*.toml"))
            for path in paths:
                db.add(load_advisory(path, collection=collection), path)
        return db

    @classmethod
    def from_advisories(cls, advisories: list[Advisory], commit: CommitInfo | None = None) -> "Database":
        db = cls(commit=commit)
        for advisory in advisories:
            db.add(advisory)
        return db

    def add(self, advisory: Advisory, path: Path | None = None) -> None:
        """Index an advisory.

        Raises:
            AdvisoryFormatError: if an advisory with the same ID exists.
        """
        if advisory.id in self.advisories:
            raise AdvisoryFormatError(f"duplicate advisory ID {advisory.id}", path)
        self.advisories[advisory.id] = advisory
        self._by_package.setdefault(advisory.package, []).append(advisory.id)

    def get(self, advisory_id: str) -> Advisory | None:
        return self.advisories.get(advisory_id)

    def iter(self) -> Iterator[Advisory]:
        return iter(self.advisories.values())

    def __iter__(self) -> Iterator[Advisory]:
        return self.iter()

    def __len__(self) -> int:
        return len(self.advisories)

    def packages(self) -> list[str]:
        return sorted(self._by_package)

    def find_by_package(self, name: str) -> list[Advisory]:
        return [self.advisories[i] for i in self._by_package.get(name, [])]

    def latest_commit(self) -> CommitInfo | None:
        return self.commit

    def query(self, query: Query) -> list[Advisory]:
        """Return all advisories matching ``query``."""
        if query.package_name_ is not None:
            candidates = self.find_by_package(query.package_name_)
        else:
            candidates = list(self.advisories.values())
        return [a for a in candidates if query.matches(a)]

    def query_vulnerabilities(self, lockfile: Lockfile, query: Query) -> list[Vulnerability]:
        """Find vulnerabilities affecting the packages of a lockfile.

        Packages from registries other than crates.io are skipped.

        Args:
            lockfile: Parsed ``Cargo.lock``.
            query: Base query (package filters are applied per package).

        Returns:
            One ``Vulnerability`` per (package, advisory) match.
        """
        vulns: list[Vulnerability] = []
        for package in lockfile.packages:
            if not package.is_crates_io:
                continue
            pkg_query = query.package_name(package.name).package_version(package.version)
            for advisory in self.query(pkg_query):
                vulns.append(Vulnerability.new(advisory, package))
        return vulns
