"""Vulnerability report generation.

These types map directly to the JSON report produced by ``cargo-audit``
(kebab-case keys included), and also drive the Markdown report rendered
from the Jinja2 template at ``advisorydb/templates/report.md.j2``.
"""

import datetime as dt
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, Field, field_validator

from .advisory import Severity, informational_warning_kind
from .database import Database, Query, Vulnerability
from .lockfile import Lockfile
from .warning import PackageWarning, WarningKind

_TEMPLATES_DIR = Path(__file__).parent / "templates"

WarningInfo = dict[WarningKind, list[PackageWarning]]


class Settings(BaseModel):
    """Options used when generating a report.

    Attributes:
        target_arch: Only report advisories affecting this CPU architecture.
        target_os: Only report advisories affecting this operating system.
        severity: Severity threshold to alert at.
        ignore: Advisory IDs to ignore.
        informational_warnings: Kinds of informational advisories to turn
            into warnings, lowercased.  Kinds without a warning mapping
            are kept but never produce warnings.

    Example YAML::

        report:
          target_os: linux
          severity: medium
          ignore:
            - RUSTSEC-2020-0071
          informational_warnings:
            - unmaintained
            - unsound
    """

    target_arch: str | None = None
    target_os: str | None = None
    severity: Severity | None = None
    ignore: list[str] = Field(default_factory=list)
    informational_warnings: list[str] = Field(default_factory=list)

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Severity.parse(v) if v.strip() else None
        return v

    @field_validator("ignore", mode="before")
    @classmethod
    def _normalize_ids(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        out: list[str] = []
        for item in v:
            if not isinstance(item, str):
                continue
            normalized = item.strip().upper()
            if normalized and normalized not in out:
                out.append(normalized)
        return out

    @field_validator("informational_warnings", mode="before")
    @classmethod
    def _normalize_kinds(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        out: list[str] = []
        for item in v:
            if not isinstance(item, str):
                continue
            normalized = item.strip().lower()
            if normalized and normalized not in out:
                out.append(normalized)
        return out

    def query(self) -> Query:
        """Query matching these settings.

        Queries can't filter ignored advisories, so that happens in a
        separate pass.
        """
        query = Query.crate_scope()
        if self.target_arch:
            query = query.target_arch(self.target_arch)
        if self.target_os:
            query = query.target_os(self.target_os)
        if self.severity is not None:
            query = query.severity(self.severity)
        return query

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_arch": self.target_arch,
            "target_os": self.target_os,
            "severity": self.severity.value if self.severity else None,
            "ignore": list(self.ignore),
            "informational_warnings": list(self.informational_warnings),
        }


@dataclass
class DatabaseInfo:
    """Information about the advisory database."""

    advisory_count: int
    last_commit: str | None = None
    last_updated: dt.datetime | None = None

    @classmethod
    def new(cls, db: Database) -> "DatabaseInfo":
        commit = db.latest_commit()
        return cls(
            advisory_count=len(db),
            last_commit=commit.commit_id if commit else None,
            last_updated=commit.timestamp if commit else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "advisory-count": self.advisory_count,
            "last-commit": self.last_commit,
            "last-updated": self.last_updated.isoformat().replace("+00:00", "Z") if self.last_updated else None,
        }


@dataclass
class LockfileInfo:
    """Information about the audited ``Cargo.lock``."""

    dependency_count: int

    @classmethod
    def new(cls, lockfile: Lockfile) -> "LockfileInfo":
        return cls(dependency_count=len(lockfile.packages))

    def to_dict(self) -> dict[str, Any]:
        return {"dependency-count": self.dependency_count}


@dataclass
class VulnerabilityInfo:
    """Information about detected vulnerabilities."""

    found: bool = False
    count: int = 0
    entries: list[Vulnerability] = field(default_factory=list)

    @classmethod
    def new(cls, vulns: list[Vulnerability]) -> "VulnerabilityInfo":
        return cls(found=bool(vulns), count=len(vulns), entries=vulns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "count": self.count,
            "list": [v.to_dict() for v in self.entries],
        }


def find_warnings(db: Database, lockfile: Lockfile, settings: Settings) -> WarningInfo:
    """Find warnings from informational advisories.

    Args:
        db: Advisory database.
        lockfile: Parsed lockfile.
        settings: Report settings; only kinds listed in
            ``informational_warnings`` produce warnings.

    Returns:
        Warnings grouped by kind, keys in ``WarningKind`` order.
    """
    query = settings.query().informational(True)
    warnings: WarningInfo = {}

    for vuln in db.query_vulnerabilities(lockfile, query):
        advisory = vuln.advisory
        if advisory.id in settings.ignore:
            continue

        if (advisory.informational or "").lower() not in settings.informational_warnings:
            continue

        kind = informational_warning_kind(advisory.informational)
        if kind is None:
            continue

        warnings.setdefault(kind, []).append(
            PackageWarning(kind=kind, package=vuln.package, advisory=advisory, versions=vuln.versions)
        )

    order = list(WarningKind)
    return {k: warnings[k] for k in sorted(warnings, key=order.index)}


@dataclass
class Report:
    """Vulnerability report for a given lockfile."""

    database: DatabaseInfo
    lockfile: LockfileInfo
    settings: Settings
    vulnerabilities: VulnerabilityInfo
    warnings: WarningInfo = field(default_factory=dict)

    @classmethod
    def generate(cls, db: Database, lockfile: Lockfile, settings: Settings) -> "Report":
        """Generate a report for the given advisory database and lockfile."""
        vulns = [v for v in db.query_vulnerabilities(lockfile, settings.query()) if v.advisory.id not in settings.ignore]
        return cls(
            database=DatabaseInfo.new(db),
            lockfile=LockfileInfo.new(lockfile),
            settings=settings,
            vulnerabilities=VulnerabilityInfo.new(vulns),
            warnings=find_warnings(db, lockfile, settings),
        )

    @property
    def warning_count(self) -> int:
        return sum(len(ws) for ws in self.warnings.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.database.to_dict(),
            "lockfile": self.lockfile.to_dict(),
            "settings": self.settings.to_dict(),
            "vulnerabilities": self.vulnerabilities.to_dict(),
            "warnings": {kind.value: [w.to_dict() for w in ws] for kind, ws in self.warnings.items()},
        }


def _now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
    tmp.replace(path)


def write_json_report(path: Path, report: Report) -> None:
    """Write the JSON report atomically."""
    _atomic_write(path, json.dumps(report.to_dict(), indent=2) + "\n")


def render_markdown_report(report: Report) -> str:
    """Render the Markdown report with Jinja2."""
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(default_for_string=False, default=False),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template("report.md.j2")

    vulns = sorted(
        report.vulnerabilities.entries,
        key=lambda v: (v.advisory.severity.rank if v.advisory.severity else -1, v.advisory.id),
        reverse=True,
    )
    return template.render(
        generated_at=_now_utc_iso(),
        report=report,
        vulnerabilities=vulns,
        warnings=report.warnings,
        warning_count=report.warning_count,
    )


def write_markdown_report(path: Path, report: Report) -> None:
    """Write a GitHub-renderable Markdown report atomically.

    Args:
        path: Output path for the markdown report.
        report: Generated report.
    """
    _atomic_write(path, render_markdown_report(report))
