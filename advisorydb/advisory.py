"""Advisory data model.

Each advisory in the database describes one vulnerable (or otherwise
noteworthy) package, the version ranges that fix it, and optional
platform and function-level scoping.
"""

import datetime as dt
from enum import Enum
from pathlib import Path
from typing import Any

import semver
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .versions import matches_any
from .warning import WarningKind


class AdvisoryFormatError(ValueError):
    """Raised when an advisory file cannot be parsed.

    Attributes:
        path: File the advisory was read from, if known.
    """

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


_SEVERITY_ORDER = ("none", "low", "medium", "high", "critical")


class Severity(str, Enum):
    """Qualitative severity rating derived from a CVSS base score.

    Members compare by rank (``none < low < medium < high < critical``),
    not alphabetically.
    """

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def from_score(cls, score: float) -> "Severity":
        """Map a CVSS base score (0.0–10.0) to a severity rating."""
        if score <= 0.0:
            return cls.NONE
        if score < 4.0:
            return cls.LOW
        if score < 7.0:
            return cls.MEDIUM
        if score < 9.0:
            return cls.HIGH
        return cls.CRITICAL

    @classmethod
    def parse(cls, value: str) -> "Severity":
        """Parse a severity name case-insensitively.

        Raises:
            ValueError: for unknown names.
        """
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ValueError(f"unknown severity: {value!r} (expected one of {', '.join(_SEVERITY_ORDER)})") from None


class Informational(str, Enum):
    """Known kinds of informational (non-vulnerability) advisories."""

    NOTICE = "notice"
    UNMAINTAINED = "unmaintained"
    UNSOUND = "unsound"

    def warning_kind(self) -> WarningKind | None:
        return _INFORMATIONAL_WARNINGS.get(self)


_INFORMATIONAL_WARNINGS = {
    Informational.NOTICE: WarningKind.NOTICE,
    Informational.UNMAINTAINED: WarningKind.UNMAINTAINED,
    Informational.UNSOUND: WarningKind.UNSOUND,
}


def informational_warning_kind(value: str | None) -> WarningKind | None:
    """Warning kind for an informational value; ``None`` for unknown ones."""
    if not value:
        return None
    try:
        return Informational(value.strip().lower()).warning_kind()
    except ValueError:
        return None


class Affected(BaseModel):
    """Platform and function scoping of an advisory.

    Attributes:
        arch: CPU architectures affected (empty means all).
        os: Operating systems affected (empty means all).
        functions: Fully qualified function paths mapped to the
            version requirements in which they are vulnerable.
    """

    arch: list[str] = Field(default_factory=list)
    os: list[str] = Field(default_factory=list)
    functions: dict[str, list[str]] = Field(default_factory=dict)


class Versions(BaseModel):
    """Version ranges that are not vulnerable."""

    patched: list[str] = Field(default_factory=list)
    unaffected: list[str] = Field(default_factory=list)

    def is_vulnerable(self, version: semver.Version | str) -> bool:
        """A version is vulnerable unless it is patched or unaffected."""
        return not (matches_any(self.patched, version) or matches_any(self.unaffected, version))


class Advisory(BaseModel):
    """A single security advisory."""

    model_config = ConfigDict(frozen=True)

    id: str
    package: str
    date: dt.date
    title: str = ""
    description: str = ""
    url: str | None = None
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)
    related: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    cvss: str | None = None
    cvss_score: float | None = None
    informational: str | None = None
    withdrawn: dt.date | None = None
    license: str = "CC0-1.0"
    collection: str = "crates"
    affected: Affected = Field(default_factory=Affected)
    versions: Versions = Field(default_factory=Versions)

    @field_validator("id", "package", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("informational", mode="before")
    @classmethod
    def _strip_informational(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @property
    def severity(self) -> Severity | None:
        """Severity from the CVSS base score; ``None`` without CVSS data."""
        if self.cvss_score is None:
            return None
        return Severity.from_score(self.cvss_score)

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def is_informational(self) -> bool:
        return self.informational is not None

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn is not None

    def is_vulnerable(self, version: semver.Version | str) -> bool:
        return self.versions.is_vulnerable(version)

    def to_dict(self) -> dict[str, Any]:
        """Serializable dict in the layout of the upstream JSON reports."""
        return {
            "advisory": {
                "id": self.id,
                "package": self.package,
                "title": self.title,
                "description": self.description,
                "date": self.date.isoformat(),
                "aliases": list(self.aliases),
                "related": list(self.related),
                "collection": self.collection,
                "categories": list(self.categories),
                "keywords": list(self.keywords),
                "cvss": self.cvss,
                "informational": self.informational,
                "references": list(self.references),
                "source": None,
                "url": self.url,
                "withdrawn": self.withdrawn.isoformat() if self.withdrawn else None,
                "license": self.license,
            },
            "affected": self.affected.model_dump(),
            "versions": self.versions.model_dump(),
        }
