"""Warnings about dependencies that are not vulnerabilities."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .advisory import Advisory, Versions
    from .lockfile import Package


class WarningKind(str, Enum):
    """Kinds of warnings, in report order."""

    NOTICE = "notice"
    UNMAINTAINED = "unmaintained"
    UNSOUND = "unsound"
    YANKED = "yanked"


@dataclass
class PackageWarning:
    """A warning about a locked package.

    Attributes:
        kind: What the warning is about.
        package: The locked package it applies to.
        advisory: Informational advisory that raised it, if any.
        versions: Patched/unaffected ranges from that advisory.
    """

    kind: WarningKind
    package: "Package"
    advisory: "Advisory | None" = None
    versions: "Versions | None" = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "package": self.package.to_dict(),
            "advisory": self.advisory.to_dict()["advisory"] if self.advisory else None,
            "affected": self.advisory.affected.model_dump() if self.advisory else None,
            "versions": self.versions.model_dump() if self.versions else None,
        }

    def __str__(self) -> str:
        label = f"{self.kind.value}: {self.package.name} {self.package.version}"
        if self.advisory:
            label += f" ({self.advisory.id})"
        return label
