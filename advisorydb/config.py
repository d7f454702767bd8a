"""Configuration models using Pydantic.

A single ``advisorydb.yaml`` configures where the advisory database
lives, how audit reports are generated, and how the website is built.
Every section is optional.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from .report import Settings

CONFIG_NAMES = ("advisorydb.yaml", "advisorydb.yml")

DEFAULT_LINKS: dict[str, str] = {
    "advisory_db": "https://github.com/rustsec/advisory-db",
    "cargo_audit": "https://github.com/rustsec/rustsec/tree/main/cargo-audit",
    "cargo_deny": "https://github.com/EmbarkStudios/cargo-deny",
    "rustsec_crate": "https://crates.io/crates/rustsec",
    "audit_check": "https://github.com/rustsec/audit-check",
    "github_actions": "https://github.com/features/actions",
    "osv": "https://osv.dev/",
    "github_advisory_db": "https://github.com/advisories",
    "contributing": "https://github.com/rustsec/advisory-db/blob/main/CONTRIBUTING.md",
}


class DatabaseConfig(BaseModel):
    """Where the advisory database checkout lives and where it comes from.

    Attributes:
        path: Local checkout directory.
        repo: GitHub ``owner/name`` slug of the database repository.
        branch: Branch to fetch.
    """

    path: Path = Path("advisory-db")
    repo: str = "rustsec/advisory-db"
    branch: str = "main"

    @field_validator("repo")
    @classmethod
    def _check_repo(cls, v: str) -> str:
        v = v.strip().strip("/")
        if v.count("/") != 1 or not all(v.split("/")):
            raise ValueError(f"repo must look like 'owner/name', got {v!r}")
        return v


class SiteConfig(BaseModel):
    """Website rendering options.

    Attributes:
        title: Site title shown in the layout header.
        base_url: Prefix for site-internal links.
        output_dir: Directory the rendered pages are written to.
        search_script: URL of the script that defines ``searchformindex()``.
        stylesheet: URL of the site stylesheet.
        links: Outbound URLs referenced by the About page.
    """

    title: str = "RustSec Advisory Database"
    base_url: str = "/"
    output_dir: Path = Path("site")
    search_script: str = "/js/search.js"
    stylesheet: str = "/css/style.css"
    links: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_LINKS))

    @field_validator("base_url")
    @classmethod
    def _trailing_slash(cls, v: str) -> str:
        v = (v or "/").strip()
        return v if v.endswith("/") else v + "/"

    @field_validator("links", mode="before")
    @classmethod
    def _merge_links(cls, v: Any) -> dict[str, str]:
        """Overlay configured links on the defaults, dropping non-strings."""
        merged = dict(DEFAULT_LINKS)
        if isinstance(v, dict):
            for key, url in v.items():
                if isinstance(url, str):
                    merged[str(key)] = url.strip()
        return merged


class AppConfig(BaseModel):
    """Validated ``advisorydb.yaml`` contents.

    Example YAML::

        database:
          path: advisory-db
          branch: main
        report:
          severity: medium
          ignore:
            - RUSTSEC-2020-0071
          informational_warnings:
            - unmaintained
        site:
          output_dir: public
          search_script: /js/search.js
    """

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    report: Settings = Field(default_factory=Settings)
    site: SiteConfig = Field(default_factory=SiteConfig)


def load_config(path: Path) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the configuration file.

    Returns:
        Validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: if the file doesn't exist.
        yaml.YAMLError: if the file is not valid YAML.
        pydantic.ValidationError: if content fails validation.
    """
    content = path.read_text(encoding="utf-8")
    raw = yaml.safe_load(content) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level of the configuration must be a mapping")
    return AppConfig.model_validate(raw)


def find_config(directory: Path | None = None) -> Path | None:
    """Find the configuration file in ``directory`` (default: cwd).

    Returns:
        Path of the first existing config file, or ``None``.
    """
    base = directory or Path(".")
    for name in CONFIG_NAMES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_config_or_default(path: Path | None = None) -> AppConfig:
    """Load ``path`` (or a discovered config file); defaults when none exists."""
    if path is None:
        path = find_config()
        if path is None:
            return AppConfig()
    return load_config(path)
