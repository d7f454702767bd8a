"""Advisory file parsing and CVSS scoring.

Pure functions for turning advisory documents (Markdown with a fenced
TOML front matter, or legacy TOML) into ``Advisory`` models, and for
computing CVSS v3 base scores from vector strings.
No I/O beyond the optional ``load_advisory`` helper.
"""

import math
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .advisory import Advisory, AdvisoryFormatError
from .versions import parse_requirement

_FRONT_MATTER_RE = re.compile(r"\A\s*```toml[ \t]*\r?\n(?P<toml>.*?)\r?\n```[ \t]*(?:\r?\n|\Z)(?P<body>.*)\Z", re.DOTALL)
_TITLE_RE = re.compile(r"^#\s+(?P<title>.+?)\s*#*\s*$")


def norm(s: str) -> str:
    """Normalize a string for case-insensitive comparison.

    Collapses whitespace, strips, and lowercases.

    Args:
        s: Input string (may be None).

    Returns:
        Normalized lowercase string.
    """
    return re.sub(r"\s+", " ", (s or "").strip().lower())


# ─────────────────────────────────────────────────────────────────────────────
# CVSS v3
# ─────────────────────────────────────────────────────────────────────────────

_CVSS_WEIGHTS: dict[str, dict[str, float]] = {
    "AV": {"N": 0.85, "A": 0.62, "L": 0.55, "P": 0.2},
    "AC": {"L": 0.77, "H": 0.44},
    "UI": {"N": 0.85, "R": 0.62},
    "C": {"H": 0.56, "L": 0.22, "N": 0.0},
    "I": {"H": 0.56, "L": 0.22, "N": 0.0},
    "A": {"H": 0.56, "L": 0.22, "N": 0.0},
}
_CVSS_PR_UNCHANGED = {"N": 0.85, "L": 0.62, "H": 0.27}
_CVSS_PR_CHANGED = {"N": 0.85, "L": 0.68, "H": 0.5}
_CVSS_REQUIRED = ("AV", "AC", "PR", "UI", "S", "C", "I", "A")


def _roundup(value: float) -> float:
    """CVSS v3.1 round-up to one decimal, robust to float artefacts."""
    int_input = round(value * 100000)
    if int_input % 10000 == 0:
        return int_input / 100000.0
    return (math.floor(int_input / 10000) + 1) / 10.0


def parse_cvss_vector(vector: str) -> dict[str, str]:
    """Split a CVSS v3 vector into its metrics.

    Args:
        vector: e.g. ``CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H``.

    Returns:
        Dict of metric name to value (the ``CVSS`` version prefix included).

    Raises:
        ValueError: if the vector is malformed or not version 3.x.
    """
    parts = (vector or "").strip().split("/")
    if not parts or not parts[0].startswith("CVSS:3."):
        raise ValueError(f"unsupported CVSS vector: {vector!r}")

    metrics: dict[str, str] = {}
    for part in parts:
        key, sep, value = part.partition(":")
        if not sep or not value:
            raise ValueError(f"malformed CVSS metric {part!r} in {vector!r}")
        if key in metrics:
            raise ValueError(f"duplicate CVSS metric {key!r} in {vector!r}")
        metrics[key] = value

    for key in _CVSS_REQUIRED:
        if key not in metrics:
            raise ValueError(f"CVSS vector {vector!r} is missing {key}")
    if metrics["S"] not in ("U", "C"):
        raise ValueError(f"invalid CVSS scope in {vector!r}")
    return metrics


def cvss_base_score(vector: str) -> float:
    """Compute the CVSS v3.x base score for a vector string.

    Args:
        vector: CVSS v3.0 or v3.1 vector string.

    Returns:
        Base score between 0.0 and 10.0.

    Raises:
        ValueError: if the vector is malformed.
    """
    m = parse_cvss_vector(vector)
    changed = m["S"] == "C"

    try:
        av = _CVSS_WEIGHTS["AV"][m["AV"]]
        ac = _CVSS_WEIGHTS["AC"][m["AC"]]
        ui = _CVSS_WEIGHTS["UI"][m["UI"]]
        pr = (_CVSS_PR_CHANGED if changed else _CVSS_PR_UNCHANGED)[m["PR"]]
        c = _CVSS_WEIGHTS["C"][m["C"]]
        i = _CVSS_WEIGHTS["I"][m["I"]]
        a = _CVSS_WEIGHTS["A"][m["A"]]
    except KeyError as e:
        raise ValueError(f"invalid CVSS metric value {e} in {vector!r}") from None

    iss = 1 - ((1 - c) * (1 - i) * (1 - a))
    if changed:
        impact = 7.52 * (iss - 0.029) - 3.25 * (iss - 0.02) ** 15
    else:
        impact = 6.42 * iss
    exploitability = 8.22 * av * ac * pr * ui

    if impact <= 0:
        return 0.0
    if changed:
        return _roundup(min(1.08 * (impact + exploitability), 10.0))
    return _roundup(min(impact + exploitability, 10.0))


# ─────────────────────────────────────────────────────────────────────────────
# Advisory documents
# ─────────────────────────────────────────────────────────────────────────────


def split_front_matter(text: str) -> tuple[str, str]:
    """Split a Markdown advisory into its TOML front matter and body.

    Args:
        text: Whole file contents.

    Returns:
        Tuple of (toml_source, markdown_body).

    Raises:
        ValueError: if the document does not start with a ```toml fence.
    """
    m = _FRONT_MATTER_RE.match(text or "")
    if not m:
        raise ValueError("missing ```toml front matter")
    return m.group("toml"), m.group("body")


def split_title(body: str) -> tuple[str, str]:
    """Extract the first ``# `` heading as title; the rest is the description."""
    lines = (body or "").strip().splitlines()
    for idx, line in enumerate(lines):
        if not line.strip():
            continue
        m = _TITLE_RE.match(line.strip())
        if m:
            return m.group("title"), "\n".join(lines[idx + 1 :]).strip()
        break
    return "", "\n".join(lines).strip()


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if isinstance(v, str) and v.strip()]
    return []


def _check_requirements(requirements: list[str], field: str, path: Path | None) -> list[str]:
    for req in requirements:
        try:
            parse_requirement(req)
        except ValueError as e:
            raise AdvisoryFormatError(f"{field}: {e}", path) from None
    return requirements


def _build_advisory(data: dict[str, Any], title: str, description: str, collection: str, path: Path | None) -> Advisory:
    meta = data.get("advisory")
    if not isinstance(meta, dict):
        raise AdvisoryFormatError("missing [advisory] table", path)
    for key in ("id", "package", "date"):
        if not meta.get(key):
            raise AdvisoryFormatError(f"missing required field advisory.{key}", path)

    affected = data.get("affected") or {}
    versions = data.get("versions") or {}
    if not isinstance(affected, dict) or not isinstance(versions, dict):
        raise AdvisoryFormatError("[affected] and [versions] must be tables", path)

    # Legacy layout kept version ranges and platforms inside [advisory].
    patched = versions.get("patched", meta.get("patched_versions"))
    unaffected = versions.get("unaffected", meta.get("unaffected_versions"))
    functions = affected.get("functions", meta.get("affected_functions")) or {}

    cvss = meta.get("cvss")
    cvss_score = None
    if cvss:
        try:
            cvss_score = cvss_base_score(str(cvss))
        except ValueError as e:
            raise AdvisoryFormatError(str(e), path) from None

    patched_reqs = _check_requirements(_as_str_list(patched), "versions.patched", path)
    unaffected_reqs = _check_requirements(_as_str_list(unaffected), "versions.unaffected", path)
    function_reqs: dict[str, list[str]] = {}
    if isinstance(functions, dict):
        for fn, reqs in functions.items():
            function_reqs[str(fn)] = _check_requirements(_as_str_list(reqs), f"affected.functions.{fn}", path)

    fields: dict[str, Any] = {
        "id": meta.get("id"),
        "package": meta.get("package"),
        "date": meta.get("date"),
        "title": title or str(meta.get("title") or "").strip(),
        "description": description or str(meta.get("description") or "").strip(),
        "url": meta.get("url") or None,
        "categories": [norm(c) for c in _as_str_list(meta.get("categories"))],
        "keywords": [norm(k) for k in _as_str_list(meta.get("keywords"))],
        "aliases": _as_str_list(meta.get("aliases")),
        "related": _as_str_list(meta.get("related")),
        "references": _as_str_list(meta.get("references")),
        "cvss": cvss or None,
        "cvss_score": cvss_score,
        "informational": meta.get("informational"),
        "withdrawn": meta.get("withdrawn"),
        "license": meta.get("license") or "CC0-1.0",
        "collection": collection,
        "affected": {
            "arch": _as_str_list(affected.get("arch", meta.get("affected_arch"))),
            "os": _as_str_list(affected.get("os", meta.get("affected_os"))),
            "functions": function_reqs,
        },
        "versions": {
            "patched": patched_reqs,
            "unaffected": unaffected_reqs,
        },
    }

    try:
        return Advisory.model_validate(fields)
    except ValidationError as e:
        raise AdvisoryFormatError(f"invalid advisory: {e}", path) from None


def parse_advisory(
    text: str,
    path: Path | None = None,
    *,
    collection: str = "crates",
    legacy_toml: bool | None = None,
) -> Advisory:
    """Parse an advisory document.

    Args:
        text: File contents.
        path: Source path, used for error messages and format detection.
        collection: ``crates`` or ``rust``.
        legacy_toml: Force legacy TOML parsing.  Detected from the path
            suffix (``.toml``) when ``None``.

    Returns:
        Parsed ``Advisory``.

    Raises:
        AdvisoryFormatError: if the document is malformed.
    """
    if legacy_toml is None:
        legacy_toml = path is not None and path.suffix.lower() == ".toml"

    if legacy_toml:
        toml_src, title, description = text, "", ""
    else:
        try:
            toml_src, body = split_front_matter(text)
        except ValueError as e:
            raise AdvisoryFormatError(str(e), path) from None
        title, description = split_title(body)

    try:
        data = tomllib.loads(toml_src)
    except tomllib.TOMLDecodeError as e:
        raise AdvisoryFormatError(f"invalid TOML: {e}", path) from None

    return _build_advisory(data, title, description, collection, path)


def load_advisory(path: Path, collection: str = "crates") -> Advisory:
    """Read and parse one advisory file."""
    return parse_advisory(path.read_text(encoding="utf-8"), path, collection=collection)
