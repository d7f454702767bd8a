"""Shared fixtures: a small advisory database and a lockfile."""

import json
from pathlib import Path

import pytest

CRITICAL_CVSS = "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"  # 9.8
MEDIUM_CVSS = "CVSS:3.1/AV:L/AC:H/PR:N/UI:N/S:U/C:N/I:N/A:H"  # 5.1


def make_advisory_md(
    advisory_id: str,
    package: str,
    date: str = "2021-01-01",
    title: str = "Something is wrong",
    description: str = "A longer explanation.",
    patched: list[str] | None = None,
    unaffected: list[str] | None = None,
    cvss: str | None = None,
    informational: str | None = None,
    withdrawn: str | None = None,
    arch: list[str] | None = None,
    os: list[str] | None = None,
    aliases: list[str] | None = None,
) -> str:
    """Render an advisory in the Markdown-with-TOML-front-matter format."""
    lines = [
        "```toml",
        "[advisory]",
        f'id = "{advisory_id}"',
        f'package = "{package}"',
        f'date = "{date}"',
        f'url = "https://example.com/{advisory_id}"',
        'categories = ["memory-corruption"]',
        'keywords = ["Buffer Overflow"]',
    ]
    if aliases:
        lines.append(f"aliases = {json.dumps(aliases)}")
    if cvss:
        lines.append(f'cvss = "{cvss}"')
    if informational:
        lines.append(f'informational = "{informational}"')
    if withdrawn:
        lines.append(f'withdrawn = "{withdrawn}"')
    if arch or os:
        lines.append("")
        lines.append("[affected]")
        if arch:
            lines.append(f"arch = {json.dumps(arch)}")
        if os:
            lines.append(f"os = {json.dumps(os)}")
    lines.append("")
    lines.append("[versions]")
    lines.append(f"patched = {json.dumps(patched or [])}")
    if unaffected:
        lines.append(f"unaffected = {json.dumps(unaffected)}")
    lines.append("```")
    lines.append("")
    lines.append(f"# {title}")
    lines.append("")
    lines.append(description)
    lines.append("")
    return "\n".join(lines)


def write_advisory(root: Path, collection: str, package: str, advisory_id: str, text: str) -> Path:
    path = root / collection / package / f"{advisory_id}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def db_root(tmp_path: Path) -> Path:
    """An advisory database checkout with one advisory of each flavour."""
    root = tmp_path / "advisory-db"
    write_advisory(
        root,
        "crates",
        "smallvec",
        "RUSTSEC-2021-0003",
        make_advisory_md(
            "RUSTSEC-2021-0003",
            "smallvec",
            date="2021-01-08",
            title="Buffer overflow in SmallVec::insert_many",
            patched=[">= 1.6.1", "^0.6.14"],
            cvss=CRITICAL_CVSS,
            aliases=["CVE-2021-25900"],
        ),
    )
    write_advisory(
        root,
        "crates",
        "time",
        "RUSTSEC-2020-0071",
        make_advisory_md(
            "RUSTSEC-2020-0071",
            "time",
            date="2020-11-18",
            title="Potential segfault in the time crate",
            patched=[">= 0.2.23"],
            unaffected=["= 0.2.0", "= 0.2.1"],
            cvss=MEDIUM_CVSS,
            os=["linux"],
        ),
    )
    write_advisory(
        root,
        "crates",
        "net-lib",
        "RUSTSEC-2022-0002",
        make_advisory_md(
            "RUSTSEC-2022-0002",
            "net-lib",
            date="2022-03-01",
            title="Unaligned read on x86",
            patched=[">= 2.0.0"],
            arch=["x86"],
        ),
    )
    write_advisory(
        root,
        "crates",
        "ansi_term",
        "RUSTSEC-2021-0139",
        make_advisory_md(
            "RUSTSEC-2021-0139",
            "ansi_term",
            date="2021-08-18",
            title="ansi_term is Unmaintained",
            informational="unmaintained",
        ),
    )
    write_advisory(
        root,
        "crates",
        "libc",
        "RUSTSEC-2023-0010",
        make_advisory_md(
            "RUSTSEC-2023-0010",
            "libc",
            date="2023-02-01",
            title="Unsound conversion",
            informational="unsound",
            patched=[">= 0.2.150"],
        ),
    )
    write_advisory(
        root,
        "crates",
        "oldcrate",
        "RUSTSEC-2019-0005",
        make_advisory_md(
            "RUSTSEC-2019-0005",
            "oldcrate",
            date="2019-05-05",
            title="Withdrawn report",
            withdrawn="2019-06-01",
        ),
    )
    write_advisory(
        root,
        "rust",
        "std",
        "RUSTSEC-2021-0100",
        make_advisory_md(
            "RUSTSEC-2021-0100",
            "std",
            date="2021-04-01",
            title="Standard library issue",
            patched=[">= 1.52.0"],
        ),
    )
    return root


LOCKFILE = """\
# This file is automatically @generated by Cargo.
version = 3

[[package]]
name = "ansi_term"
version = "0.12.1"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "d52a9bb7ec0cf484c551830a7ce27bd20d67eac647e1befb56b0be4ee39a55d2"

[[package]]
name = "libc"
version = "0.2.100"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "myapp"
version = "0.1.0"
dependencies = [
 "ansi_term",
 "libc",
 "net-lib",
 "oldcrate",
 "serde",
 "smallvec",
 "time",
]

[[package]]
name = "net-lib"
version = "1.0.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "oldcrate"
version = "1.0.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "serde"
version = "1.0.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "smallvec"
version = "1.6.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "time"
version = "0.1.44"
source = "registry+https://github.com/rust-lang/crates.io-index"
"""


@pytest.fixture
def lockfile_path(tmp_path: Path) -> Path:
    path = tmp_path / "Cargo.lock"
    path.write_text(LOCKFILE, encoding="utf-8")
    return path
