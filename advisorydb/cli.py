"""Command-line interface.

Subcommands::

    advisorydb fetch                   # download the advisory database
    advisorydb audit -f Cargo.lock     # audit a lockfile
    advisorydb site --check            # render the website and check links
    advisorydb check-links site/       # check an already rendered site

Exit codes: ``0`` success, ``1`` vulnerabilities or link problems found,
``2`` configuration or input errors.
"""

import argparse
import sys
import zipfile
from pathlib import Path
from typing import Sequence

import requests
import yaml
from pydantic import ValidationError
from tenacity import RetryError

from . import __version__
from .advisory import AdvisoryFormatError
from .config import AppConfig, load_config_or_default
from .database import Database
from .downloaders import fetch_database, requests_session
from .links import LinkProblem, check_site, check_urls_online, collect_external_urls
from .lockfile import load_lockfile
from .report import Report, Settings, write_json_report, write_markdown_report
from .site import SiteBuilder

EXIT_OK = 0
EXIT_FOUND = 1
EXIT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="advisorydb", description="RustSec advisory database toolkit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, default=None, help="Path to advisorydb.yaml")
    parser.add_argument("--db", type=Path, default=None, help="Advisory database checkout (overrides config)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_fetch = sub.add_parser("fetch", help="Download the advisory database")
    p_fetch.add_argument("--branch", default=None, help="Branch to fetch (overrides config)")

    p_audit = sub.add_parser("audit", help="Audit a Cargo.lock for vulnerable dependencies")
    p_audit.add_argument("-f", "--file", type=Path, default=Path("Cargo.lock"), help="Lockfile to audit")
    p_audit.add_argument("--target-arch", default=None)
    p_audit.add_argument("--target-os", default=None)
    p_audit.add_argument("--severity", default=None, help="Minimum severity to report")
    p_audit.add_argument("--ignore", action="append", default=[], metavar="ID", help="Advisory ID to ignore (repeatable)")
    p_audit.add_argument(
        "--warn",
        action="append",
        default=[],
        metavar="KIND",
        help="Informational kind to warn about: notice, unmaintained, unsound (repeatable)",
    )
    p_audit.add_argument("--json", type=Path, default=None, dest="json_out", help="Write JSON report here")
    p_audit.add_argument("--markdown", type=Path, default=None, dest="md_out", help="Write Markdown report here")

    p_site = sub.add_parser("site", help="Render the website")
    p_site.add_argument("-o", "--output", type=Path, default=None, help="Output directory (overrides config)")
    p_site.add_argument("--about-only", action="store_true", help="Render without loading the database")
    p_site.add_argument("--check", action="store_true", help="Check links after rendering")
    p_site.add_argument("--online", action="store_true", help="Also probe external URLs")

    p_links = sub.add_parser("check-links", help="Check links of a rendered site")
    p_links.add_argument("directory", type=Path, nargs="?", default=None)
    p_links.add_argument("--online", action="store_true", help="Also probe external URLs")

    return parser


def _merge_settings(base: Settings, args: argparse.Namespace) -> Settings:
    """Overlay command-line audit options on configured settings."""
    data = base.model_dump()
    if args.target_arch:
        data["target_arch"] = args.target_arch
    if args.target_os:
        data["target_os"] = args.target_os
    if args.severity:
        data["severity"] = args.severity
    if args.ignore:
        data["ignore"] = list(data["ignore"]) + list(args.ignore)
    if args.warn:
        data["informational_warnings"] = list(data["informational_warnings"]) + list(args.warn)
    return Settings.model_validate(data)


def _print_report(report: Report) -> None:
    db = report.database
    commit = f" @ {db.last_commit[:12]}" if db.last_commit else ""
    print(f"Loaded {db.advisory_count} advisories{commit}")
    print(f"Scanning {report.lockfile.dependency_count} dependencies")

    for v in report.vulnerabilities.entries:
        solution = f"upgrade to {' or '.join(v.versions.patched)}" if v.versions.patched else "no fixed upgrade is available"
        print(f"  ❌ {v.advisory.id} {v.package.name} {v.package.version}: {v.advisory.title} ({solution})")
    for kind, warnings in report.warnings.items():
        for w in warnings:
            aid = f" {w.advisory.id}" if w.advisory else ""
            print(f"  ⚠️ {kind.value}{aid} {w.package.name} {w.package.version}")

    if report.vulnerabilities.found:
        print(f"❌ {report.vulnerabilities.count} vulnerabilit{'y' if report.vulnerabilities.count == 1 else 'ies'} found")
    else:
        print("✅ No vulnerabilities found")
    if report.warning_count:
        print(f"⚠️ {report.warning_count} warning(s)")


def _print_problems(problems: list[LinkProblem]) -> int:
    if not problems:
        print("✅ All links OK")
        return EXIT_OK
    for p in problems:
        print(f"  ❌ {p}")
    print(f"❌ {len(problems)} link problem(s)")
    return EXIT_FOUND


def _db_path(cfg: AppConfig, args: argparse.Namespace) -> Path:
    return args.db or cfg.database.path


def cmd_fetch(cfg: AppConfig, args: argparse.Namespace) -> int:
    dest = _db_path(cfg, args)
    branch = args.branch or cfg.database.branch
    print(f"Fetching {cfg.database.repo}@{branch} into {dest}/")
    commit = fetch_database(requests_session(), dest, cfg.database.repo, branch)
    print(f"✅ Advisory database updated to {commit.commit_id[:12]}")
    return EXIT_OK


def cmd_audit(cfg: AppConfig, args: argparse.Namespace) -> int:
    settings = _merge_settings(cfg.report, args)
    db = Database.load(_db_path(cfg, args))
    lockfile = load_lockfile(args.file)

    report = Report.generate(db, lockfile, settings)
    _print_report(report)

    if args.json_out:
        write_json_report(args.json_out, report)
        print(f"Wrote {args.json_out}")
    if args.md_out:
        write_markdown_report(args.md_out, report)
        print(f"Wrote {args.md_out}")

    return EXIT_FOUND if report.vulnerabilities.found else EXIT_OK


def _check(output_dir: Path, cfg: AppConfig, online: bool) -> int:
    problems = check_site(output_dir, base_url=cfg.site.base_url)
    if online:
        problems.extend(check_urls_online(collect_external_urls(output_dir)))
    return _print_problems(problems)


def cmd_site(cfg: AppConfig, args: argparse.Namespace) -> int:
    output_dir = args.output or cfg.site.output_dir
    db = None if args.about_only else Database.load(_db_path(cfg, args))
    SiteBuilder(cfg.site).build(output_dir, db)
    if args.check or args.online:
        return _check(output_dir, cfg, args.online)
    return EXIT_OK


def cmd_check_links(cfg: AppConfig, args: argparse.Namespace) -> int:
    return _check(args.directory or cfg.site.output_dir, cfg, args.online)


_COMMANDS = {
    "fetch": cmd_fetch,
    "audit": cmd_audit,
    "site": cmd_site,
    "check-links": cmd_check_links,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        cfg = load_config_or_default(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        # pydantic.ValidationError is a ValueError
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return _COMMANDS[args.command](cfg, args)
    except ValidationError as e:
        print(f"❌ Invalid option: {e}", file=sys.stderr)
        return EXIT_ERROR
    except (FileNotFoundError, AdvisoryFormatError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_ERROR
    except (requests.RequestException, RetryError, RuntimeError) as e:
        print(f"❌ Fetch failed: {e}", file=sys.stderr)
        return EXIT_ERROR
    except (zipfile.BadZipFile, OSError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
