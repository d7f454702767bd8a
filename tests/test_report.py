"""Unit tests for advisorydb.report — report generation, JSON and Markdown output."""

import datetime as dt
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from advisorydb.advisory import Severity
from advisorydb.database import CommitInfo, Database
from advisorydb.lockfile import load_lockfile
from advisorydb.parsers import parse_advisory
from advisorydb.report import (
    DatabaseInfo,
    Report,
    Settings,
    find_warnings,
    render_markdown_report,
    write_json_report,
    write_markdown_report,
)
from advisorydb.warning import WarningKind

from conftest import make_advisory_md


@pytest.fixture
def db(db_root: Path) -> Database:
    return Database.load(db_root)


@pytest.fixture
def lockfile(lockfile_path: Path):
    return load_lockfile(lockfile_path)


def _vuln_packages(report: Report) -> list[str]:
    return sorted(v.package.name for v in report.vulnerabilities.entries)


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.severity is None
        assert s.ignore == []
        assert s.informational_warnings == []

    def test_normalization(self):
        s = Settings(
            severity="High",
            ignore=[" rustsec-2020-0071 ", "RUSTSEC-2020-0071", ""],
            informational_warnings=["Unmaintained"],
        )
        assert s.severity is Severity.HIGH
        assert s.ignore == ["RUSTSEC-2020-0071"]
        assert s.informational_warnings == ["unmaintained"]

    def test_single_string_ignore(self):
        assert Settings(ignore="RUSTSEC-2020-0001").ignore == ["RUSTSEC-2020-0001"]

    def test_bad_severity(self):
        with pytest.raises(ValidationError):
            Settings(severity="extreme")

    def test_unknown_informational_kind_accepted(self):
        assert Settings(informational_warnings=["Custom-Kind", "custom-kind"]).informational_warnings == ["custom-kind"]

    def test_query(self):
        q = Settings(target_os="linux", severity="low").query()
        assert q.collection_ == "crates"
        assert q.target_os_ == "linux"
        assert q.severity_ is Severity.LOW
        assert q.informational_ is False
        assert q.withdrawn_ is False

    def test_to_dict(self):
        d = Settings(severity="medium", informational_warnings=["unsound"]).to_dict()
        assert d["severity"] == "medium"
        assert d["informational_warnings"] == ["unsound"]


# ── Report.generate ──────────────────────────────────────────────────────────


class TestGenerate:
    def test_default(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings())
        assert report.vulnerabilities.found
        assert report.vulnerabilities.count == 3
        assert _vuln_packages(report) == ["net-lib", "smallvec", "time"]
        assert report.warnings == {}
        assert report.database.advisory_count == 7
        assert report.lockfile.dependency_count == 8

    def test_target_os(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings(target_os="windows"))
        assert _vuln_packages(report) == ["net-lib", "smallvec"]

    def test_target_arch(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings(target_arch="x86_64"))
        assert _vuln_packages(report) == ["smallvec", "time"]

    def test_severity(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings(severity="high"))
        assert _vuln_packages(report) == ["net-lib", "smallvec"]

    def test_ignore(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings(ignore=["RUSTSEC-2021-0003", "RUSTSEC-2022-0002", "RUSTSEC-2020-0071"]))
        assert not report.vulnerabilities.found
        assert report.vulnerabilities.count == 0

    def test_warnings(self, db, lockfile):
        report = Report.generate(db, lockfile, Settings(informational_warnings=["unsound", "unmaintained"]))
        assert list(report.warnings) == [WarningKind.UNMAINTAINED, WarningKind.UNSOUND]
        assert report.warnings[WarningKind.UNMAINTAINED][0].package.name == "ansi_term"
        assert report.warnings[WarningKind.UNSOUND][0].package.name == "libc"
        assert report.warning_count == 2

    def test_ignored_warning(self, db, lockfile):
        settings = Settings(informational_warnings=["unmaintained"], ignore=["RUSTSEC-2021-0139"])
        assert find_warnings(db, lockfile, settings) == {}

    def test_only_requested_kinds(self, db, lockfile):
        warnings = find_warnings(db, lockfile, Settings(informational_warnings=["unsound"]))
        assert list(warnings) == [WarningKind.UNSOUND]

    def test_informational_case_insensitive(self, lockfile):
        advisory = parse_advisory(make_advisory_md("RUSTSEC-2021-0139", "ansi_term", informational="Unmaintained"))
        db = Database.from_advisories([advisory])
        warnings = find_warnings(db, lockfile, Settings(informational_warnings=["unmaintained"]))
        assert [w.advisory.informational for w in warnings[WarningKind.UNMAINTAINED]] == ["Unmaintained"]

    def test_unknown_informational_kind_no_warning(self, lockfile):
        advisory = parse_advisory(make_advisory_md("RUSTSEC-2021-0139", "ansi_term", informational="Custom-Kind"))
        db = Database.from_advisories([advisory])
        assert find_warnings(db, lockfile, Settings(informational_warnings=["custom-kind"])) == {}


# ── Serialization ────────────────────────────────────────────────────────────


class TestToDict:
    def test_kebab_case_keys(self, db, lockfile):
        d = Report.generate(db, lockfile, Settings(informational_warnings=["unmaintained"])).to_dict()
        assert d["database"] == {"advisory-count": 7, "last-commit": None, "last-updated": None}
        assert d["lockfile"] == {"dependency-count": 8}
        assert d["vulnerabilities"]["found"] is True
        assert d["vulnerabilities"]["count"] == len(d["vulnerabilities"]["list"]) == 3
        assert list(d["warnings"]) == ["unmaintained"]
        assert d["warnings"]["unmaintained"][0]["kind"] == "unmaintained"

    def test_database_info_commit(self):
        ts = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)
        db = Database.from_advisories([], commit=CommitInfo(commit_id="abc", timestamp=ts))
        assert DatabaseInfo.new(db).to_dict() == {
            "advisory-count": 0,
            "last-commit": "abc",
            "last-updated": "2024-05-01T12:00:00Z",
        }


class TestWriteReports:
    def test_json(self, tmp_path: Path, db, lockfile):
        out = tmp_path / "out" / "report.json"
        write_json_report(out, Report.generate(db, lockfile, Settings()))
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["vulnerabilities"]["count"] == 3
        assert not out.with_suffix(".json.tmp").exists()

    def test_markdown(self, tmp_path: Path, db, lockfile):
        out = tmp_path / "report.md"
        report = Report.generate(db, lockfile, Settings(severity="medium", informational_warnings=["unsound"]))
        write_markdown_report(out, report)
        md = out.read_text(encoding="utf-8")
        assert md.startswith("# Advisory Audit Report")
        assert "| Dependencies scanned | 8 |" in md
        assert "Severity threshold: `medium`" in md
        assert "### Unsound (1)" in md
        assert "Upgrade to >= 1.6.1 or ^0.6.14" in md

    def test_markdown_sorted_by_severity(self, db, lockfile):
        md = render_markdown_report(Report.generate(db, lockfile, Settings()))
        assert md.index("RUSTSEC-2021-0003") < md.index("RUSTSEC-2020-0071") < md.index("RUSTSEC-2022-0002")

    def test_markdown_empty(self, tmp_path: Path, lockfile):
        md = render_markdown_report(Report.generate(Database.from_advisories([]), lockfile, Settings()))
        assert "No vulnerabilities found." in md
        assert "No warnings." in md
