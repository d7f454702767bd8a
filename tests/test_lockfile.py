"""Unit tests for advisorydb.lockfile — Cargo.lock parsing."""

from pathlib import Path

import pytest

from advisorydb.lockfile import is_crates_io_source, load_lockfile, parse_lockfile

V1_LOCKFILE = """\
[[package]]
name = "foo"
version = "0.1.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[metadata]
"checksum foo 0.1.0 (registry+https://github.com/rust-lang/crates.io-index)" = "abc123"
"""

# ── load_lockfile ────────────────────────────────────────────────────────────


class TestLoadLockfile:
    def test_packages(self, lockfile_path: Path):
        lock = load_lockfile(lockfile_path)
        assert lock.version == 3
        assert len(lock) == 8
        smallvec = lock.find("smallvec")[0]
        assert str(smallvec.version) == "1.6.0"
        assert smallvec.is_crates_io

    def test_path_dependency(self, lockfile_path: Path):
        myapp = load_lockfile(lockfile_path).find("myapp")[0]
        assert myapp.source is None
        assert myapp.is_crates_io
        assert "smallvec" in myapp.dependencies

    def test_checksum(self, lockfile_path: Path):
        ansi = load_lockfile(lockfile_path).find("ansi_term")[0]
        assert ansi.checksum.startswith("d52a9bb7")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_lockfile(tmp_path / "Cargo.lock")


# ── parse_lockfile ───────────────────────────────────────────────────────────


class TestParseLockfile:
    def test_v1_metadata_checksum(self):
        lock = parse_lockfile(V1_LOCKFILE)
        assert lock.version is None
        assert lock.packages[0].checksum == "abc123"

    def test_empty(self):
        assert parse_lockfile("").packages == []

    def test_git_source_not_crates_io(self):
        lock = parse_lockfile('[[package]]\nname = "x"\nversion = "1.0.0"\nsource = "git+https://github.com/o/x#abc"\n')
        assert not lock.packages[0].is_crates_io

    def test_sparse_registry(self):
        lock = parse_lockfile('[[package]]\nname = "x"\nversion = "1.0.0"\nsource = "sparse+https://index.crates.io/"\n')
        assert lock.packages[0].is_crates_io

    def test_missing_version(self):
        with pytest.raises(ValueError, match="missing name or version"):
            parse_lockfile('[[package]]\nname = "x"\n')

    def test_invalid_version(self):
        with pytest.raises(ValueError, match="invalid version"):
            parse_lockfile('[[package]]\nname = "x"\nversion = "one"\n')

    def test_invalid_toml(self):
        with pytest.raises(ValueError):
            parse_lockfile("[[package]\n")

    def test_to_dict(self):
        pkg = parse_lockfile(V1_LOCKFILE).packages[0]
        assert pkg.to_dict()["version"] == "0.1.0"
        assert pkg.to_dict()["name"] == "foo"


class TestIsCratesIoSource:
    def test_registry(self):
        assert is_crates_io_source("registry+https://github.com/rust-lang/crates.io-index")

    def test_trailing_slash_insensitive(self):
        assert is_crates_io_source("sparse+https://index.crates.io")

    def test_other_registry(self):
        assert not is_crates_io_source("registry+https://my-registry.example.com/index")
