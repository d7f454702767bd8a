"""HTTP download helpers for fetching the advisory database.

All network I/O for the database lives here; the rest of the package
works with the local checkout.
"""

import datetime as dt
import io
import os
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Any

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import __version__
from .database import CommitInfo, write_commit_info

GITHUB_API = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_ARCHIVE_URL = "https://github.com/{repo}/archive/{ref}.zip"

DEFAULT_HTTP_TIMEOUT = (10, 120)  # (connect, read)
MAX_ARCHIVE_BYTES = 256 * 1024 * 1024

_retry_http = retry(
    retry=retry_if_exception_type(requests.RequestException),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=30),
)


def requests_session() -> requests.Session:
    """Session for the GitHub REST API and archive downloads.

    A ``GITHUB_TOKEN`` or ``GH_TOKEN`` from the environment is sent as a
    bearer token, which lifts the anonymous API rate limit in CI.
    """
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": f"advisorydb/{__version__}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
    )
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        s.headers["Authorization"] = f"Bearer {token}"
    return s


@_retry_http
def get_json(session: requests.Session, url: str) -> Any:
    """GET a GitHub API endpoint, retrying transient failures."""
    r = session.get(url, timeout=DEFAULT_HTTP_TIMEOUT)
    r.raise_for_status()
    return r.json()


@_retry_http
def download_bytes(session: requests.Session, url: str) -> bytes:
    """Download a repository archive into memory.

    The advisory database archive is a few megabytes, so it is buffered
    rather than spooled to disk.  Retries like ``get_json``.

    Raises:
        RuntimeError: if the body exceeds ``MAX_ARCHIVE_BYTES``.
    """
    with session.get(url, stream=True, timeout=DEFAULT_HTTP_TIMEOUT, headers={"Accept": "*/*"}) as r:
        r.raise_for_status()
        buf = io.BytesIO()
        for chunk in r.iter_content(chunk_size=1024 * 1024):
            if chunk:
                buf.write(chunk)
                if buf.tell() > MAX_ARCHIVE_BYTES:
                    raise RuntimeError(f"archive at {url} exceeds {MAX_ARCHIVE_BYTES // (1024 * 1024)} MB")
        return buf.getvalue()


def get_latest_commit(session: requests.Session, repo: str, branch: str = "main") -> CommitInfo:
    """Resolve the head commit of a branch through the GitHub API.

    Args:
        session: Requests session.
        repo: ``owner/name`` slug.
        branch: Branch name.

    Returns:
        ``CommitInfo`` with the commit hash and committer date.

    Raises:
        RuntimeError: if the API response has no commit hash.
    """
    data = get_json(session, f"{GITHUB_API}/repos/{repo}/commits/{branch}")
    sha = (data or {}).get("sha")
    if not sha:
        raise RuntimeError(f"GitHub API returned no commit for {repo}@{branch}")

    commit = data.get("commit") or {}
    date_str = (commit.get("committer") or {}).get("date") or (commit.get("author") or {}).get("date")
    timestamp = None
    if date_str:
        try:
            timestamp = dt.datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError:
            print(f"  ⚠️ Unparseable commit date {date_str!r}")
    return CommitInfo(commit_id=sha, timestamp=timestamp)


def extract_archive(zip_bytes: bytes) -> Path:
    """Extract a repository ZIP archive to a temporary directory.

    GitHub archives wrap everything in a single ``<repo>-<ref>/``
    directory; that wrapper is unwrapped.

    Args:
        zip_bytes: Raw bytes of the ZIP file.

    Returns:
        Path to the extracted repository root.  The caller owns the
        temporary directory (``path.parent`` when unwrapped).

    Raises:
        RuntimeError: for corrupt archives or members escaping the
            extraction directory.
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="advisorydb_"))
    try:
        with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
            for name in zf.namelist():
                target = (tmp_dir / name).resolve()
                if not target.is_relative_to(tmp_dir.resolve()):
                    raise RuntimeError(f"archive member escapes extraction directory: {name}")
            zf.extractall(tmp_dir)
    except zipfile.BadZipFile as e:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise RuntimeError(f"corrupt archive: {e}") from e
    except Exception:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise

    entries = [p for p in tmp_dir.iterdir()]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return tmp_dir


def fetch_database(
    session: requests.Session,
    dest: Path,
    repo: str = "rustsec/advisory-db",
    branch: str = "main",
) -> CommitInfo:
    """Download the advisory database and replace the checkout at ``dest``.

    Args:
        session: Requests session.
        dest: Local checkout directory.
        repo: ``owner/name`` slug.
        branch: Branch to fetch.

    The previous checkout is moved aside first and restored if the new
    tree cannot be moved into place.

    Returns:
        ``CommitInfo`` of the fetched commit (also written to ``dest``).
    """
    commit = get_latest_commit(session, repo, branch)
    print(f"  Latest {repo}@{branch}: {commit.commit_id[:12]}")

    url = GITHUB_ARCHIVE_URL.format(repo=repo, ref=commit.commit_id)
    raw = download_bytes(session, url)
    print(f"  ✅ Downloaded archive: {len(raw) / 1024 / 1024:.1f} MB")

    extracted = extract_archive(raw)
    tmp_root = extracted if extracted.name.startswith("advisorydb_") else extracted.parent
    backup = dest.with_name(dest.name + ".old")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if backup.exists():
            shutil.rmtree(backup)
        if dest.exists():
            dest.rename(backup)
        try:
            shutil.move(str(extracted), str(dest))
        except OSError:
            shutil.rmtree(dest, ignore_errors=True)
            if backup.exists():
                backup.rename(dest)
                print(f"  ⚠️ Restored previous checkout at {dest}")
            raise
    finally:
        shutil.rmtree(tmp_root, ignore_errors=True)
    shutil.rmtree(backup, ignore_errors=True)

    write_commit_info(dest, commit)
    return commit
