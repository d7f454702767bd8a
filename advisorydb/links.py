"""Link and form-handler validation for rendered pages.

Static checks run on the HTML alone: every link attribute must carry a
usable URL, internal page links must resolve to rendered files, and the
About page's search form must hand its submit event to
``searchformindex()``.  ``check_urls_online`` additionally probes
external URLs concurrently with ``aiohttp``.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from pathlib import Path
from urllib.parse import unquote, urlsplit

import aiohttp

SEARCH_HANDLER = "searchformindex"
DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=10)
USER_AGENT = "advisorydb-linkcheck/0.1"

# (tag, attribute) pairs that reference another resource.
LINK_ATTRS: dict[str, tuple[str, ...]] = {
    "a": ("href",),
    "link": ("href",),
    "script": ("src",),
    "img": ("src",),
    "form": ("action",),
}


@dataclass(frozen=True)
class Link:
    """A URL-bearing attribute found in a page.

    Attributes:
        tag: Element name (``a``, ``link``...).
        attr: Attribute name (``href``, ``src``...).
        url: Raw attribute value (``""`` when the attribute has no value).
        line: 1-based source line.
    """

    tag: str
    attr: str
    url: str
    line: int


@dataclass(frozen=True)
class LinkProblem:
    """A failed check.

    Attributes:
        url: The offending URL (or handler).
        reason: Human-readable description.
        source: Page the problem was found in, if known.
    """

    url: str
    reason: str
    source: str | None = None

    def __str__(self) -> str:
        where = f"{self.source}: " if self.source else ""
        return f"{where}{self.url or '<empty>'} ({self.reason})"


class _LinkCollector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.links: list[Link] = []
        self.form_handlers: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        line, _ = self.getpos()
        wanted = LINK_ATTRS.get(tag, ())
        for name, value in attrs:
            if name in wanted:
                self.links.append(Link(tag=tag, attr=name, url=value or "", line=line))
        if tag == "form":
            handler = next((v for n, v in attrs if n == "onsubmit"), None)
            self.form_handlers.append(handler or "")

    handle_startendtag = handle_starttag


def _collect(html: str) -> _LinkCollector:
    collector = _LinkCollector()
    collector.feed(html)
    collector.close()
    return collector


def extract_links(html: str) -> list[Link]:
    """Extract every link-bearing attribute from an HTML document."""
    return _collect(html).links


def find_empty_links(html: str) -> list[Link]:
    """Links whose URL is empty, whitespace or a bare ``#``."""
    return [link for link in extract_links(html) if link.url.strip() in ("", "#")]


def find_form_handlers(html: str) -> list[str]:
    """``onsubmit`` values of every form (``""`` for forms without one)."""
    return _collect(html).form_handlers


def has_search_handler(html: str, handler: str = SEARCH_HANDLER) -> bool:
    """True when some form's ``onsubmit`` calls ``handler()``."""
    call = re.compile(rf"(?<![\w.$]){re.escape(handler)}\s*\(")
    return any(call.search(h) for h in find_form_handlers(html))


def is_external(url: str) -> bool:
    return urlsplit(url).scheme in ("http", "https")


def _is_non_page(url: str) -> bool:
    """URLs not resolved against the site tree (mailto:, javascript:, fragments...)."""
    parts = urlsplit(url)
    if parts.scheme and parts.scheme not in ("http", "https"):
        return True
    if url.startswith("//"):
        return True
    return not parts.path


def resolve_internal(url: str, page: Path, site_root: Path, base_url: str = "/") -> Path | None:
    """Map an internal URL on ``page`` to a file path below ``site_root``.

    Returns:
        Candidate path, or ``None`` when the URL escapes the site root.
    """
    path = unquote(urlsplit(url).path)
    if path.startswith("/"):
        if base_url != "/" and path.startswith(base_url):
            path = path[len(base_url) :]
        target = site_root / path.lstrip("/")
    else:
        target = page.parent / path

    if path.endswith("/") or target.is_dir():
        target = target / "index.html"

    try:
        target.resolve().relative_to(site_root.resolve())
    except ValueError:
        return None
    return target


def check_page(html: str, page: Path, site_root: Path, base_url: str = "/") -> list[LinkProblem]:
    """Run static link checks on one rendered page."""
    problems: list[LinkProblem] = []
    source = str(page.relative_to(site_root)) if page.is_relative_to(site_root) else str(page)

    for link in extract_links(html):
        url = link.url.strip()
        if url in ("", "#"):
            problems.append(LinkProblem(url=url, reason=f"empty <{link.tag} {link.attr}> on line {link.line}", source=source))
            continue
        if is_external(url) or _is_non_page(url):
            continue
        # Stylesheets, scripts and images are published alongside the site
        # and only need a non-empty URL; page links must resolve.
        if not urlsplit(url).path.endswith((".html", "/")):
            continue
        target = resolve_internal(url, page, site_root, base_url)
        if target is None:
            problems.append(LinkProblem(url=url, reason="points outside the site", source=source))
        elif not target.exists():
            problems.append(LinkProblem(url=url, reason="page not found", source=source))

    return problems


def check_site(output_dir: Path, base_url: str = "/", handler: str = SEARCH_HANDLER) -> list[LinkProblem]:
    """Check every rendered page below ``output_dir``.

    Args:
        output_dir: Site output directory.
        base_url: Prefix of site-internal absolute URLs.
        handler: Function the About page's search form must call.

    Returns:
        All problems found (empty when the site is clean).

    Raises:
        FileNotFoundError: if ``output_dir`` doesn't exist.
    """
    if not output_dir.is_dir():
        raise FileNotFoundError(f"site directory not found: {output_dir}")

    problems: list[LinkProblem] = []
    pages = sorted(output_dir.rglob("*.html"))
    for page in pages:
        html = page.read_text(encoding="utf-8")
        problems.extend(check_page(html, page, output_dir, base_url))

    about = output_dir / "about.html"
    if not about.exists():
        problems.append(LinkProblem(url="about.html", reason="about page missing", source=None))
    elif not has_search_handler(about.read_text(encoding="utf-8"), handler):
        problems.append(LinkProblem(url=f"{handler}()", reason="search form is not wired to the handler", source="about.html"))

    return problems


def collect_external_urls(output_dir: Path) -> list[str]:
    """Unique external URLs referenced by the rendered pages, sorted."""
    urls: set[str] = set()
    for page in output_dir.rglob("*.html"):
        for link in extract_links(page.read_text(encoding="utf-8")):
            url = link.url.strip()
            if is_external(url):
                urls.add(url)
    return sorted(urls)


# ─── Online probing ──────────────────────────────────────────────────────────


async def _probe(session: aiohttp.ClientSession, url: str) -> LinkProblem | None:
    """Probe one URL: HEAD first, GET when the server rejects HEAD."""
    try:
        async with session.head(url, allow_redirects=True) as resp:
            status = resp.status
        if status in (405, 501):
            async with session.get(url, allow_redirects=True) as resp:
                status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        return LinkProblem(url=url, reason=f"request failed: {e.__class__.__name__}: {e}")

    if status >= 400:
        return LinkProblem(url=url, reason=f"HTTP {status}")
    return None


async def _probe_all(urls: list[str], timeout: aiohttp.ClientTimeout, concurrency: int) -> list[LinkProblem]:
    semaphore = asyncio.Semaphore(concurrency)

    async with aiohttp.ClientSession(headers={"User-Agent": USER_AGENT}, timeout=timeout) as session:

        async def bounded(url: str) -> LinkProblem | None:
            async with semaphore:
                return await _probe(session, url)

        results = await asyncio.gather(*(bounded(u) for u in urls), return_exceptions=True)

    problems: list[LinkProblem] = []
    for url, result in zip(urls, results):
        if isinstance(result, Exception):
            problems.append(LinkProblem(url=url, reason=f"request failed: {result}"))
        elif result is not None:
            problems.append(result)
    return problems


def check_urls_online(
    urls: list[str],
    timeout: aiohttp.ClientTimeout = DEFAULT_TIMEOUT,
    concurrency: int = 8,
) -> list[LinkProblem]:
    """Probe external URLs concurrently and collect failures.

    Failures never raise; each one becomes a ``LinkProblem``.

    Args:
        urls: URLs to probe (non-http(s) entries are skipped).
        timeout: Per-session ``aiohttp`` timeout.
        concurrency: Maximum simultaneous requests.

    Returns:
        Problems for unreachable URLs or HTTP status >= 400.
    """
    targets = sorted({u for u in urls if is_external(u)})
    if not targets:
        return []
    print(f"  Probing {len(targets)} external URL(s)...")
    return asyncio.run(_probe_all(targets, timeout, concurrency))
