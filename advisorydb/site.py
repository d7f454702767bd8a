"""Website rendering using Jinja2 templates.

Every page template extends ``layout.html`` and fills its ``content``
block.  The About page is static prose; the remaining pages are
generated from a loaded advisory database.  The search box on the
About page calls ``searchformindex()``, which is defined by the script
configured as ``site.search_script`` and is not generated here.
"""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from .advisory import Advisory
from .config import SiteConfig
from .database import Database

_TEMPLATES_DIR = Path(__file__).parent / "templates"


class SiteBuilder:
    """Renders site pages and writes them to an output directory.

    Attributes:
        config: Site configuration.
        env: Jinja2 environment (HTML autoescaping, strict undefined).
    """

    def __init__(self, config: SiteConfig | None = None, templates_dir: Path | None = None):
        self.config = config or SiteConfig()
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir or _TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.globals["site"] = self.config
        self.env.globals["url"] = self.url

    def url(self, path: str) -> str:
        """Site-internal URL for a page path such as ``advisories/X.html``."""
        return self.config.base_url + path.lstrip("/")

    def _render(self, template_name: str, **context) -> str:
        return self.env.get_template(template_name).render(**context)

    def render_about(self) -> str:
        """Render the About page."""
        return self._render("about.html")

    def render_index(self, db: Database | None) -> str:
        """Render the advisory index, newest advisories first."""
        advisories = sorted(db.iter(), key=lambda a: (a.date, a.id), reverse=True) if db else []
        return self._render(
            "index.html",
            advisories=advisories,
            package_count=len(db.packages()) if db else 0,
            commit=db.latest_commit() if db else None,
        )

    def render_advisory(self, advisory: Advisory) -> str:
        return self._render("advisory.html", advisory=advisory)

    def render_package(self, name: str, advisories: list[Advisory]) -> str:
        ordered = sorted(advisories, key=lambda a: (a.date, a.id), reverse=True)
        return self._render("package.html", package=name, advisories=ordered)

    def build(self, output_dir: Path | None = None, db: Database | None = None) -> list[Path]:
        """Render all pages into ``output_dir``.

        Args:
            output_dir: Destination directory (defaults to ``config.output_dir``).
            db: Optional advisory database for the index, advisory and
                package pages.

        Returns:
            Paths of all written pages.
        """
        out = output_dir or self.config.output_dir
        written: list[Path] = []

        written.append(_write_page(out / "about.html", self.render_about()))
        written.append(_write_page(out / "index.html", self.render_index(db)))

        if db is not None:
            for advisory in db.iter():
                written.append(_write_page(out / "advisories" / f"{advisory.id}.html", self.render_advisory(advisory)))
            for name in db.packages():
                written.append(_write_page(out / "packages" / f"{name}.html", self.render_package(name, db.find_by_package(name))))

        print(f"✅ Rendered {len(written)} page(s) into {out}/")
        return written


def _write_page(path: Path, html: str) -> Path:
    """Write one page atomically (write-then-rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(html)
    tmp.replace(path)
    return path
