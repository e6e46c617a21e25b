"""Writers for the published artifacts: JSON manifest, XML sitemap and detail pages"""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import quote
from xml.sax.saxutils import escape as xml_escape

from jinja2 import Environment

from models.asset import AssetRecord

logger = logging.getLogger("GalleryBuilder")

SAME_CATEGORY_SCORE = 10
SHARED_TAG_SCORE = 3

DETAIL_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ item.title }} | {{ site_title }}</title>
  <meta name="description" content="{{ item.description }}">
  <link rel="canonical" href="{{ canonical_url }}">
  <meta property="og:title" content="{{ item.title }}">
  <meta property="og:image" content="{{ base_url }}{{ (item.thumbnail_path or item.original_path) | urlencode }}">
</head>
<body>
  <main class="asset-detail">
    <h1>{{ item.title }}</h1>
    <figure>
      <a href="{{ root }}{{ item.original_path | urlencode }}">
        <img src="{{ root }}{{ (item.thumbnail_path or item.original_path) | urlencode }}" alt="{{ item.title }}"{% if item.width and item.height %} data-width="{{ item.width }}" data-height="{{ item.height }}"{% endif %}>
      </a>
      <figcaption>{{ item.description }}</figcaption>
    </figure>
    <dl>
      <dt>Category</dt>
      <dd><a href="{{ root }}index.html?category={{ item.category | urlencode }}">{{ item.category }}</a></dd>
      <dt>Tags</dt>
      <dd>{% for tag in tags %}<a class="tag" href="{{ root }}index.html?tag={{ tag | urlencode }}">{{ tag }}</a>{% if not loop.last %} {% endif %}{% endfor %}</dd>
      <dt>License</dt>
      <dd>{{ item.license }}</dd>
{%- if item.author %}
      <dt>Author</dt>
      <dd>{{ item.author }}</dd>
{%- endif %}
{%- if item.width and item.height %}
      <dt>Dimensions</dt>
      <dd>{{ item.width }} &times; {{ item.height }}</dd>
{%- endif %}
    </dl>
    <p><a class="download" href="{{ root }}{{ item.original_path | urlencode }}" download>Download original</a></p>
{%- if related %}
    <section class="related">
      <h2>Related assets</h2>
      <ul>
{%- for other in related %}
        <li><a href="{{ root }}{{ items_dir }}/{{ other.slug }}/"><img src="{{ root }}{{ (other.thumbnail_path or other.original_path) | urlencode }}" alt="{{ other.title }}" loading="lazy">{{ other.title }}</a></li>
{%- endfor %}
      </ul>
    </section>
{%- endif %}
  </main>
</body>
</html>
"""


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def write_text_atomic(path: Path, content: str):
    """Write via a temp file in the same directory, then rename"""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        temp_path.replace(path)
    except OSError:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


def collect_categories(records: Iterable[AssetRecord]) -> List[str]:
    return sorted({r.category for r in records})


def collect_tags(records: Iterable[AssetRecord]) -> List[str]:
    tags = set()
    for record in records:
        tags.update(record.tags)
    return sorted(tags)


class ManifestWriter:
    """Rewrites the whole manifest on every build."""

    def __init__(self, manifest_path: Path):
        self.manifest_path = Path(manifest_path)

    def build_manifest(self, records: Sequence[AssetRecord], updated_at: Optional[str] = None) -> Dict[str, Any]:
        return {
            "updatedAt": updated_at or utc_timestamp(),
            "items": [r.to_manifest_item() for r in records],
            "categories": collect_categories(records),
            "tags": collect_tags(records),
        }

    def write(self, records: Sequence[AssetRecord], updated_at: Optional[str] = None) -> Dict[str, Any]:
        manifest = self.build_manifest(records, updated_at)
        write_text_atomic(self.manifest_path, json.dumps(manifest, indent=2, ensure_ascii=False) + "\n")
        logger.info(f"Wrote manifest {self.manifest_path} ({len(records)} items)")
        return manifest


class SitemapWriter:
    """sitemaps.org 0.9 urlset with one entry per unique route"""

    def __init__(self, sitemap_path: Path, base_url: str, items_dir: str = "items"):
        self.sitemap_path = Path(sitemap_path)
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.items_dir = items_dir.strip("/")

    def routes(self, records: Sequence[AssetRecord]) -> List[str]:
        """Absolute URLs in output order, duplicates removed"""
        base = self.base_url
        candidates = [base, f"{base}index.html", f"{base}tags.html"]
        candidates.extend(f"{base}index.html?category={quote(c)}" for c in collect_categories(records))
        candidates.extend(f"{base}index.html?tag={quote(t)}" for t in collect_tags(records))
        for record in records:
            candidates.append(f"{base}{self.items_dir}/{record.slug}/")
            candidates.append(f"{base}{quote(record.original_path)}")
        return list(dict.fromkeys(candidates))

    def render(self, routes: Sequence[str], lastmod: Optional[str] = None) -> str:
        lastmod = lastmod or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for loc in routes:
            lines.append(f"  <url><loc>{xml_escape(loc)}</loc><lastmod>{lastmod}</lastmod></url>")
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"

    def write(self, records: Sequence[AssetRecord], lastmod: Optional[str] = None) -> List[str]:
        routes = self.routes(records)
        write_text_atomic(self.sitemap_path, self.render(routes, lastmod))
        logger.info(f"Wrote sitemap {self.sitemap_path} ({len(routes)} routes)")
        return routes


def related_records(record: AssetRecord, records: Sequence[AssetRecord], limit: int = 6) -> List[AssetRecord]:
    """Other assets scored by shared category and tags, best first.

    Ties keep manifest order (sorted() is stable).
    """
    own_tags = set(record.tags)
    scored = []
    for other in records:
        if other.slug == record.slug:
            continue
        score = SAME_CATEGORY_SCORE if other.category == record.category else 0
        score += SHARED_TAG_SCORE * len(own_tags.intersection(other.tags))
        if score > 0:
            scored.append((score, other))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [other for _, other in scored[:limit]]


class DetailPageWriter:
    """One items/<slug>/index.html per asset, rendered with Jinja2"""

    def __init__(
        self,
        items_root: Path,
        base_url: str,
        related_limit: int = 6,
        site_title: str = "Asset Gallery",
    ):
        self.items_root = Path(items_root)
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.related_limit = related_limit
        self.site_title = site_title
        self.env = Environment(autoescape=True)
        self.template = self.env.from_string(DETAIL_PAGE_TEMPLATE)

    def page_path(self, slug: str) -> Path:
        return self.items_root / slug / "index.html"

    def render(self, record: AssetRecord, records: Sequence[AssetRecord]) -> str:
        # items/<slug>/index.html sits two levels below the site root
        return self.template.render(
            item=record,
            tags=sorted(record.tags),
            related=related_records(record, records, self.related_limit),
            root="../../",
            base_url=self.base_url,
            items_dir=self.items_root.name,
            canonical_url=f"{self.base_url}{self.items_root.name}/{record.slug}/",
            site_title=self.site_title,
        )

    def write(self, record: AssetRecord, records: Sequence[AssetRecord]) -> bool:
        """Render one page; returns True when the file on disk changed"""
        content = self.render(record, records)
        path = self.page_path(record.slug)
        try:
            if path.is_file() and path.read_text(encoding="utf-8") == content:
                logger.debug(f"Detail page unchanged: {path}")
                return False
        except (OSError, UnicodeDecodeError):
            pass
        write_text_atomic(path, content)
        return True

    def write_all(self, records: Sequence[AssetRecord]) -> int:
        written = sum(1 for record in records if self.write(record, records))
        logger.info(f"Detail pages: {written} written, {len(records) - written} unchanged")
        return written

    def remove_page(self, slug: str) -> bool:
        """Best-effort removal of items/<slug>/; failures are logged, not raised"""
        target = self.items_root / slug
        if not target.exists():
            return True
        try:
            shutil.rmtree(target)
        except OSError as e:
            logger.warning(f"Failed to remove detail page directory {target}: {e}")
            return False
        logger.info(f"Removed detail page directory {target}")
        return True


def write_nojekyll(project_root: Union[str, Path]) -> bool:
    """Create the .nojekyll marker so GitHub Pages serves _-prefixed paths"""
    marker = Path(project_root) / ".nojekyll"
    if marker.exists():
        return False
    marker.touch()
    return True
