"""Tests for manifest, sitemap and detail page output"""

import json

from managers.output_writers import (
    DetailPageWriter,
    ManifestWriter,
    SitemapWriter,
    related_records,
    write_nojekyll,
)
from models.asset import AssetRecord


def record(slug, category="misc", tags=(), title=None, **extra) -> AssetRecord:
    fields = dict(
        source_path=f"{category}/{slug}.png",
        slug=slug,
        category=category,
        tags=list(tags),
        title=title or slug,
        description=f"{slug} - {category} image",
        license="CC0-1.0",
        width=10,
        height=10,
        byte_size=100,
        content_fingerprint="f" * 64,
        last_modified_time=0.0,
        original_path=f"assets/{category}/{slug}.png",
        thumbnail_path=f"assets/_thumbs/{category}/{slug}-png-480.png",
    )
    fields.update(extra)
    return AssetRecord(**fields)


class TestRelatedScoring:
    """Tests for related_records"""

    def test_scores_category_and_shared_tags(self):
        current = record("a", "x", ["t1", "t2"])
        same_category = record("b", "x")  # 10
        two_tags = record("c", "y", ["t1", "t2"])  # 6
        one_tag = record("d", "y", ["t1"])  # 3
        unrelated = record("e", "z", ["t9"])  # 0
        records = [current, unrelated, one_tag, two_tags, same_category]

        assert [r.slug for r in related_records(current, records)] == ["b", "c", "d"]

    def test_limit_and_ties_keep_manifest_order(self):
        current = record("a", "x")
        others = [record(f"o{i}", "x") for i in range(8)]

        related = related_records(current, [current] + others, limit=6)

        assert [r.slug for r in related] == [f"o{i}" for i in range(6)]

    def test_excludes_self(self):
        current = record("a", "x", ["t"])
        assert related_records(current, [current]) == []


class TestManifestWriter:
    """Tests for ManifestWriter"""

    def test_writes_items_categories_and_tags(self, tmp_path):
        records = [record("b", "ui", ["zeta", "alpha"]), record("a", "landscape", ["alpha"])]
        path = tmp_path / "assets.json"

        ManifestWriter(path).write(records, updated_at="2024-01-01T00:00:00.000Z")

        manifest = json.loads(path.read_text())
        assert manifest["updatedAt"] == "2024-01-01T00:00:00.000Z"
        assert [i["slug"] for i in manifest["items"]] == ["b", "a"]
        assert manifest["categories"] == ["landscape", "ui"]
        assert manifest["tags"] == ["alpha", "zeta"]
        item = manifest["items"][0]
        assert item["id"] == item["slug"] == "b"
        assert item["tags"] == ["alpha", "zeta"]
        assert item["thumbnailPath"] == "assets/_thumbs/ui/b-png-480.png"
        assert item["originalPath"] == "assets/ui/b.png"
        assert (item["width"], item["height"]) == (10, 10)

    def test_rewrites_in_full(self, tmp_path):
        path = tmp_path / "assets.json"
        writer = ManifestWriter(path)
        writer.write([record("a"), record("b")])
        writer.write([record("b")])
        assert [i["slug"] for i in json.loads(path.read_text())["items"]] == ["b"]


class TestSitemapWriter:
    """Tests for SitemapWriter"""

    def test_routes(self):
        writer = SitemapWriter("sitemap.xml", "https://example.org/g")
        routes = writer.routes([record("a", "ui", ["red"]), record("b", "ui", ["red", "big one"])])

        assert routes == [
            "https://example.org/g/",
            "https://example.org/g/index.html",
            "https://example.org/g/tags.html",
            "https://example.org/g/index.html?category=ui",
            "https://example.org/g/index.html?tag=big%20one",
            "https://example.org/g/index.html?tag=red",
            "https://example.org/g/items/a/",
            "https://example.org/g/assets/ui/a.png",
            "https://example.org/g/items/b/",
            "https://example.org/g/assets/ui/b.png",
        ]

    def test_routes_are_deduplicated(self):
        writer = SitemapWriter("sitemap.xml", "https://example.org/")
        shared = dict(original_path="assets/shared.png")
        routes = writer.routes([record("a", **shared), record("b", **shared)])
        assert len(routes) == len(set(routes))
        assert routes.count("https://example.org/assets/shared.png") == 1

    def test_asset_paths_are_percent_encoded(self, tmp_path):
        path = tmp_path / "sitemap.xml"
        writer = SitemapWriter(path, "https://example.org/gallery/")
        photo = record("my-photo", "landscape", original_path="assets/landscape/my photo.jpg")

        routes = writer.write([photo], lastmod="2024-01-01")

        assert "https://example.org/gallery/assets/landscape/my%20photo.jpg" in routes
        content = path.read_text()
        assert "<loc>https://example.org/gallery/assets/landscape/my%20photo.jpg</loc>" in content
        assert "my photo" not in content

    def test_write_escapes_xml(self, tmp_path):
        path = tmp_path / "sitemap.xml"
        writer = SitemapWriter(path, "https://example.org/?a=1&b=2")

        writer.write([record("a")], lastmod="2024-01-01")

        content = path.read_text()
        assert content.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"' in content
        assert "&amp;b=2" in content
        assert "&b=2" not in content.replace("&amp;", "")
        assert content.count("<url>") == 6


class TestDetailPageWriter:
    """Tests for DetailPageWriter"""

    def test_renders_page_with_related_links(self, tmp_path):
        writer = DetailPageWriter(tmp_path / "items", "https://example.org/")
        current = record("a", "ui", ["red"], license="MIT")
        other = record("b", "ui", ["red"], title="Other Button")

        assert writer.write(current, [current, other]) is True

        html = (tmp_path / "items" / "a" / "index.html").read_text()
        assert "../../assets/ui/a.png" in html
        assert "../../assets/_thumbs/ui/a-png-480.png" in html
        assert "MIT" in html
        assert "../../items/b/" in html
        assert "Other Button" in html
        assert 'href="https://example.org/items/a/"' in html

    def test_escapes_metadata(self, tmp_path):
        writer = DetailPageWriter(tmp_path / "items", "https://example.org/")
        current = record("a", title="<script>alert(1)</script>")

        html = writer.render(current, [current])

        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_asset_links_are_percent_encoded(self, tmp_path):
        writer = DetailPageWriter(tmp_path / "items", "https://example.org/")
        current = record(
            "my-photo",
            "landscape",
            original_path="assets/landscape/my photo.jpg",
            thumbnail_path="assets/_thumbs/landscape/my photo-jpg-480.jpg",
        )

        html = writer.render(current, [current])

        assert 'href="../../assets/landscape/my%20photo.jpg"' in html
        assert 'src="../../assets/_thumbs/landscape/my%20photo-jpg-480.jpg"' in html
        assert "my photo" not in html

    def test_unchanged_page_is_not_rewritten(self, tmp_path):
        writer = DetailPageWriter(tmp_path / "items", "https://example.org/")
        current = record("a")
        assert writer.write(current, [current]) is True
        mtime = writer.page_path("a").stat().st_mtime_ns

        assert writer.write(current, [current]) is False
        assert writer.page_path("a").stat().st_mtime_ns == mtime

    def test_remove_page(self, tmp_path):
        writer = DetailPageWriter(tmp_path / "items", "https://example.org/")
        current = record("a")
        writer.write(current, [current])

        assert writer.remove_page("a") is True
        assert not (tmp_path / "items" / "a").exists()
        assert writer.remove_page("a") is True


def test_write_nojekyll_once(tmp_path):
    assert write_nojekyll(tmp_path) is True
    assert (tmp_path / ".nojekyll").exists()
    assert write_nojekyll(tmp_path) is False
