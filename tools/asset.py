"""Asset browsing tools for the Gallery MCP Server"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP, Image as FastMCPImage

from thumbnail_processor import encode_preview, get_cache_key
from tools.helpers import find_item, load_manifest, manifest_not_found

logger = logging.getLogger("GalleryBuilder")


def register_asset_tools(
    mcp: FastMCP,
    config
):
    """Register asset browsing tools with the MCP server"""

    @mcp.tool()
    def list_gallery_assets(
        category: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        """List published assets from the manifest, optionally filtered.

        Args:
            category: Only assets in this category
            tag: Only assets carrying this tag
            limit: Maximum number of items to return (default: 50)
            offset: Number of matching items to skip

        Returns:
            Dict with items (slug, title, category, tags, thumbnailPath), total
            matches, and the manifest's categories/tags lists.
        """
        manifest = load_manifest(config)
        if manifest is None:
            return manifest_not_found(config)

        items = manifest.get("items") or []
        if category:
            items = [i for i in items if i.get("category") == category]
        if tag:
            items = [i for i in items if tag in (i.get("tags") or [])]

        limit = max(0, limit)
        offset = max(0, offset)
        page = items[offset:offset + limit]
        return {
            "items": [
                {
                    "slug": i.get("slug"),
                    "title": i.get("title"),
                    "category": i.get("category"),
                    "tags": i.get("tags"),
                    "thumbnailPath": i.get("thumbnailPath"),
                }
                for i in page
            ],
            "total": len(items),
            "offset": offset,
            "updatedAt": manifest.get("updatedAt"),
            "categories": manifest.get("categories") or [],
            "tags": manifest.get("tags") or [],
        }

    @mcp.tool()
    def get_gallery_asset(slug: str) -> dict:
        """Get the full manifest record of one asset.

        Args:
            slug: Asset slug (e.g., "landscape-cuteroom1")
        """
        manifest = load_manifest(config)
        if manifest is None:
            return manifest_not_found(config)
        item = find_item(manifest.get("items") or [], slug)
        if item is None:
            return {"error": f"Asset '{slug}' not found in manifest", "error_code": "ASSET_NOT_FOUND"}
        return {
            **item,
            "detailPage": f"{config.base_url}{config.items_root.name}/{slug}/",
        }

    @mcp.tool()
    def view_gallery_thumbnail(
        slug: str,
        max_dim: Optional[int] = None,
        max_b64_chars: Optional[int] = None,
    ):
        """View an asset's thumbnail inline in chat.

        Args:
            slug: Asset slug from list_gallery_assets
            max_dim: Maximum dimension in pixels (default: 512)
            max_b64_chars: Maximum base64 character count (default: 100000, ~100KB)

        Returns:
            Inline WebP image, or an error dict if the asset is unknown or the
            preview exceeds the budget.
        """
        manifest = load_manifest(config)
        if manifest is None:
            return manifest_not_found(config)
        item = find_item(manifest.get("items") or [], slug)
        if item is None:
            return {"error": f"Asset '{slug}' not found in manifest", "error_code": "ASSET_NOT_FOUND"}

        rel_path = item.get("thumbnailPath") or item.get("originalPath")
        if not rel_path:
            return {"error": f"Asset '{slug}' has no thumbnail", "error_code": "THUMBNAIL_MISSING"}
        image_path = config.project_root / rel_path

        if max_dim is None:
            max_dim = 512
        if max_b64_chars is None:
            max_b64_chars = 100_000

        try:
            encoded = encode_preview(
                image_path,
                max_dim=max_dim,
                max_b64_chars=max_b64_chars,
                cache_key=get_cache_key(slug, item.get("contentFingerprint") or "", max_dim),
            )
        except FileNotFoundError:
            return {
                "error": f"Thumbnail file {rel_path} is missing. Run build_gallery to regenerate it.",
                "error_code": "THUMBNAIL_MISSING",
            }
        except ValueError as e:
            logger.warning(f"Refusing to inline thumbnail for {slug}: {e}")
            return {
                "error": f"Could not inline image ({e}). Path: {rel_path}",
                "error_code": "PREVIEW_TOO_LARGE",
            }
        except OSError as e:
            logger.exception(f"Failed to read thumbnail for {slug}")
            return {"error": f"Failed to read thumbnail: {e}", "error_code": "THUMBNAIL_UNREADABLE"}

        logger.info(
            f"view_gallery_thumbnail: slug={slug} preview_dims={encoded.size_px[0]}x{encoded.size_px[1]} "
            f"encoded={encoded.bytes_len}B b64_chars={encoded.b64_chars}"
        )
        return FastMCPImage(data=encoded.raw_bytes, format="webp")
