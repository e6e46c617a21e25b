"""Build tools for the Gallery MCP Server"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from managers.build_orchestrator import BuildOrchestrator
from models.errors import GalleryBuildError
from tools.helpers import build_error_response

logger = logging.getLogger("GalleryBuilder")


def register_build_tools(
    mcp: FastMCP,
    orchestrator: BuildOrchestrator
):
    """Register build tools with the MCP server"""

    @mcp.tool()
    def build_gallery(full: bool = False, clean: bool = False) -> dict:
        """Run an incremental gallery build.

        Scans the assets root, reprocesses only added or modified images, removes
        outputs of deleted images, and rewrites the manifest, sitemap and detail pages.

        Args:
            full: Reprocess every image (existing slugs are kept)
            clean: Ignore the build cache and rebuild from scratch

        Returns:
            Dict with:
            - success: True if the build completed
            - summary: Human-readable one-line summary
            - report: Counts (added, modified, deleted, unchanged, processed, skipped, failed, routes...)
            - error / error_code / failed_state: Present when the build failed
        """
        try:
            report = orchestrator.build(force=full, clean=clean)
        except GalleryBuildError as e:
            logger.error(f"build_gallery failed: {e}")
            return build_error_response(e)
        return {"success": True, "summary": report.summary(), "report": report.to_dict()}

    @mcp.tool()
    def get_build_status() -> dict:
        """Get the state and report of the most recent build run by this server.

        Returns:
            Dict with state ("init" if nothing has run), the last report, and the
            cache's lastBuildTimestamp (the last successful build, from any process).
        """
        cache = orchestrator.cache_store.load()
        report = orchestrator.last_report
        return {
            "state": orchestrator.state.value,
            "last_report": report.to_dict() if report else None,
            "summary": report.summary() if report else None,
            "last_successful_build": cache.last_build_timestamp,
            "cached_assets": len(cache.files),
        }

    @mcp.tool()
    def get_build_config(section: Optional[str] = None) -> dict:
        """Get the effective build configuration.

        Settings are merged from explicit arguments, gallery.config.json,
        GALLERY_* environment variables and hardcoded defaults.

        Args:
            section: Optional single key to return (e.g., "tag_rules", "base_url")
        """
        config = orchestrator.config.as_dict()
        if section is None:
            return config
        if section not in config:
            return {
                "error": f"Unknown config section '{section}'. Available: {', '.join(sorted(config))}",
                "error_code": "UNKNOWN_CONFIG_SECTION",
            }
        return {section: config[section]}
