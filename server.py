import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from managers.build_orchestrator import BuildOrchestrator
from managers.config_manager import BuildConfig
from tools.asset import register_asset_tools
from tools.build import register_build_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("GalleryBuilder")

PROJECT_ROOT = Path(os.getenv("GALLERY_PROJECT_ROOT", os.getcwd()))

build_config = BuildConfig(PROJECT_ROOT)
orchestrator = BuildOrchestrator(build_config)


class AppContext:
    def __init__(self, orchestrator: BuildOrchestrator):
        self.orchestrator = orchestrator


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting gallery MCP server...")
    logger.info(f"Project root: {build_config.project_root}")
    logger.info(f"Assets root: {build_config.assets_root}")
    try:
        yield AppContext(orchestrator=orchestrator)
    finally:
        logger.info("Shutting down gallery MCP server")


# Initialize FastMCP with lifespan
mcp = FastMCP("Gallery_Builder", lifespan=app_lifespan)

register_build_tools(mcp, orchestrator)
register_asset_tools(mcp, build_config)


def main():
    mcp.run(transport=os.getenv("GALLERY_MCP_TRANSPORT", "streamable-http"))


if __name__ == "__main__":
    main()
