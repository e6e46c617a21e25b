"""Shared helper functions for tool implementations"""

import json
import logging
from typing import Any, Dict, List, Optional

from models.errors import BuildFailedError, GalleryBuildError

logger = logging.getLogger("GalleryBuilder")


def load_manifest(config) -> Optional[Dict[str, Any]]:
    """Read the published manifest; None if no build has written one yet"""
    path = config.manifest_path
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to read manifest {path}: {e}")
        return None
    return manifest if isinstance(manifest, dict) else None


def find_item(items: List[Dict[str, Any]], slug: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item.get("slug") == slug:
            return item
    return None


def manifest_not_found(config) -> Dict[str, Any]:
    return {
        "error": f"No manifest at {config.manifest_path}. Run build_gallery first.",
        "error_code": "MANIFEST_NOT_FOUND",
    }


def build_error_response(error: GalleryBuildError) -> Dict[str, Any]:
    """Error dict for a failed build, with the partial report when there is one"""
    response: Dict[str, Any] = {
        "success": False,
        "error": str(error),
        "error_code": type(error).__name__,
    }
    if isinstance(error, BuildFailedError):
        if error.__cause__ is not None:
            response["error_code"] = type(error.__cause__).__name__
        if error.state:
            response["failed_state"] = error.state
        if error.report is not None:
            response["report"] = error.report.to_dict()
            response["summary"] = error.report.summary()
    return response
