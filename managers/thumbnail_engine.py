"""Thumbnail derivation with fingerprint-checked reuse"""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

from models.asset import SourceFile
from models.errors import UnsupportedFormatError
from thumbnail_processor import inspect_image, output_format_for, render_thumbnail

logger = logging.getLogger("GalleryBuilder")


@dataclass
class ThumbnailResult:
    thumbnail_path: str  # URL path relative to the project root
    width: Optional[int]
    height: Optional[int]
    fingerprint: str  # content fingerprint the thumbnail was rendered from
    regenerated: bool


class ThumbnailEngine:
    """Produces one resized derivative per source file under the reserved thumbnails directory."""

    def __init__(self, config):
        self.config = config
        self.thumbs_root = Path(config.thumbs_root)
        self.width = config.thumbnail_width
        self.quality = config.thumbnail_quality

    def thumbnail_file(self, source_path: str) -> Path:
        """Deterministic output location for a source path (relative to the assets root)"""
        rel = PurePosixPath(source_path)
        _, out_ext = output_format_for(rel.suffix)
        name = f"{rel.stem}-{rel.suffix.lstrip('.')}-{self.width}{out_ext}"
        return self.thumbs_root.joinpath(*rel.parent.parts, name)

    def exists(self, source_path: str) -> bool:
        try:
            return self.thumbnail_file(source_path).is_file()
        except UnsupportedFormatError:
            return False

    def ensure_thumbnail(
        self,
        source: SourceFile,
        previous_fingerprint: Optional[str] = None,
    ) -> ThumbnailResult:
        """Return the thumbnail for `source`, rendering it unless a valid one exists.

        An existing file is reused only when the cache says it was rendered from
        the same content fingerprint; file timestamps are never trusted alone.

        Raises:
            DecodeError, UnsupportedFormatError: per-item failures
        """
        dest = self.thumbnail_file(source.source_path)
        url_path = self.config.url_path(dest)

        if previous_fingerprint == source.content_fingerprint and dest.is_file():
            info = inspect_image(source.absolute_path)
            logger.debug(f"Thumbnail up to date for {source.source_path}")
            return ThumbnailResult(url_path, info.width, info.height, source.content_fingerprint, False)

        info = render_thumbnail(source.absolute_path, dest, self.width, self.quality)
        logger.info(f"Generated thumbnail {url_path}")
        return ThumbnailResult(url_path, info.width, info.height, source.content_fingerprint, True)

    def remove_thumbnail(self, source_path: str) -> bool:
        """Best-effort removal of a deleted asset's thumbnail; failures are logged, not raised"""
        try:
            dest = self.thumbnail_file(source_path)
        except UnsupportedFormatError as e:
            logger.warning(f"Cannot locate thumbnail for {source_path}: {e}")
            return False
        try:
            dest.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Failed to remove thumbnail {dest}: {e}")
            return False
        logger.info(f"Removed thumbnail {dest}")
        return True
