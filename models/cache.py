"""Persisted build cache models"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from models.asset import AssetRecord

logger = logging.getLogger("GalleryBuilder")

CACHE_FORMAT_VERSION = 1


@dataclass
class CacheEntry:
    """Last-known state of one source file"""
    content_fingerprint: str
    last_modified_time: float
    record: AssetRecord
    metadata_fingerprint: Optional[str] = None
    thumbnail_fingerprint: Optional[str] = None  # fingerprint the thumbnail was rendered from
    slug_base: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentFingerprint": self.content_fingerprint,
            "lastModifiedTime": self.last_modified_time,
            "metadataFingerprint": self.metadata_fingerprint,
            "thumbnailFingerprint": self.thumbnail_fingerprint,
            "slugBase": self.slug_base,
            "record": self.record.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            content_fingerprint=str(data["contentFingerprint"]),
            last_modified_time=float(data.get("lastModifiedTime") or 0.0),
            record=AssetRecord.from_dict(data["record"]),
            metadata_fingerprint=data.get("metadataFingerprint"),
            thumbnail_fingerprint=data.get("thumbnailFingerprint"),
            slug_base=data.get("slugBase"),
        )


@dataclass
class BuildCache:
    """Mapping sourcePath -> CacheEntry plus the last successful build time"""
    last_build_timestamp: Optional[str] = None
    files: Dict[str, CacheEntry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": CACHE_FORMAT_VERSION,
            "lastBuildTimestamp": self.last_build_timestamp,
            "files": {path: self.files[path].to_dict() for path in sorted(self.files)},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildCache":
        """Load cache data; entries that cannot be parsed are dropped with a warning"""
        files: Dict[str, CacheEntry] = {}
        raw_files = data.get("files") or {}
        if not isinstance(raw_files, dict):
            raw_files = {}
        for source_path, raw_entry in raw_files.items():
            try:
                files[source_path] = CacheEntry.from_dict(raw_entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable cache entry for {source_path}: {e}")
        return cls(last_build_timestamp=data.get("lastBuildTimestamp"), files=files)

    def slugs(self) -> Dict[str, str]:
        """sourcePath -> slug for every cached asset"""
        return {path: entry.record.slug for path, entry in self.files.items()}
