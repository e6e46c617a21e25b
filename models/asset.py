"""Asset data models"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SourceFile:
    """A candidate source image discovered by the catalog"""
    source_path: str  # POSIX path relative to the assets root
    absolute_path: str
    extension: str  # lowercase, with leading dot
    byte_size: int
    last_modified_time: float
    content_fingerprint: str  # sha256 of file bytes

    @property
    def sort_key(self):
        """Deterministic processing order: normalised path, then raw path"""
        return (self.source_path.casefold(), self.source_path)


@dataclass
class AssetRecord:
    """Canonical record of one published asset"""
    source_path: str
    slug: str
    category: str
    tags: List[str]
    title: str
    description: str
    license: str
    width: Optional[int]
    height: Optional[int]
    byte_size: int
    content_fingerprint: str
    last_modified_time: float
    original_path: str  # URL path of the source file, e.g. "assets/ui/button.png"
    thumbnail_path: Optional[str] = None
    author: Optional[str] = None
    keywords: List[str] = field(default_factory=list)

    def to_manifest_item(self) -> Dict[str, Any]:
        """Front-end facing representation (camelCase keys)"""
        return {
            "id": self.slug,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": sorted(self.tags),
            "license": self.license,
            "author": self.author,
            "keywords": list(self.keywords),
            "width": self.width,
            "height": self.height,
            "fileSize": self.byte_size,
            "originalPath": self.original_path,
            "thumbnailPath": self.thumbnail_path,
            "thumbnail": self.thumbnail_path,
            "sourcePath": self.source_path,
            "contentFingerprint": self.content_fingerprint,
            "lastModified": self.last_modified_time,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tags"] = sorted(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetRecord":
        """Rebuild a record from cached data, tolerating missing/unknown keys"""
        return cls(
            source_path=str(data["source_path"]),
            slug=str(data["slug"]),
            category=str(data.get("category") or "misc"),
            tags=[str(t) for t in data.get("tags") or [] if str(t).strip()],
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            license=str(data.get("license") or ""),
            width=data.get("width"),
            height=data.get("height"),
            byte_size=int(data.get("byte_size") or 0),
            content_fingerprint=str(data.get("content_fingerprint") or ""),
            last_modified_time=float(data.get("last_modified_time") or 0.0),
            original_path=str(data.get("original_path") or ""),
            thumbnail_path=data.get("thumbnail_path"),
            author=data.get("author"),
            keywords=[str(k) for k in data.get("keywords") or []],
        )
