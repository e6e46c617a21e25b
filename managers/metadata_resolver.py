"""Metadata resolution from sidecar files, pattern rules and folder structure"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from models.asset import SourceFile

logger = logging.getLogger("GalleryBuilder")

FALLBACK_CATEGORY = "misc"
SIDECAR_SUFFIX = ".meta.json"
DIRECTORY_SIDECAR = ".meta.json"
SIDECAR_KEYS = ("title", "category", "tags", "description", "license", "author", "keywords")
TITLE_SEPARATORS = re.compile(r"[-_]+")


@dataclass
class PartialMetadata:
    """Fields one contributor knows about; None means "no opinion" """
    title: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    license: Optional[str] = None
    author: Optional[str] = None
    keywords: Optional[List[str]] = None
    tags: Set[str] = field(default_factory=set)


@dataclass
class ResolvedMetadata:
    category: str
    category_is_fallback: bool
    tags: Set[str]
    title: str
    description: str
    license: str
    author: Optional[str]
    keywords: List[str]
    stem: str


def clean_tags(values: Any) -> Set[str]:
    """Non-empty stripped strings from a list (or comma separated string)"""
    if isinstance(values, str):
        values = values.split(",")
    if not isinstance(values, (list, tuple, set)):
        return set()
    return {str(v).strip() for v in values if v is not None and str(v).strip()}


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class MetadataContributor:
    """One source of metadata for an asset"""

    name = "contributor"

    def contribute(self, source: SourceFile) -> PartialMetadata:
        raise NotImplementedError

    def tags_for_category(self, category: str) -> Set[str]:
        """Extra tags that depend on the final resolved category"""
        return set()


class SidecarContributor(MetadataContributor):
    """Manual metadata from <stem>.meta.json or a directory-level .meta.json keyed by stem.

    The per-image file wins over the directory file, key by key. Missing files
    are silent; malformed JSON is a warning and counts as absent.
    """

    name = "sidecar"

    def __init__(self, assets_root: Path):
        self.assets_root = Path(assets_root)
        self._directory_cache: Dict[Path, Dict[str, Any]] = {}

    def _read_json_object(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed sidecar metadata {path}: {e}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable sidecar metadata {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring sidecar metadata {path}: expected a JSON object")
            return None
        return data

    def _directory_entries(self, directory: Path) -> Dict[str, Any]:
        if directory not in self._directory_cache:
            self._directory_cache[directory] = self._read_json_object(directory / DIRECTORY_SIDECAR) or {}
        return self._directory_cache[directory]

    def load_entry(self, source: SourceFile) -> Dict[str, Any]:
        """Merged raw sidecar entry for one asset (empty when none exists)"""
        image_path = Path(source.absolute_path)
        stem = image_path.stem
        entry: Dict[str, Any] = {}

        directory_entry = self._directory_entries(image_path.parent).get(stem)
        if isinstance(directory_entry, dict):
            entry.update(directory_entry)
        elif directory_entry is not None:
            logger.warning(f"Ignoring directory metadata for {source.source_path}: expected a JSON object")

        own = self._read_json_object(image_path.with_name(stem + SIDECAR_SUFFIX))
        if own:
            entry.update(own)
        return {k: entry[k] for k in SIDECAR_KEYS if k in entry}

    def fingerprint(self, source: SourceFile) -> Optional[str]:
        """Stable hash of the sidecar entry, None when the asset has no sidecar data"""
        entry = self.load_entry(source)
        if not entry:
            return None
        encoded = json.dumps(entry, sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def contribute(self, source: SourceFile) -> PartialMetadata:
        entry = self.load_entry(source)
        keywords = entry.get("keywords")
        return PartialMetadata(
            title=_clean_text(entry.get("title")),
            category=_clean_text(entry.get("category")),
            description=_clean_text(entry.get("description")),
            license=_clean_text(entry.get("license")),
            author=_clean_text(entry.get("author")),
            keywords=sorted(clean_tags(keywords)) if keywords is not None else None,
            tags=clean_tags(entry.get("tags")),
        )


class PatternContributor(MetadataContributor):
    """Rule-based tags: filename keywords, directory segments and categories. Tags only."""

    name = "pattern"

    def __init__(
        self,
        keyword_tags: Dict[str, List[str]],
        directory_tags: Dict[str, List[str]],
        category_tags: Optional[Dict[str, List[str]]] = None,
    ):
        self.keyword_tags = keyword_tags
        self.directory_tags = directory_tags
        self.category_tags = category_tags or {}

    def contribute(self, source: SourceFile) -> PartialMetadata:
        parts = source.source_path.split("/")
        filename = parts[-1].lower()
        tags: Set[str] = set()
        for keyword, keyword_tags in self.keyword_tags.items():
            if keyword and keyword in filename:
                tags.update(keyword_tags)
        for segment in parts[:-1]:
            tags.update(self.directory_tags.get(segment.lower(), ()))
        return PartialMetadata(tags=clean_tags(list(tags)))

    def tags_for_category(self, category: str) -> Set[str]:
        return clean_tags(self.category_tags.get(category.lower(), []))


class StructuralContributor(MetadataContributor):
    """Defaults derived from the path: category, folder tags, title and license"""

    name = "structural"

    def __init__(self, default_license: str):
        self.default_license = default_license

    def contribute(self, source: SourceFile) -> PartialMetadata:
        parts = [p for p in source.source_path.split("/") if p]
        stem = Path(parts[-1]).stem
        folders = parts[:-1]
        title = TITLE_SEPARATORS.sub(" ", stem).strip() or stem
        return PartialMetadata(
            title=title,
            category=folders[0] if folders else None,
            license=self.default_license,
            tags=clean_tags(folders),
        )


class MetadataResolver:
    """Merges contributors in precedence order (highest first).

    Scalar fields take the first contributor's non-empty value; tags from
    every contributor are unioned.
    """

    def __init__(self, contributors: Sequence[MetadataContributor]):
        self.contributors = list(contributors)

    @classmethod
    def from_config(cls, config) -> "MetadataResolver":
        return cls([
            SidecarContributor(config.assets_root),
            PatternContributor(config.keyword_tags, config.directory_tags, config.category_tags),
            StructuralContributor(config.default_license),
        ])

    @property
    def sidecar(self) -> Optional[SidecarContributor]:
        for contributor in self.contributors:
            if isinstance(contributor, SidecarContributor):
                return contributor
        return None

    def metadata_fingerprint(self, source: SourceFile) -> Optional[str]:
        sidecar = self.sidecar
        return sidecar.fingerprint(source) if sidecar else None

    def resolve(self, source: SourceFile) -> ResolvedMetadata:
        partials = [c.contribute(source) for c in self.contributors]

        def first(attr: str):
            for partial in partials:
                value = getattr(partial, attr)
                if value:
                    return value
            return None

        stem = Path(source.source_path).stem
        category = first("category")
        category_is_fallback = category is None
        category = category or FALLBACK_CATEGORY

        tags: Set[str] = set()
        for partial in partials:
            tags.update(partial.tags)
        for contributor in self.contributors:
            tags.update(contributor.tags_for_category(category))

        title = first("title") or stem
        description = first("description") or f"{title} - {category} image"
        return ResolvedMetadata(
            category=category,
            category_is_fallback=category_is_fallback,
            tags={t for t in tags if t},
            title=title,
            description=description,
            license=first("license") or "",
            author=first("author"),
            keywords=first("keywords") or [],
            stem=stem,
        )
