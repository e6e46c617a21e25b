"""Build configuration with precedence: explicit > config file > env > hardcoded"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger("GalleryBuilder")

CONFIG_FILENAME = "gallery.config.json"

# Tag rules carried over from the original gallery's tag mapping table
DEFAULT_KEYWORD_TAGS: Dict[str, List[str]] = {
    "button": ["ui", "interactive", "clickable"],
    "menu": ["ui", "navigation", "interface"],
    "sky": ["nature", "background", "outdoor"],
    "grass": ["nature", "ground", "green"],
    "room": ["interior", "indoor", "architecture"],
    "castle": ["building", "medieval", "architecture"],
    "cute": ["kawaii", "adorable", "lovely"],
    "red": ["red", "warm-color"],
    "blue": ["blue", "cool-color"],
    "green": ["green", "nature-color"],
    "yellow": ["yellow", "bright-color"],
    "purple": ["purple", "mystical"],
    "black": ["black", "dark"],
    "white": ["white", "light"],
}
DEFAULT_DIRECTORY_TAGS: Dict[str, List[str]] = {
    "ui": ["interface"],
    "landscape": ["background", "scenery"],
    "character": ["sprite"],
    "effects": ["vfx", "animation"],
}
DEFAULT_CATEGORY_TAGS: Dict[str, List[str]] = {
    "ui": ["user-interface", "gui"],
    "landscape": ["environment", "world"],
    "character": ["avatar"],
    "item": ["object", "prop"],
}

HARDCODED_DEFAULTS: Dict[str, Any] = {
    "assets_dir": "assets",
    "thumbs_dirname": "_thumbs",
    "items_dir": "items",
    "manifest_path": "assets.json",
    "sitemap_path": "sitemap.xml",
    "cache_path": ".build-cache.json",
    "valid_extensions": [".jpg", ".jpeg", ".png", ".webp"],
    "thumbnail_width": 480,
    "thumbnail_quality": 80,
    "default_license": "CC0-1.0",
    "related_limit": 6,
    "workers": 1,
    "write_nojekyll": True,
    "base_url": None,
}

# Environment variable -> (config key, converter)
ENV_SETTINGS = {
    "GALLERY_BASE_URL": ("base_url", str),
    "GALLERY_WORKERS": ("workers", int),
    "GALLERY_THUMBNAIL_WIDTH": ("thumbnail_width", int),
    "GALLERY_THUMBNAIL_QUALITY": ("thumbnail_quality", int),
    "GALLERY_DEFAULT_LICENSE": ("default_license", str),
}


def load_config_file(config_file: Path) -> Dict[str, Any]:
    """Load a JSON config file; missing or invalid files yield an empty dict"""
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load config file {config_file}: {e}")
        return {}
    if not isinstance(config, dict):
        logger.warning(f"Ignoring config file {config_file}: top-level value is not an object")
        return {}
    return config


def get_env_settings() -> Dict[str, Any]:
    """Collect settings from GALLERY_* environment variables"""
    settings: Dict[str, Any] = {}
    for env_name, (key, converter) in ENV_SETTINGS.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            settings[key] = converter(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")
    return settings


def default_base_url() -> str:
    """GitHub Pages URL derived from GITHUB_REPOSITORY (owner/repo)"""
    owner, _, repo = os.getenv("GITHUB_REPOSITORY", "owner/repo").partition("/")
    return f"https://{owner}.github.io/{repo or 'repo'}/"


def _normalize_tag_table(table: Any) -> Dict[str, List[str]]:
    if not isinstance(table, dict):
        return {}
    normalized: Dict[str, List[str]] = {}
    for key, tags in table.items():
        if isinstance(tags, str):
            tags = [tags]
        if not isinstance(tags, list):
            continue
        cleaned = [str(t).strip() for t in tags if str(t).strip()]
        if str(key).strip() and cleaned:
            normalized[str(key).strip().lower()] = cleaned
    return normalized


class BuildConfig:
    """Resolved settings for one project root."""

    def __init__(
        self,
        project_root: Union[str, Path],
        config_file: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ):
        """Resolve configuration.

        Args:
            project_root: Directory holding the assets root and all outputs
            config_file: Optional JSON config file (default: <project_root>/gallery.config.json)
            **overrides: Explicit settings; ``None`` values are ignored
        """
        self.project_root = Path(project_root).resolve()
        self.config_file = Path(config_file) if config_file else self.project_root / CONFIG_FILENAME

        file_settings = load_config_file(self.config_file)
        env_settings = get_env_settings()
        explicit = {k: v for k, v in overrides.items() if v is not None}

        settings = dict(HARDCODED_DEFAULTS)
        settings.update({k: v for k, v in env_settings.items() if k in HARDCODED_DEFAULTS})
        settings.update({k: v for k, v in file_settings.items() if k in HARDCODED_DEFAULTS})
        settings.update({k: v for k, v in explicit.items() if k in HARDCODED_DEFAULTS})

        unknown = sorted(set(explicit) - set(HARDCODED_DEFAULTS) - {"tag_rules"})
        if unknown:
            raise ValueError(f"Unknown build settings: {unknown}")

        self.assets_root = self._project_path(settings["assets_dir"])
        self.thumbs_dirname = str(settings["thumbs_dirname"])
        self.thumbs_root = self.assets_root / self.thumbs_dirname
        self.items_root = self._project_path(settings["items_dir"])
        self.manifest_path = self._project_path(settings["manifest_path"])
        self.sitemap_path = self._project_path(settings["sitemap_path"])
        self.cache_path = self._project_path(settings["cache_path"])
        self.valid_extensions = frozenset(
            ("." + str(ext).lower().lstrip(".")) for ext in settings["valid_extensions"]
        )
        self.thumbnail_width = int(settings["thumbnail_width"])
        self.thumbnail_quality = int(settings["thumbnail_quality"])
        self.default_license = str(settings["default_license"])
        self.related_limit = int(settings["related_limit"])
        self.workers = max(1, int(settings["workers"]))
        self.write_nojekyll = bool(settings["write_nojekyll"])

        base_url = settings["base_url"] or default_base_url()
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"

        if self.thumbnail_width <= 0:
            raise ValueError(f"thumbnail_width must be positive, got {self.thumbnail_width}")
        if not 1 <= self.thumbnail_quality <= 100:
            raise ValueError(f"thumbnail_quality must be within 1..100, got {self.thumbnail_quality}")

        # Tag tables: explicit > config file > hardcoded, per table
        tag_rules = dict(file_settings.get("tag_rules") or {})
        tag_rules.update(explicit.get("tag_rules") or {})
        self.keyword_tags = _normalize_tag_table(tag_rules.get("keyword_tags", DEFAULT_KEYWORD_TAGS))
        self.directory_tags = _normalize_tag_table(tag_rules.get("directory_tags", DEFAULT_DIRECTORY_TAGS))
        self.category_tags = _normalize_tag_table(tag_rules.get("category_tags", DEFAULT_CATEGORY_TAGS))

    def _project_path(self, value: Union[str, Path]) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.project_root / path

    def url_path(self, absolute: Path) -> str:
        """POSIX path of an output file relative to the project root (its URL path)"""
        try:
            return absolute.resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            # Outside the project root: fall back to the absolute path
            return absolute.resolve().as_posix()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "project_root": str(self.project_root),
            "config_file": str(self.config_file),
            "assets_root": str(self.assets_root),
            "thumbs_root": str(self.thumbs_root),
            "items_root": str(self.items_root),
            "manifest_path": str(self.manifest_path),
            "sitemap_path": str(self.sitemap_path),
            "cache_path": str(self.cache_path),
            "valid_extensions": sorted(self.valid_extensions),
            "thumbnail_width": self.thumbnail_width,
            "thumbnail_quality": self.thumbnail_quality,
            "default_license": self.default_license,
            "related_limit": self.related_limit,
            "workers": self.workers,
            "write_nojekyll": self.write_nojekyll,
            "base_url": self.base_url,
            "tag_rules": {
                "keyword_tags": self.keyword_tags,
                "directory_tags": self.directory_tags,
                "category_tags": self.category_tags,
            },
        }
