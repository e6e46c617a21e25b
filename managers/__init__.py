"""Manager classes for the gallery build pipeline"""

from managers.build_orchestrator import BuildOrchestrator, ParallelStrategy, SequentialStrategy
from managers.cache_store import BuildLock, CacheStore
from managers.change_detector import ChangeDetector
from managers.config_manager import BuildConfig
from managers.metadata_resolver import MetadataResolver
from managers.output_writers import DetailPageWriter, ManifestWriter, SitemapWriter
from managers.path_catalog import PathCatalog
from managers.slug_allocator import SlugAllocator
from managers.thumbnail_engine import ThumbnailEngine

__all__ = [
    "BuildConfig",
    "BuildLock",
    "BuildOrchestrator",
    "CacheStore",
    "ChangeDetector",
    "DetailPageWriter",
    "ManifestWriter",
    "MetadataResolver",
    "ParallelStrategy",
    "PathCatalog",
    "SequentialStrategy",
    "SitemapWriter",
    "SlugAllocator",
    "ThumbnailEngine",
]
