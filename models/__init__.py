"""Data models for the gallery build pipeline"""

from models.asset import AssetRecord, SourceFile
from models.build import (
    BuildReport,
    BuildState,
    ChangeSet,
    FileChange,
    ItemFailure,
    ProcessedItem,
)
from models.cache import BuildCache, CacheEntry

__all__ = [
    "AssetRecord",
    "BuildCache",
    "BuildReport",
    "BuildState",
    "CacheEntry",
    "ChangeSet",
    "FileChange",
    "ItemFailure",
    "ProcessedItem",
    "SourceFile",
]
