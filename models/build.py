"""Build pass models: state machine, change sets and reports"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from models.asset import AssetRecord, SourceFile
from models.cache import CacheEntry


class BuildState(str, Enum):
    INIT = "init"
    SCANNING = "scanning"
    CLASSIFYING = "classifying"
    PROCESSING = "processing"
    RECONCILING = "reconciling"
    WRITING = "writing"
    COMMITTING_CACHE = "committing_cache"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FileChange:
    """One classified source file; `previous` is the cache entry if there was one"""
    source_path: str
    source: Optional[SourceFile]
    previous: Optional[CacheEntry] = None
    metadata_fingerprint: Optional[str] = None


@dataclass
class ChangeSet:
    added: List[FileChange] = field(default_factory=list)
    modified: List[FileChange] = field(default_factory=list)
    deleted: List[FileChange] = field(default_factory=list)
    unchanged: List[FileChange] = field(default_factory=list)
    repaired: List[FileChange] = field(default_factory=list)  # unchanged, but derived files are missing

    @property
    def to_process(self) -> List[FileChange]:
        """Added, modified and repaired files in deterministic processing order"""
        changes = self.added + self.modified + self.repaired
        return sorted(changes, key=lambda c: (c.source_path.casefold(), c.source_path))

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted or self.repaired)

    def counts(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
            "repaired": len(self.repaired),
        }


@dataclass
class ProcessedItem:
    """Output of one successfully processed file"""
    record: AssetRecord
    slug_base: str
    metadata_fingerprint: Optional[str]
    thumbnail_fingerprint: Optional[str]
    thumbnail_regenerated: bool = False


@dataclass
class ItemFailure:
    source_path: str
    error_type: str
    message: str


@dataclass
class BuildReport:
    """Counts reported at the end of a build (successful or not)"""
    added: int = 0
    modified: int = 0
    deleted: int = 0
    unchanged: int = 0
    repaired: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    thumbnails_generated: int = 0
    pages_written: int = 0
    total_items: int = 0
    categories: int = 0
    routes: int = 0
    duration_seconds: float = 0.0
    state: str = BuildState.INIT.value
    failed_state: Optional[str] = None  # step that was running when the build failed
    failures: List[ItemFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "failed_state": self.failed_state,
            "added": self.added,
            "modified": self.modified,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
            "repaired": self.repaired,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "thumbnails_generated": self.thumbnails_generated,
            "pages_written": self.pages_written,
            "total_items": self.total_items,
            "categories": self.categories,
            "routes": self.routes,
            "duration_seconds": round(self.duration_seconds, 3),
            "failures": [
                {"source_path": f.source_path, "error_type": f.error_type, "message": f.message}
                for f in self.failures
            ],
        }

    def summary(self) -> str:
        if self.state == BuildState.DONE.value:
            return (
                f"Build complete: {self.added} added, {self.modified} modified, "
                f"{self.deleted} deleted, {self.unchanged} unchanged "
                f"({self.total_items} items, {self.categories} categories, {self.routes} routes)"
            )
        return (
            f"Build failed in state '{self.failed_state or self.state}': {self.processed} processed, "
            f"{self.skipped} skipped, {self.failed} failed"
        )
