"""Classification of the current source tree against the build cache"""

import logging
from typing import Callable, Iterable, Optional

from models.asset import SourceFile
from models.build import ChangeSet, FileChange
from models.cache import BuildCache

logger = logging.getLogger("GalleryBuilder")


class ChangeDetector:
    """Sorts current files into added / modified / deleted / unchanged.

    The content fingerprint decides; a touched file with identical bytes stays
    unchanged. When a metadata fingerprint function is given, a changed sidecar
    also marks the file modified.
    """

    def __init__(self, metadata_fingerprint: Optional[Callable[[SourceFile], Optional[str]]] = None):
        self.metadata_fingerprint = metadata_fingerprint

    def classify(self, cache: BuildCache, current_files: Iterable[SourceFile], force: bool = False) -> ChangeSet:
        """Classify files; with force=True every known file counts as modified"""
        changes = ChangeSet()
        seen = set()

        for source in sorted(current_files, key=lambda s: s.sort_key):
            seen.add(source.source_path)
            meta_fp = self.metadata_fingerprint(source) if self.metadata_fingerprint else None
            cached = cache.files.get(source.source_path)
            change = FileChange(
                source_path=source.source_path,
                source=source,
                previous=cached,
                metadata_fingerprint=meta_fp,
            )

            if cached is None:
                changes.added.append(change)
            elif force:
                changes.modified.append(change)
            elif cached.content_fingerprint != source.content_fingerprint:
                logger.debug(f"Content changed: {source.source_path}")
                changes.modified.append(change)
            elif self.metadata_fingerprint and cached.metadata_fingerprint != meta_fp:
                logger.debug(f"Sidecar metadata changed: {source.source_path}")
                changes.modified.append(change)
            else:
                if cached.last_modified_time != source.last_modified_time:
                    logger.debug(f"mtime changed but content identical: {source.source_path}")
                changes.unchanged.append(change)

        for source_path in sorted(set(cache.files) - seen, key=lambda p: (p.casefold(), p)):
            changes.deleted.append(FileChange(
                source_path=source_path,
                source=None,
                previous=cache.files[source_path],
            ))

        return changes
