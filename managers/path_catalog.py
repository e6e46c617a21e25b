"""Source tree scanning for candidate image assets"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from models.asset import SourceFile
from models.errors import TraversalError

logger = logging.getLogger("GalleryBuilder")

FINGERPRINT_CHUNK_SIZE = 1024 * 1024


def compute_fingerprint(path: Path) -> str:
    """sha256 of the file's bytes"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(FINGERPRINT_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class PathCatalog:
    """Walks an assets root and yields allow-listed image files.

    Symlinked directories are followed at most once per real directory, so
    link cycles terminate. The reserved thumbnails directory is never entered.
    """

    def __init__(
        self,
        root: Path,
        valid_extensions: Iterable[str],
        excluded_dirs: Iterable[Path] = (),
    ):
        self.root = Path(root)
        self.valid_extensions = frozenset(e.lower() for e in valid_extensions)
        self.excluded_dirs = [Path(d) for d in excluded_dirs]

    def _check_root(self) -> Path:
        if not self.root.exists():
            raise TraversalError(f"Assets root does not exist: {self.root}")
        if not self.root.is_dir():
            raise TraversalError(f"Assets root is not a directory: {self.root}")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise TraversalError(f"Assets root is not readable: {self.root}")
        return self.root.resolve()

    def _is_excluded(self, real_dir: Path) -> bool:
        for excluded in self.excluded_dirs:
            try:
                if real_dir == excluded.resolve() or real_dir.is_relative_to(excluded.resolve()):
                    return True
            except OSError:
                continue
        return False

    def iter_paths(self) -> Iterator[Path]:
        """Lazily yield absolute paths of matching files (unordered)"""
        root_real = self._check_root()
        visited: Set[Path] = set()
        stack: List[Tuple[Path, Path]] = [(self.root.absolute(), root_real)]

        while stack:
            current, current_real = stack.pop()
            if current_real in visited:
                logger.debug(f"Skipping already visited directory {current} (symlink cycle?)")
                continue
            visited.add(current_real)

            try:
                entries = sorted(os.scandir(current), key=lambda e: e.name)
            except OSError as e:
                if current_real == root_real:
                    raise TraversalError(f"Cannot read assets root {self.root}: {e}") from e
                logger.warning(f"Skipping unreadable directory {current}: {e}")
                continue

            subdirs = []
            for entry in entries:
                entry_path = Path(entry.path)
                try:
                    if entry.is_dir(follow_symlinks=True):
                        real = entry_path.resolve()
                        if self._is_excluded(real):
                            logger.debug(f"Excluding derived-artifact directory {entry_path}")
                            continue
                        subdirs.append((entry_path, real))
                    elif entry.is_file(follow_symlinks=True):
                        if entry_path.suffix.lower() in self.valid_extensions:
                            yield entry_path
                except OSError as e:
                    logger.warning(f"Skipping unreadable entry {entry_path}: {e}")
            # Reverse so the stack pops directories in name order
            stack.extend(reversed(subdirs))

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self.root.absolute()).as_posix()

    def describe(self, path: Path) -> Optional[SourceFile]:
        """Stat and fingerprint one file; None if it vanished or is unreadable"""
        try:
            stat = path.stat()
            fingerprint = compute_fingerprint(path)
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            return None
        return SourceFile(
            source_path=self.relative_path(path),
            absolute_path=str(path),
            extension=path.suffix.lower(),
            byte_size=stat.st_size,
            last_modified_time=stat.st_mtime,
            content_fingerprint=fingerprint,
        )

    def iter_files(self) -> Iterator[SourceFile]:
        for path in self.iter_paths():
            source = self.describe(path)
            if source is not None:
                yield source

    def scan(self) -> List[SourceFile]:
        """All current source files, sorted into deterministic processing order"""
        return sorted(self.iter_files(), key=lambda s: s.sort_key)
