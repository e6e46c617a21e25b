"""File-backed build cache with atomic commit and an advisory build lock"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

try:
    import fcntl
except ImportError:  # pragma: no cover - platform dependent
    fcntl = None

from models.cache import BuildCache
from models.errors import CacheCommitError, CacheLockedError

logger = logging.getLogger("GalleryBuilder")


class BuildLock:
    """Exclusive, non-blocking flock on <cache>.lock held for a whole build."""

    def __init__(self, cache_path: Path):
        self.lock_path = Path(str(cache_path) + ".lock")
        self._fd: Optional[int] = None

    def acquire(self):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        if fcntl is None:
            logger.warning("fcntl not available; cannot guard the build cache against concurrent builds")
            self._fd = fd
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise CacheLockedError(f"Another build holds {self.lock_path}") from e
        self._fd = fd

    def release(self):
        if self._fd is None:
            return
        try:
            if fcntl is not None:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class CacheStore:
    """Loads and atomically replaces the persisted BuildCache."""

    def __init__(self, cache_path: Path):
        self.cache_path = Path(cache_path)

    def load(self) -> BuildCache:
        """Read the cache; a missing or corrupt file yields an empty cache"""
        if not self.cache_path.exists():
            return BuildCache()
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable build cache {self.cache_path}: {e}")
            return BuildCache()
        if not isinstance(data, dict):
            logger.warning(f"Ignoring build cache {self.cache_path}: expected a JSON object")
            return BuildCache()
        return BuildCache.from_dict(data)

    def save(self, cache: BuildCache):
        """Write to a temp file and rename over the previous cache.

        A failure before the rename leaves the previous cache untouched.
        """
        temp_path = self.cache_path.with_name(self.cache_path.name + ".tmp")
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(cache.to_dict(), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.cache_path)
            logger.debug(f"Committed build cache {self.cache_path} ({len(cache.files)} entries)")
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise CacheCommitError(f"Failed to commit build cache {self.cache_path}: {e}") from e

    def lock(self) -> BuildLock:
        return BuildLock(self.cache_path)
