"""Error taxonomy for the gallery build pipeline"""

from typing import Optional


class GalleryBuildError(Exception):
    """Base class for all pipeline errors"""


class TraversalError(GalleryBuildError):
    """Source root is missing, not a directory, or not readable"""


class OutputDirectoryError(GalleryBuildError):
    """An output directory cannot be created or written"""


class CacheCommitError(GalleryBuildError):
    """The build cache could not be written and renamed into place"""


class CacheLockedError(GalleryBuildError):
    """Another build process holds the cache lock"""


class WorkerFailedError(GalleryBuildError):
    """A parallel worker exited abnormally; its output must not be merged"""

    def __init__(self, worker_index: int, message: str):
        super().__init__(f"Worker {worker_index} failed: {message}")
        self.worker_index = worker_index


class ItemProcessingError(GalleryBuildError):
    """Recoverable failure scoped to a single asset"""

    def __init__(self, source_path: str, message: str):
        super().__init__(f"{source_path}: {message}")
        self.source_path = source_path


class DecodeError(ItemProcessingError):
    """File is unreadable or not a valid image"""


class UnsupportedFormatError(ItemProcessingError):
    """Image decodes but its format is not one we publish"""


class BuildFailedError(GalleryBuildError):
    """Fatal build failure, raised after the build entered the Failed state"""

    def __init__(self, message: str, report=None, state: Optional[str] = None):
        super().__init__(message)
        self.report = report
        self.state = state
