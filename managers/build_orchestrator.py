"""One build pass: scan, classify, process, reconcile, write, commit"""

import copy
import logging
import math
import os
import time
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from managers.cache_store import CacheStore
from managers.change_detector import ChangeDetector
from managers.config_manager import BuildConfig
from managers.metadata_resolver import MetadataResolver
from managers.output_writers import (
    DetailPageWriter,
    ManifestWriter,
    SitemapWriter,
    collect_categories,
    utc_timestamp,
    write_nojekyll,
)
from managers.path_catalog import PathCatalog
from managers.slug_allocator import SlugAllocator, slug_base_for
from managers.thumbnail_engine import ThumbnailEngine
from models.asset import AssetRecord
from models.build import BuildReport, BuildState, ChangeSet, FileChange, ItemFailure, ProcessedItem
from models.cache import BuildCache, CacheEntry
from models.errors import (
    BuildFailedError,
    GalleryBuildError,
    ItemProcessingError,
    OutputDirectoryError,
    WorkerFailedError,
)

logger = logging.getLogger("GalleryBuilder")


@dataclass
class ChunkTask:
    """Work handed to one worker: a contiguous slice plus its own allocator copy"""
    worker_index: int
    changes: List[FileChange]
    allocator: SlugAllocator
    config: BuildConfig
    regenerate_thumbnails: bool = False


@dataclass
class ChunkResult:
    worker_index: int
    items: List[ProcessedItem] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)


def process_change(
    change: FileChange,
    allocator: SlugAllocator,
    resolver: MetadataResolver,
    engine: ThumbnailEngine,
    config: BuildConfig,
    regenerate_thumbnails: bool = False,
) -> ProcessedItem:
    """Resolve metadata, render the thumbnail and assign a slug for one file.

    Known source paths keep the slug they already have. The slug is only
    allocated once the image has decoded, so a broken file never consumes one.

    Raises:
        ItemProcessingError: the file cannot be published
    """
    source = change.source
    previous = change.previous
    metadata = resolver.resolve(source)

    previous_thumbnail = None
    if previous is not None and not regenerate_thumbnails:
        previous_thumbnail = previous.thumbnail_fingerprint
    thumbnail = engine.ensure_thumbnail(source, previous_thumbnail)

    if previous is not None:
        slug = previous.record.slug
        slug_base = previous.slug_base or slug
        allocator.reserve(slug)
    else:
        slug_base = slug_base_for(metadata.category, metadata.stem, metadata.category_is_fallback)
        slug = allocator.allocate(slug_base)

    assets_url = config.url_path(config.assets_root)
    record = AssetRecord(
        source_path=source.source_path,
        slug=slug,
        category=metadata.category,
        tags=sorted(metadata.tags),
        title=metadata.title,
        description=metadata.description,
        license=metadata.license,
        width=thumbnail.width,
        height=thumbnail.height,
        byte_size=source.byte_size,
        content_fingerprint=source.content_fingerprint,
        last_modified_time=source.last_modified_time,
        original_path=f"{assets_url}/{source.source_path}",
        thumbnail_path=thumbnail.thumbnail_path,
        author=metadata.author,
        keywords=list(metadata.keywords),
    )
    return ProcessedItem(
        record=record,
        slug_base=slug_base,
        metadata_fingerprint=change.metadata_fingerprint,
        thumbnail_fingerprint=thumbnail.fingerprint,
        thumbnail_regenerated=thumbnail.regenerated,
    )


def process_chunk(task: ChunkTask) -> ChunkResult:
    """Worker entry point; must stay a module-level function so it pickles"""
    resolver = MetadataResolver.from_config(task.config)
    engine = ThumbnailEngine(task.config)
    result = ChunkResult(worker_index=task.worker_index)

    for change in task.changes:
        try:
            item = process_change(
                change, task.allocator, resolver, engine, task.config, task.regenerate_thumbnails
            )
        except ItemProcessingError as e:
            logger.warning(f"Skipping {change.source_path}: {e}")
            result.failures.append(ItemFailure(change.source_path, type(e).__name__, str(e)))
            continue
        result.items.append(item)

    logger.debug(
        f"Worker {task.worker_index}: {len(result.items)} processed, {len(result.failures)} failed"
    )
    return result


def partition(changes: Sequence[FileChange], workers: int) -> List[List[FileChange]]:
    """Contiguous chunks of ceil(n / workers) files each"""
    if not changes:
        return []
    size = math.ceil(len(changes) / max(1, workers))
    return [list(changes[i:i + size]) for i in range(0, len(changes), size)]


class SequentialStrategy:
    """Everything in-process as a single chunk"""

    name = "sequential"

    def run(
        self,
        changes: Sequence[FileChange],
        allocator: SlugAllocator,
        config: BuildConfig,
        regenerate_thumbnails: bool = False,
    ) -> List[ChunkResult]:
        if not changes:
            return []
        return [process_chunk(ChunkTask(0, list(changes), allocator, config, regenerate_thumbnails))]


class ParallelStrategy:
    """Fan chunks out to a worker pool; any worker dying fails the whole build.

    Workers share nothing: each receives its own copy of the seeded allocator
    and returns its results as a message. The executor factory is swappable so
    a thread pool can stand in where processes are unavailable.
    """

    name = "parallel"

    def __init__(self, workers: int, executor_factory=ProcessPoolExecutor):
        self.workers = max(1, workers)
        self.executor_factory = executor_factory

    def run(
        self,
        changes: Sequence[FileChange],
        allocator: SlugAllocator,
        config: BuildConfig,
        regenerate_thumbnails: bool = False,
    ) -> List[ChunkResult]:
        chunks = partition(changes, self.workers)
        if not chunks:
            return []
        tasks = [
            ChunkTask(index, chunk, copy.deepcopy(allocator), config, regenerate_thumbnails)
            for index, chunk in enumerate(chunks)
        ]
        logger.info(f"Processing {len(changes)} files across {len(tasks)} workers")

        results: List[ChunkResult] = []
        with self.executor_factory(max_workers=len(tasks)) as executor:
            futures = [executor.submit(process_chunk, task) for task in tasks]
            for task, future in zip(tasks, futures):
                try:
                    results.append(future.result())
                except BrokenProcessPool as e:
                    for pending in futures:
                        pending.cancel()
                    raise WorkerFailedError(task.worker_index, f"worker process exited abnormally: {e}") from e
                except Exception as e:
                    for pending in futures:
                        pending.cancel()
                    raise WorkerFailedError(task.worker_index, f"{type(e).__name__}: {e}") from e
        return results


def strategy_for(workers: int):
    return ParallelStrategy(workers) if workers > 1 else SequentialStrategy()


def _record_order(record: AssetRecord):
    return (record.source_path.casefold(), record.source_path)


class BuildOrchestrator:
    """Drives one build invocation through the build state machine.

    Init -> Scanning -> Classifying -> Processing -> Reconciling -> Writing
    -> CommittingCache -> Done, with Failed reachable from every step. The
    cache is committed last, so a build that fails anywhere leaves the
    previous cache as the record of what is done.
    """

    def __init__(self, config: BuildConfig, strategy=None):
        self.config = config
        self.strategy = strategy or strategy_for(config.workers)
        self.cache_store = CacheStore(config.cache_path)
        self.engine = ThumbnailEngine(config)
        self.manifest_writer = ManifestWriter(config.manifest_path)
        self.sitemap_writer = SitemapWriter(config.sitemap_path, config.base_url, config.items_root.name)
        self.page_writer = DetailPageWriter(config.items_root, config.base_url, config.related_limit)
        self.state = BuildState.INIT
        self.last_report: Optional[BuildReport] = None

    @classmethod
    def for_project(cls, project_root, workers: Optional[int] = None, **overrides: Any) -> "BuildOrchestrator":
        return cls(BuildConfig(project_root, workers=workers, **overrides))

    def _enter(self, state: BuildState, report: BuildReport):
        self.state = state
        report.state = state.value
        logger.info(f"Build state: {state.value}")

    def build(self, force: bool = False, clean: bool = False) -> BuildReport:
        """Run one build pass.

        Args:
            force: Reprocess every file (slugs of known files are kept)
            clean: Ignore the existing cache entirely

        Raises:
            BuildFailedError: fatal failure; the previous cache is untouched
        """
        started = time.monotonic()
        report = BuildReport()
        self.last_report = report
        lock = self.cache_store.lock()

        try:
            self._enter(BuildState.INIT, report)
            self._prepare_outputs()
            lock.acquire()
            try:
                self._run(report, force=force, clean=clean)
            finally:
                lock.release()
        except Exception as e:
            failed_in = self.state
            report.failed_state = failed_in.value
            report.duration_seconds = time.monotonic() - started
            self._enter(BuildState.FAILED, report)
            logger.error(f"Build failed during {failed_in.value}: {e}")
            logger.error(report.summary())
            if isinstance(e, BuildFailedError):
                raise
            raise BuildFailedError(str(e), report=report, state=failed_in.value) from e

        report.duration_seconds = time.monotonic() - started
        logger.info(report.summary())
        return report

    def _prepare_outputs(self):
        config = self.config
        directories = {
            config.items_root,
            config.manifest_path.parent,
            config.sitemap_path.parent,
            config.cache_path.parent,
        }
        for directory in sorted(directories):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise OutputDirectoryError(f"Cannot create output directory {directory}: {e}") from e
            if not os.access(directory, os.W_OK | os.X_OK):
                raise OutputDirectoryError(f"Output directory is not writable: {directory}")
        if config.write_nojekyll and write_nojekyll(config.project_root):
            logger.info("Created .nojekyll marker")

    def _run(self, report: BuildReport, force: bool, clean: bool):
        config = self.config

        self._enter(BuildState.SCANNING, report)
        catalog = PathCatalog(config.assets_root, config.valid_extensions, excluded_dirs=[config.thumbs_root])
        current = catalog.scan()
        logger.info(f"Found {len(current)} source files under {config.assets_root}")

        self._enter(BuildState.CLASSIFYING, report)
        cache = BuildCache() if clean else self.cache_store.load()
        resolver = MetadataResolver.from_config(config)
        changes = ChangeDetector(resolver.metadata_fingerprint).classify(cache, current, force=force)
        self._find_repairs(changes)
        counts = changes.counts()
        report.added = counts["added"]
        report.modified = counts["modified"]
        report.deleted = counts["deleted"]
        report.unchanged = counts["unchanged"]
        report.repaired = counts["repaired"]
        logger.info(
            f"Changes: {report.added} added, {report.modified} modified, {report.deleted} deleted, "
            f"{report.unchanged} unchanged, {report.repaired} to repair"
        )

        self._enter(BuildState.PROCESSING, report)
        retained = changes.unchanged + changes.modified + changes.repaired
        allocator = SlugAllocator.seeded(
            (c.previous.slug_base, c.previous.record.slug) for c in retained
        )
        results = self.strategy.run(changes.to_process, allocator, config, regenerate_thumbnails=force)
        processed = self._merge_results(results, changes, report)

        self._enter(BuildState.RECONCILING, report)
        new_cache = self._reconcile(changes, processed, report)
        records = sorted((entry.record for entry in new_cache.files.values()), key=_record_order)

        self._enter(BuildState.WRITING, report)
        self._check_unique_slugs(records)
        updated_at = utc_timestamp()
        self.manifest_writer.write(records, updated_at)
        routes = self.sitemap_writer.write(records, lastmod=updated_at[:10])
        report.pages_written = self.page_writer.write_all(records)
        report.total_items = len(records)
        report.categories = len(collect_categories(records))
        report.routes = len(routes)

        self._enter(BuildState.COMMITTING_CACHE, report)
        new_cache.last_build_timestamp = updated_at
        self.cache_store.save(new_cache)

        self._enter(BuildState.DONE, report)

    def _find_repairs(self, changes: ChangeSet):
        """Move unchanged files whose thumbnail vanished into the repair list"""
        still_unchanged = []
        for change in changes.unchanged:
            if self.engine.exists(change.source_path):
                still_unchanged.append(change)
            else:
                logger.info(f"Thumbnail missing for unchanged {change.source_path}; regenerating")
                # Drop the remembered fingerprint so the thumbnail is rendered again
                change.previous = copy.copy(change.previous)
                change.previous.thumbnail_fingerprint = None
                changes.repaired.append(change)
        changes.unchanged = still_unchanged

    def _merge_results(
        self,
        results: Iterable[ChunkResult],
        changes: ChangeSet,
        report: BuildReport,
    ) -> List[ProcessedItem]:
        """Merge worker outputs and assign final slugs to new files.

        Worker index then chunk order is the global processing order, so
        allocating every new file's slug again here from one allocator seeded
        with the retained slugs gives the same result for any worker count.
        """
        ordered = sorted(results, key=lambda r: r.worker_index)
        retained = changes.unchanged + changes.modified + changes.repaired
        global_slugs = SlugAllocator.seeded((c.previous.slug_base, c.previous.record.slug) for c in retained)
        new_paths = {c.source_path for c in changes.to_process if c.previous is None}

        merged: List[ProcessedItem] = []
        for result in ordered:
            report.failures.extend(result.failures)
            for item in result.items:
                if item.record.source_path in new_paths:
                    slug = global_slugs.allocate(item.slug_base)
                    if slug != item.record.slug:
                        logger.debug(
                            f"{item.record.source_path} (worker {result.worker_index}): "
                            f"slug '{item.record.slug}' becomes '{slug}'"
                        )
                        item.record.slug = slug
                merged.append(item)

        report.processed = len(merged)
        report.failed = len(report.failures)
        report.thumbnails_generated = sum(1 for item in merged if item.thumbnail_regenerated)
        return merged

    def _reconcile(self, changes: ChangeSet, processed: List[ProcessedItem], report: BuildReport) -> BuildCache:
        new_cache = BuildCache()
        for change in changes.unchanged:
            new_cache.files[change.source_path] = change.previous

        by_path: Dict[str, ProcessedItem] = {item.record.source_path: item for item in processed}
        for change in changes.to_process:
            item = by_path.get(change.source_path)
            if item is not None:
                new_cache.files[change.source_path] = CacheEntry(
                    content_fingerprint=item.record.content_fingerprint,
                    last_modified_time=item.record.last_modified_time,
                    record=item.record,
                    metadata_fingerprint=item.metadata_fingerprint,
                    thumbnail_fingerprint=item.thumbnail_fingerprint,
                    slug_base=item.slug_base,
                )
            elif change.previous is not None:
                logger.warning(f"Keeping previous record for {change.source_path} after a processing failure")
                new_cache.files[change.source_path] = change.previous
            else:
                report.skipped += 1

        for change in changes.deleted:
            slug = change.previous.record.slug
            logger.info(f"Removing deleted asset {change.source_path} ({slug})")
            self.page_writer.remove_page(slug)
            self.engine.remove_thumbnail(change.source_path)

        return new_cache

    def _check_unique_slugs(self, records: Sequence[AssetRecord]):
        seen: Dict[str, str] = {}
        for record in records:
            if record.slug in seen:
                raise GalleryBuildError(
                    f"Duplicate slug '{record.slug}' for {seen[record.slug]} and {record.source_path}"
                )
            seen[record.slug] = record.source_path
