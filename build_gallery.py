"""Command line entry point for gallery builds"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple

from managers.build_orchestrator import BuildOrchestrator
from managers.config_manager import BuildConfig
from managers.path_catalog import PathCatalog
from models.errors import BuildFailedError, TraversalError

logger = logging.getLogger("GalleryBuilder")

Snapshot = FrozenSet[Tuple[str, int, float]]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Build the image gallery: thumbnails, detail pages, manifest and sitemap"
    )
    p.add_argument("--root", default=".", help="Project root holding the assets directory (default: cwd)")
    p.add_argument("--config", default=None, help="Config file (default: <root>/gallery.config.json)")
    p.add_argument("--full", action="store_true", help="Reprocess every image, keeping existing slugs")
    p.add_argument("--clean", action="store_true", help="Ignore the build cache and rebuild from scratch")
    p.add_argument("--workers", type=int, default=None,
                   help="Parallel worker processes (default: from config, 1 = sequential)")
    p.add_argument("--base-url", default=None, help="Site base URL used in the sitemap")
    p.add_argument("--log", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    p.add_argument("--watch", action="store_true", help="Rebuild whenever source files change")
    p.add_argument("--interval", type=float, default=2.0, help="Watch polling interval in seconds (default 2)")
    return p.parse_args(argv)


def snapshot(config: BuildConfig) -> Snapshot:
    """Cheap change signal for watch mode: path, size and mtime of images and sidecars"""
    catalog = PathCatalog(
        config.assets_root,
        set(config.valid_extensions) | {".json"},
        excluded_dirs=[config.thumbs_root],
    )
    entries = set()
    for path in catalog.iter_paths():
        try:
            stat = path.stat()
        except OSError:
            continue
        entries.add((catalog.relative_path(path), stat.st_size, stat.st_mtime))
    return frozenset(entries)


def run_build(orchestrator: BuildOrchestrator, force: bool = False, clean: bool = False) -> int:
    try:
        report = orchestrator.build(force=force, clean=clean)
    except BuildFailedError as e:
        summary = e.report.summary() if e.report else f"Build failed: {e}"
        print(summary, file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(report.summary())
    for failure in report.failures:
        print(f"  skipped {failure.source_path}: {failure.error_type}: {failure.message}", file=sys.stderr)
    return 0


def watch(orchestrator: BuildOrchestrator, interval: float):
    """Poll the source tree and rebuild once changes have settled for one interval"""
    config = orchestrator.config
    logger.info(f"Watching {config.assets_root} (every {interval}s, Ctrl+C to stop)")
    last = snapshot(config)
    while True:
        time.sleep(interval)
        try:
            current = snapshot(config)
        except TraversalError as e:
            logger.error(f"Cannot scan sources: {e}")
            continue
        if current == last:
            continue

        # Debounce: wait until the tree stops changing
        while True:
            time.sleep(interval)
            settled = snapshot(config)
            if settled == current:
                break
            current = settled

        logger.info("Source change detected, rebuilding")
        run_build(orchestrator)
        last = current


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log.upper(), logging.INFO),
                        format="%(levelname)s: %(message)s")

    root = Path(args.root).expanduser().resolve()
    try:
        config = BuildConfig(root, config_file=args.config, workers=args.workers, base_url=args.base_url)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    orchestrator = BuildOrchestrator(config)
    status = run_build(orchestrator, force=args.full, clean=args.clean)
    if not args.watch:
        return status

    try:
        watch(orchestrator, args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped watching")
    return 0


if __name__ == "__main__":
    sys.exit(main())
