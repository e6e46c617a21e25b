"""End-to-end tests for the build pass

Run with pytest from project root:
    pytest tests/test_build_orchestrator.py -v
"""

import json
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from unittest.mock import patch

import pytest

from managers.build_orchestrator import (
    BuildOrchestrator,
    ParallelStrategy,
    SequentialStrategy,
    partition,
    strategy_for,
)
from managers.cache_store import BuildLock, CacheStore, fcntl
from managers.config_manager import BuildConfig
from models.build import BuildState
from models.errors import (
    BuildFailedError,
    CacheCommitError,
    CacheLockedError,
    OutputDirectoryError,
    TraversalError,
    WorkerFailedError,
)


def manifest_items(project):
    return json.loads((project / "assets.json").read_text())["items"]


def slugs_by_path(project):
    return {i["sourcePath"]: i["slug"] for i in manifest_items(project)}


@pytest.fixture
def build(make_config):
    """Run one build with a fresh orchestrator: build(force=..., clean=..., **config overrides)"""

    def _build(force=False, clean=False, strategy=None, **overrides):
        orchestrator = BuildOrchestrator(make_config(**overrides), strategy=strategy)
        return orchestrator.build(force=force, clean=clean)

    return _build


class TestEndToEnd:
    """Tests for a complete build from an empty project"""

    def test_single_landscape_asset(self, project, make_image, build):
        make_image(project / "assets" / "landscape" / "cuteroom1.jpg", size=(960, 640))

        report = build()

        assert report.state == BuildState.DONE.value
        assert report.added == 1
        [item] = manifest_items(project)
        assert item["category"] == "landscape"
        assert "landscape" in item["tags"]
        assert item["slug"] == "landscape-cuteroom1"
        assert item["title"] == "cuteroom1"
        assert item["thumbnailPath"]
        assert (project / item["thumbnailPath"]).is_file()
        assert item["originalPath"] == "assets/landscape/cuteroom1.jpg"
        assert (item["width"], item["height"]) == (960, 640)

        assert (project / "items" / "landscape-cuteroom1" / "index.html").is_file()
        sitemap = (project / "sitemap.xml").read_text()
        assert "https://example.org/gallery/items/landscape-cuteroom1/" in sitemap
        assert "https://example.org/gallery/assets/landscape/cuteroom1.jpg" in sitemap
        assert (project / ".nojekyll").exists()
        assert (project / ".build-cache.json").exists()

    def test_report_summary(self, project, make_image, build):
        make_image(project / "assets" / "ui" / "a.png")
        make_image(project / "assets" / "ui" / "b.png")

        report = build()

        assert report.summary().startswith("Build complete: 2 added, 0 modified, 0 deleted, 0 unchanged")
        assert report.total_items == 2
        assert report.categories == 1
        assert report.routes > 0

    def test_tag_union_through_build(self, project, make_image, build, minimal_tag_rules):
        image = make_image(project / "assets" / "landscape" / "room" / "cute-sofa.jpg")
        (image.parent / "cute-sofa.meta.json").write_text(json.dumps({"tags": ["warm"]}))

        build(tag_rules=minimal_tag_rules)

        [item] = manifest_items(project)
        assert set(item["tags"]) == {"landscape", "room", "warm", "kawaii"}


class TestIdempotence:
    """Tests for repeated builds on an unchanged tree"""

    def test_second_build_is_identical(self, project, make_image, build):
        for name in ("ui/button.png", "landscape/sky.jpg", "Room!!.jpg", "room.jpg"):
            make_image(project / "assets" / name)

        build()
        first = manifest_items(project)
        report = build()
        second = manifest_items(project)

        assert first == second
        assert report.unchanged == 4
        assert report.added == report.modified == report.deleted == 0
        assert report.thumbnails_generated == 0
        assert report.pages_written == 0

    def test_full_rebuilds_assign_same_slugs(self, project, make_image, build):
        for name in ("Room!!.jpg", "room.jpg", "ui/room.png", "ui/Room.jpg"):
            make_image(project / "assets" / name)

        build(clean=True)
        first = slugs_by_path(project)
        first_items = manifest_items(project)
        build(clean=True)

        assert slugs_by_path(project) == first
        assert manifest_items(project) == first_items

    def test_touch_does_not_reprocess(self, project, make_image, build):
        image = make_image(project / "assets" / "ui" / "a.png")
        build()
        stat = image.stat()
        os.utime(image, (stat.st_atime + 50, stat.st_mtime + 50))

        report = build()

        assert report.unchanged == 1
        assert report.modified == 0
        assert report.thumbnails_generated == 0


class TestSlugs:
    """Tests for slug uniqueness and stability"""

    def test_collision_resolution(self, project, make_image, build):
        make_image(project / "assets" / "Room!!.jpg")
        make_image(project / "assets" / "room.jpg")

        build()

        assert slugs_by_path(project) == {"Room!!.jpg": "room", "room.jpg": "room-1"}

    def test_new_file_never_takes_existing_slug(self, project, make_image, build):
        make_image(project / "assets" / "room.jpg")
        build()
        make_image(project / "assets" / "Room!!.jpg")

        report = build()

        # Room!! sorts first but room.jpg already owns "room"
        assert slugs_by_path(project) == {"Room!!.jpg": "room-1", "room.jpg": "room"}
        assert report.added == 1
        assert report.unchanged == 1

    def test_modified_file_keeps_slug(self, project, make_image, build):
        image = make_image(project / "assets" / "ui" / "a.png", color=(1, 2, 3))
        build()
        make_image(image, color=(9, 9, 9))

        report = build()

        assert report.modified == 1
        assert slugs_by_path(project) == {"ui/a.png": "ui-a"}

    def test_slugs_unique_across_many_collisions(self, project, make_image, build):
        for name in ("a!.png", "A.png", "a .png", "a_.png", "x/a.png", "x-a.png"):
            make_image(project / "assets" / name)

        build()

        slugs = [i["slug"] for i in manifest_items(project)]
        assert len(slugs) == len(set(slugs)) == 6


class TestIncremental:
    """Tests for change handling between builds"""

    def test_deletion_cleanup(self, project, make_image, build):
        keep = make_image(project / "assets" / "ui" / "keep.png")
        gone = make_image(project / "assets" / "ui" / "gone.png")
        build()
        thumbnail = project / "assets" / "_thumbs" / "ui" / "gone-png-480.png"
        assert thumbnail.exists()
        gone.unlink()

        report = build()

        assert report.deleted == 1
        assert not (project / "items" / "ui-gone").exists()
        assert (project / "items" / "ui-keep").exists()
        assert not thumbnail.exists()
        assert [i["slug"] for i in manifest_items(project)] == ["ui-keep"]
        sitemap = (project / "sitemap.xml").read_text()
        assert "ui-gone" not in sitemap
        assert "ui/gone.png" not in sitemap
        assert keep.exists()

    def test_deletion_survives_cleanup_failure(self, project, make_image, build):
        gone = make_image(project / "assets" / "gone.png")
        build()
        gone.unlink()

        with patch("managers.output_writers.shutil.rmtree", side_effect=PermissionError("denied")):
            report = build()

        assert report.state == BuildState.DONE.value
        assert manifest_items(project) == []

    def test_sidecar_edit_reprocesses(self, project, make_image, build):
        image = make_image(project / "assets" / "ui" / "a.png")
        build()
        (image.parent / "a.meta.json").write_text(json.dumps({"title": "Renamed"}))

        report = build()

        assert report.modified == 1
        assert report.thumbnails_generated == 0
        assert manifest_items(project)[0]["title"] == "Renamed"
        assert manifest_items(project)[0]["slug"] == "ui-a"

    def test_missing_thumbnail_is_repaired(self, project, make_image, build):
        make_image(project / "assets" / "ui" / "a.png")
        build()
        thumbnail = project / manifest_items(project)[0]["thumbnailPath"]
        thumbnail.unlink()

        report = build()

        assert report.repaired == 1
        assert report.unchanged == 0
        assert report.thumbnails_generated == 1
        assert thumbnail.exists()

    def test_force_reprocesses_but_keeps_slugs(self, project, make_image, build):
        make_image(project / "assets" / "room.jpg")
        build()
        make_image(project / "assets" / "Room!!.jpg")
        build()
        before = slugs_by_path(project)

        report = build(force=True)

        assert report.modified == 2
        assert report.thumbnails_generated == 2
        assert slugs_by_path(project) == before

    def test_other_pages_untouched_on_addition(self, project, make_image, build):
        make_image(project / "assets" / "landscape" / "a.jpg")
        build()
        page = project / "items" / "landscape-a" / "index.html"
        mtime = page.stat().st_mtime_ns
        make_image(project / "assets" / "ui" / "b.png")

        report = build()

        assert report.added == 1
        assert page.stat().st_mtime_ns == mtime


class TestPerItemFailures:
    """Tests for corrupt and unsupported inputs"""

    def test_corrupt_image_is_skipped(self, project, make_image, build):
        make_image(project / "assets" / "ui" / "good.png")
        (project / "assets" / "ui" / "bad.png").write_bytes(b"not an image")

        report = build()

        assert report.state == BuildState.DONE.value
        assert report.skipped == 1
        assert report.failed == 1
        assert report.failures[0].source_path == "ui/bad.png"
        assert report.failures[0].error_type == "DecodeError"
        assert [i["sourcePath"] for i in manifest_items(project)] == ["ui/good.png"]
        cache = CacheStore(project / ".build-cache.json").load()
        assert set(cache.files) == {"ui/good.png"}

    def test_skipped_file_does_not_consume_slug(self, project, make_image, build):
        (project / "assets" / "Room!!.jpg").write_bytes(b"broken")
        make_image(project / "assets" / "room.jpg")

        build()

        assert slugs_by_path(project) == {"room.jpg": "room"}

    def test_corrupted_modified_file_keeps_previous_record(self, project, make_image, build):
        image = make_image(project / "assets" / "ui" / "a.png")
        build()
        previous = manifest_items(project)[0]
        image.write_bytes(b"garbage now")

        report = build()

        assert report.failed == 1
        assert report.skipped == 0
        assert manifest_items(project) == [previous]


class TestFatalFailures:
    """Tests for failures that must abort the build"""

    def test_missing_assets_root(self, tmp_path):
        orchestrator = BuildOrchestrator(BuildConfig(tmp_path, base_url="https://example.org/"))

        with pytest.raises(BuildFailedError) as excinfo:
            orchestrator.build()

        assert isinstance(excinfo.value.__cause__, TraversalError)
        assert excinfo.value.state == BuildState.SCANNING.value
        assert excinfo.value.report.state == BuildState.FAILED.value
        assert not (tmp_path / ".build-cache.json").exists()

    def test_unwritable_output(self, project, make_image, build):
        make_image(project / "assets" / "a.png")

        with patch("managers.build_orchestrator.os.access", return_value=False):
            with pytest.raises(BuildFailedError) as excinfo:
                build()

        assert isinstance(excinfo.value.__cause__, OutputDirectoryError)
        assert excinfo.value.state == BuildState.INIT.value
        assert not (project / "assets.json").exists()

    def test_crash_before_cache_commit_keeps_previous_cache(self, project, make_image, build):
        make_image(project / "assets" / "a.png")
        build()
        cache_file = project / ".build-cache.json"
        before = cache_file.read_bytes()
        make_image(project / "assets" / "b.png")

        with patch.object(CacheStore, "save", side_effect=CacheCommitError("disk full")):
            with pytest.raises(BuildFailedError) as excinfo:
                build()

        assert excinfo.value.state == BuildState.COMMITTING_CACHE.value
        assert "processed" in excinfo.value.report.summary()
        assert cache_file.read_bytes() == before

        report = build()
        assert report.added == 1
        assert report.unchanged == 1

    @pytest.mark.skipif(fcntl is None, reason="flock not available")
    def test_held_lock_is_fatal(self, project, make_image, build):
        make_image(project / "assets" / "a.png")

        with BuildLock(project / ".build-cache.json"):
            with pytest.raises(BuildFailedError) as excinfo:
                build()

        assert isinstance(excinfo.value.__cause__, CacheLockedError)

    def test_corrupt_cache_triggers_full_rebuild(self, project, make_image, build):
        make_image(project / "assets" / "a.png")
        (project / ".build-cache.json").write_text("{ truncated")

        report = build()

        assert report.added == 1
        assert json.loads((project / ".build-cache.json").read_text())["files"]


class TestParallel:
    """Tests for the sharded execution strategy"""

    COLLIDING = ("Room!!.jpg", "room!.jpg", "room.jpg", "room~.jpg", "ui/a.png", "ui/b.png")

    def test_partition_is_contiguous(self):
        assert partition(list(range(5)), 2) == [[0, 1, 2], [3, 4]]
        assert partition(list(range(2)), 4) == [[0], [1]]
        assert partition([], 3) == []

    def test_strategy_for_workers(self):
        assert isinstance(strategy_for(1), SequentialStrategy)
        assert isinstance(strategy_for(4), ParallelStrategy)

    @pytest.mark.parametrize("executor_factory", [ThreadPoolExecutor, ProcessPoolExecutor])
    def test_cross_worker_collisions_match_sequential(self, tmp_path_factory, make_image,
                                                      executor_factory):
        roots = {}
        for mode in ("sequential", "parallel"):
            root = tmp_path_factory.mktemp(mode)
            for name in self.COLLIDING:
                make_image(root / "assets" / name)
            strategy = ParallelStrategy(2, executor_factory) if mode == "parallel" else SequentialStrategy()
            config = BuildConfig(root, base_url="https://example.org/")
            BuildOrchestrator(config, strategy=strategy).build()
            roots[mode] = root

        parallel = slugs_by_path(roots["parallel"])
        assert parallel == slugs_by_path(roots["sequential"])
        assert sorted(parallel[name] for name in self.COLLIDING[:4]) == ["room", "room-1", "room-2", "room-3"]
        assert len(set(parallel.values())) == len(parallel)

    def test_suffixes_follow_global_order_across_workers(self, tmp_path_factory, make_image):
        names = ("aaa.jpg", "Room!!.jpg", "room!.jpg", "room.jpg")
        roots = {}
        for mode in ("sequential", "parallel"):
            root = tmp_path_factory.mktemp(mode)
            for name in names:
                make_image(root / "assets" / name)
            strategy = ParallelStrategy(2, ThreadPoolExecutor) if mode == "parallel" else SequentialStrategy()
            BuildOrchestrator(BuildConfig(root, base_url="https://example.org/"), strategy=strategy).build()
            roots[mode] = root

        expected = {"aaa.jpg": "aaa", "Room!!.jpg": "room", "room!.jpg": "room-1", "room.jpg": "room-2"}
        assert slugs_by_path(roots["sequential"]) == expected
        assert slugs_by_path(roots["parallel"]) == expected
        assert (roots["parallel"] / "items" / "room-1" / "index.html").is_file()

    def test_parallel_incremental_keeps_cached_slugs(self, project, make_image, build):
        make_image(project / "assets" / "room.jpg")
        build()
        for name in ("Room!!.jpg", "room!.jpg", "room~.jpg"):
            make_image(project / "assets" / name)

        build(strategy=ParallelStrategy(3, ThreadPoolExecutor))

        slugs = slugs_by_path(project)
        assert slugs["room.jpg"] == "room"
        assert len(set(slugs.values())) == 4

    def test_worker_crash_is_fatal(self, project, make_image, build):
        for name in ("a.png", "b.png", "c.png", "d.png"):
            make_image(project / "assets" / name)

        with patch("managers.build_orchestrator.process_change", side_effect=RuntimeError("boom")):
            with pytest.raises(BuildFailedError) as excinfo:
                build(strategy=ParallelStrategy(2, ThreadPoolExecutor))

        assert isinstance(excinfo.value.__cause__, WorkerFailedError)
        assert excinfo.value.state == BuildState.PROCESSING.value
        assert not (project / ".build-cache.json").exists()
        assert not (project / "assets.json").exists()

    def test_per_item_failure_in_worker_is_not_fatal(self, project, make_image, build):
        make_image(project / "assets" / "a.png")
        (project / "assets" / "b.png").write_bytes(b"nope")
        make_image(project / "assets" / "c.png")

        report = build(strategy=ParallelStrategy(3, ThreadPoolExecutor))

        assert report.state == BuildState.DONE.value
        assert report.processed == 2
        assert report.skipped == 1
