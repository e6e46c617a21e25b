"""Shared fixtures for the gallery build tests"""

from pathlib import Path

import pytest
from PIL import Image

from managers.config_manager import BuildConfig


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's GALLERY_* / GITHUB_* settings out of the tests"""
    for name in (
        "GALLERY_BASE_URL",
        "GALLERY_WORKERS",
        "GALLERY_THUMBNAIL_WIDTH",
        "GALLERY_THUMBNAIL_QUALITY",
        "GALLERY_DEFAULT_LICENSE",
        "GITHUB_REPOSITORY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path):
    """Empty project root with an assets directory"""
    (tmp_path / "assets").mkdir()
    return tmp_path


@pytest.fixture
def make_image():
    """Factory writing a real image file: make_image(path, size=(w, h), mode="RGB", color=...)"""

    def _make(path: Path, size=(64, 48), mode="RGB", color=None, format=None) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if color is None:
            color = (200, 120, 40, 128) if mode == "RGBA" else (200, 120, 40)
        Image.new(mode, size, color).save(path, format=format)
        return path

    return _make


@pytest.fixture
def make_config(project):
    """Factory for a BuildConfig rooted at the project fixture"""

    def _make(**overrides) -> BuildConfig:
        overrides.setdefault("base_url", "https://example.org/gallery/")
        return BuildConfig(project, **overrides)

    return _make


@pytest.fixture
def minimal_tag_rules():
    """Pattern rules that only map "cute", so tag sets stay easy to predict"""
    return {
        "keyword_tags": {"cute": ["kawaii"]},
        "directory_tags": {},
        "category_tags": {},
    }
