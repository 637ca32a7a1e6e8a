"""
Pytest configuration and fixtures for Stationery Dataset Builder tests.

Fixtures build real files on disk: JPEG images generated with Pillow and
OIDv4 ToolKit style raw caches (images plus Label/ annotation files), so the
pipeline is exercised against the same layout it meets in production. The
external downloader is replaced by a stub that writes such caches.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import pytest
import tempfile
import shutil
import threading
import numpy as np
import yaml
from pathlib import Path
from PIL import Image
import logging

from src.config import Config
from src.data_preparation.classes import ClassRegistry, STATIONERY_CLASSES
from src.data_preparation.downloader import Downloader, RawCacheEntry
from src.data_preparation.errors import AcquisitionError
from src.data_preparation.state import RawCacheLayout

# Disable logging during tests unless explicitly needed
logging.getLogger().setLevel(logging.WARNING)


def write_jpeg(path, width=200, height=400, shade=128):
    """Write a small real JPEG image."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    img_array = np.full((height, width, 3), shade, dtype=np.uint8)
    img_array[: height // 2, : width // 2] = [255, 100, 50]
    Image.fromarray(img_array).save(path, quality=90)
    return path


def write_raw_example(layout, class_def, split, stem, annotation_lines, size=(200, 400)):
    """Write one raw image and its OID annotation file into a toolkit cache."""
    image_dir = layout.image_dir(class_def, split)
    label_dir = layout.label_dir(class_def, split)
    write_jpeg(image_dir / f"{stem}.jpg", *size)
    label_dir.mkdir(parents=True, exist_ok=True)
    (label_dir / f"{stem}.txt").write_text("".join(f"{line}\n" for line in annotation_lines), encoding="utf-8")
    return image_dir / f"{stem}.jpg"


def populate_class(layout, class_def, split, count, start=0, size=(200, 400)):
    """Write ``count`` raw examples with one box of the class each."""
    for i in range(start, start + count):
        write_raw_example(
            layout, class_def, split, f"{class_def.safe_name.lower()}_{split}_{i:04d}",
            [f"{class_def.name} 10 20 110 220"], size=size
        )


class StubDownloader(Downloader):
    """
    Stand-in for the OIDv4 ToolKit.

    Records every call; optionally fills the raw cache with ``limit`` examples
    (or ``yield_count`` if given) and fails for the splits in ``fail_splits``.
    """

    def __init__(self, toolkit_dir, populate=True, yield_count=None, fail_splits=()):
        self.layout = RawCacheLayout(toolkit_dir)
        self.populate = populate
        self.yield_count = yield_count
        self.fail_splits = set(fail_splits)
        self.calls = []
        self.cleaned = []
        self._lock = threading.Lock()

    def cache_entry(self, class_def, split):
        return RawCacheEntry.from_layout(self.layout, class_def, split)

    def download(self, class_def, split, limit):
        with self._lock:
            self.calls.append((class_def.name, split, limit))
        if split in self.fail_splits:
            raise AcquisitionError(f"stub failure for {class_def.name} ({split})",
                                   class_name=class_def.name, split=split, returncode=1)
        entry = self.cache_entry(class_def, split)
        if self.populate:
            existing = entry.image_count()
            wanted = self.yield_count if self.yield_count is not None else limit
            populate_class(self.layout, class_def, split, max(0, wanted - existing), start=existing)
        return entry

    def cleanup(self, class_def):
        self.cleaned.append(class_def.name)
        shutil.rmtree(self.layout.dataset_dir(class_def), ignore_errors=True)


@pytest.fixture
def temp_directory():
    """
    Create temporary directory for tests with automatic cleanup.

    Yields:
        Path: Temporary directory path that will be cleaned up after test
    """
    temp_dir = tempfile.mkdtemp(prefix='stationery_builder_test_')
    yield Path(temp_dir)

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def output_dir(temp_directory):
    return temp_directory / "processed" / "stationery_32class"


@pytest.fixture
def toolkit_dir(temp_directory):
    return temp_directory / "toolkits" / "OIDv4_ToolKit"


@pytest.fixture
def raw_layout(toolkit_dir):
    return RawCacheLayout(toolkit_dir)


@pytest.fixture
def registry():
    """The full 32-class stationery registry."""
    return ClassRegistry(STATIONERY_CLASSES)


@pytest.fixture
def test_config(temp_directory, output_dir, toolkit_dir):
    """
    Configuration pointing every path into the temporary directory.

    Uses small quotas (train 10, val 4, threshold 90% -> 9 required) so
    integration tests stay fast.
    """
    config_path = temp_directory / "config.yaml"
    overrides = {
        'dataset': {'output_dir': str(output_dir)},
        'quota': {
            'per_class_train_target': 10,
            'per_class_val_target': 4,
            'completion_threshold_percent': 90
        },
        'acquisition': {'toolkit_dir': str(toolkit_dir), 'parallel_jobs': 4},
        'report': {'use_color': False},
        'logging': {'level': 'WARNING'}
    }
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(overrides, f)
    return Config(config_path)


@pytest.fixture
def stub_downloader(toolkit_dir):
    return StubDownloader(toolkit_dir)


# Pytest markers for categorizing tests
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Mark slow tests based on name patterns."""
    for item in items:
        if "slow" in item.name or "integration" in item.name:
            item.add_marker(pytest.mark.slow)
