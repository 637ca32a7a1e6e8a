"""
Tests for data preparation utilities.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import pytest
import gc
import json
import threading
from unittest.mock import patch, MagicMock

from src.data_preparation.errors import ConversionError
from src.data_preparation.utils import (
    AtomicFileWriter,
    LabelFileWriter,
    ImageProbe,
    SystemMonitor,
    copy_file_atomic
)

from tests.conftest import write_jpeg


class TestAtomicFileWriter:
    """Test atomic file writing functionality."""

    @pytest.mark.unit
    def test_atomic_write_success(self, temp_directory):
        """Test successful atomic file writing."""
        test_file = temp_directory / "build_summary.json"
        test_data = {"key": "value", "number": 42}

        with AtomicFileWriter.atomic_write(test_file) as f:
            json.dump(test_data, f)

        with open(test_file, 'r') as f:
            assert json.load(f) == test_data

    @pytest.mark.unit
    def test_atomic_write_creates_directories(self, temp_directory):
        nested_file = temp_directory / "nested" / "dir" / "data.yaml"

        with AtomicFileWriter.atomic_write(nested_file) as f:
            f.write("nc: 1\n")

        assert nested_file.read_text() == "nc: 1\n"

    @pytest.mark.unit
    def test_atomic_write_cleanup_on_exception(self, temp_directory):
        """Test cleanup of temporary files when exception occurs."""
        test_file = temp_directory / "test_exception.json"

        with pytest.raises(ValueError):
            with AtomicFileWriter.atomic_write(test_file) as f:
                f.write("partial data")
                raise ValueError("Simulated error")

        assert not test_file.exists()
        assert list(temp_directory.glob("*.tmp")) == []
        assert list(temp_directory.glob("*.lock")) == []

    @pytest.mark.unit
    def test_failed_write_keeps_previous_content(self, temp_directory):
        test_file = temp_directory / "labels.txt"
        test_file.write_text("0 0.5 0.5 0.1 0.1\n")

        with pytest.raises(RuntimeError):
            with AtomicFileWriter.atomic_write(test_file) as f:
                f.write("garbage")
                raise RuntimeError("interrupted")

        assert test_file.read_text() == "0 0.5 0.5 0.1 0.1\n"

    @pytest.mark.unit
    def test_blocking_write_keeps_lock_file(self, temp_directory):
        test_file = temp_directory / "data.yaml"

        with AtomicFileWriter.atomic_write(test_file, blocking=True) as f:
            f.write("nc: 1\n")

        assert test_file.read_text() == "nc: 1\n"
        assert (temp_directory / "data.yaml.lock").exists()
        assert list(temp_directory.glob("*.tmp")) == []


class TestLabelFileWriter:
    """Test locked label merging."""

    @pytest.fixture
    def writer(self, temp_directory):
        return LabelFileWriter(temp_directory / ".locks")

    @pytest.mark.unit
    def test_merge_lines_replaces_only_own_class(self):
        existing = ["0 0.1 0.1 0.1 0.1", "1 0.2 0.2 0.2 0.2", "10 0.3 0.3 0.3 0.3"]
        merged = LabelFileWriter.merge_lines(existing, 1, ["1 0.9 0.9 0.1 0.1"])

        assert merged == ["0 0.1 0.1 0.1 0.1", "10 0.3 0.3 0.3 0.3", "1 0.9 0.9 0.1 0.1"]

    @pytest.mark.unit
    def test_merge_lines_deduplicates(self):
        merged = LabelFileWriter.merge_lines([], 2, ["2 a", "2 b", "2 a"])
        assert merged == ["2 a", "2 b"]

    @pytest.mark.unit
    def test_merge_class_lines_twice(self, writer, temp_directory):
        label_path = temp_directory / "labels" / "train" / "img.txt"
        label_path.parent.mkdir(parents=True)

        assert writer.merge_class_lines(label_path, 3, ["3 0.5 0.5 0.2 0.2"]) == 1
        assert writer.merge_class_lines(label_path, 3, ["3 0.5 0.5 0.2 0.2"]) == 1

        assert label_path.read_text() == "3 0.5 0.5 0.2 0.2\n"

    @pytest.mark.unit
    def test_lock_files_are_kept_per_split(self, writer, temp_directory):
        label_path = temp_directory / "labels" / "val" / "img.txt"
        label_path.parent.mkdir(parents=True)

        writer.merge_class_lines(label_path, 0, ["0 0.5 0.5 0.2 0.2"])

        assert (temp_directory / ".locks" / "val" / "img.lock").exists()

    @pytest.mark.unit
    def test_write_example_copies_image_first(self, writer, temp_directory):
        source = write_jpeg(temp_directory / "raw" / "img.jpg")
        image_target = temp_directory / "images" / "train" / "img.jpg"
        label_path = temp_directory / "labels" / "train" / "img.txt"
        label_path.parent.mkdir(parents=True)

        with patch('src.data_preparation.utils.copy_file_atomic', side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                writer.write_example(label_path, 0, ["0 0.5 0.5 0.2 0.2"], source, image_target)

        assert not label_path.exists()

        assert writer.write_example(label_path, 0, ["0 0.5 0.5 0.2 0.2"], source, image_target) == 1
        assert image_target.exists()
        assert source.exists()

    @pytest.mark.unit
    def test_write_example_without_lines_is_noop(self, writer, temp_directory):
        source = write_jpeg(temp_directory / "raw" / "img.jpg")
        image_target = temp_directory / "images" / "train" / "img.jpg"

        assert writer.write_example(temp_directory / "img.txt", 0, [], source, image_target) == 0
        assert not image_target.exists()

    @pytest.mark.unit
    def test_failed_label_write_removes_copied_image(self, writer, temp_directory):
        source = write_jpeg(temp_directory / "raw" / "img.jpg")
        image_target = temp_directory / "images" / "train" / "img.jpg"
        label_path = temp_directory / "labels" / "train" / "img.txt"
        label_path.parent.mkdir(parents=True)

        with patch('src.data_preparation.utils.LabelFileWriter._write_merged', side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                writer.write_example(label_path, 0, ["0 0.5 0.5 0.2 0.2"], source, image_target)

        assert not image_target.exists()
        assert not label_path.exists()
        assert source.exists()

    @pytest.mark.unit
    def test_failed_label_write_keeps_existing_image(self, writer, temp_directory):
        source = write_jpeg(temp_directory / "raw" / "img.jpg")
        image_target = temp_directory / "images" / "train" / "img.jpg"
        label_path = temp_directory / "labels" / "train" / "img.txt"
        label_path.parent.mkdir(parents=True)
        writer.write_example(label_path, 0, ["0 0.5 0.5 0.2 0.2"], source, image_target)

        with patch('src.data_preparation.utils.LabelFileWriter._write_merged', side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                writer.write_example(label_path, 1, ["1 0.5 0.5 0.2 0.2"], source, image_target)

        # Class 0 still owns the image and its label
        assert image_target.exists()
        assert label_path.read_text() == "0 0.5 0.5 0.2 0.2\n"

    @pytest.mark.unit
    def test_undecodable_label_raises_conversion_error(self, writer, temp_directory):
        label_path = temp_directory / "img.txt"
        label_path.write_bytes(b'\xff\xfe garbage')

        with pytest.raises(ConversionError):
            writer.merge_class_lines(label_path, 0, ["0 0.5 0.5 0.2 0.2"])

        assert label_path.read_bytes() == b'\xff\xfe garbage'

    @pytest.mark.unit
    def test_path_locks_are_released_after_use(self, writer, temp_directory):
        label_dir = temp_directory / "labels" / "train"
        label_dir.mkdir(parents=True)

        for i in range(50):
            writer.merge_class_lines(label_dir / f"img_{i}.txt", 0, ["0 0.5 0.5 0.2 0.2"])
        gc.collect()

        assert len(writer._locks) == 0

    @pytest.mark.integration
    def test_concurrent_merges_keep_every_class(self, writer, temp_directory):
        label_path = temp_directory / "labels" / "train" / "shared.txt"
        label_path.parent.mkdir(parents=True)
        barrier = threading.Barrier(8)
        errors = []

        def worker(class_id):
            try:
                barrier.wait()
                for _ in range(20):
                    writer.merge_class_lines(label_path, class_id, [f"{class_id} 0.5 0.5 0.1 0.1"])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        lines = label_path.read_text().splitlines()
        assert sorted(lines) == sorted(f"{i} 0.5 0.5 0.1 0.1" for i in range(8))

    @pytest.mark.unit
    def test_in_process_locking_without_lock_dir(self, temp_directory):
        writer = LabelFileWriter(None)
        label_path = temp_directory / "img.txt"

        assert writer.merge_class_lines(label_path, 4, ["4 1 1 1 1", "4 1 1 1 1"]) == 1
        assert label_path.read_text() == "4 1 1 1 1\n"


class TestCopyFileAtomic:

    @pytest.mark.unit
    def test_copy_overwrites_target(self, temp_directory):
        source = temp_directory / "a.bin"
        target = temp_directory / "out" / "b.bin"
        source.write_bytes(b"new")
        target.parent.mkdir()
        target.write_bytes(b"old")

        copy_file_atomic(source, target)

        assert target.read_bytes() == b"new"
        assert source.exists()
        assert list(target.parent.glob("*.tmp")) == []


class TestImageProbe:
    """Test image dimension probing."""

    @pytest.mark.unit
    def test_get_dimensions(self, temp_directory):
        image_path = write_jpeg(temp_directory / "img.jpg", width=320, height=240)
        assert ImageProbe.get_dimensions(image_path) == (320, 240)

    @pytest.mark.unit
    def test_corrupted_image(self, temp_directory):
        image_path = temp_directory / "broken.jpg"
        image_path.write_bytes(b"not an image at all")

        with pytest.raises(ConversionError):
            ImageProbe.get_dimensions(image_path)

    @pytest.mark.unit
    def test_missing_image(self, temp_directory):
        with pytest.raises(ConversionError):
            ImageProbe.get_dimensions(temp_directory / "missing.jpg")


class TestSystemMonitor:
    """Test system monitoring functionality."""

    @pytest.mark.unit
    def test_get_memory_info(self):
        info = SystemMonitor.get_memory_info()

        assert info['total_gb'] > 0
        assert 0 <= info['percent'] <= 100

    @pytest.mark.unit
    @pytest.mark.parametrize("memory_gb, expected", [
        (4, 2),
        (7.9, 2),
        (8, 4),
        (15.9, 4),
        (16, 8),
        (64, 8),
    ])
    def test_recommend_parallel_jobs(self, memory_gb, expected):
        assert SystemMonitor.recommend_parallel_jobs(memory_gb) == expected

    @pytest.mark.unit
    def test_recommend_parallel_jobs_queries_host(self):
        fake_memory = MagicMock(total=12 * 1024**3, available=6 * 1024**3, percent=50.0)
        with patch('src.data_preparation.utils.psutil.virtual_memory', return_value=fake_memory):
            assert SystemMonitor.recommend_parallel_jobs() == 4
