"""
Tests for verification, the dataset descriptor and the console report.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import pytest
import json
import yaml
import pandas as pd
import threading

from src.data_preparation.classes import ClassRegistry, Quota
from src.data_preparation.converter import AnnotationConverter
from src.data_preparation.downloader import RawCacheEntry
from src.data_preparation.errors import VerificationShortfall
from src.data_preparation.report import (
    DatasetVerifier,
    ReportStyle,
    VerificationReport,
    build_training_command
)

from tests.conftest import populate_class


@pytest.fixture
def small_registry():
    return ClassRegistry([("Pen", "/m/0k1tl"), ("Ruler", "/m/0hdln"), ("Mug", "/m/02jvh9")])


@pytest.fixture
def quota():
    return Quota(10, 4, 90)


def convert(raw_layout, output_dir, class_def, split, count):
    populate_class(raw_layout, class_def, split, count)
    converter = AnnotationConverter(output_dir, show_progress=False)
    converter.convert_split(class_def, RawCacheEntry.from_layout(raw_layout, class_def, split))


class TestDatasetVerifier:
    """Test verification of the output tree."""

    @pytest.mark.unit
    def test_descriptor_content(self, small_registry, quota, output_dir):
        verifier = DatasetVerifier(small_registry, quota, output_dir,
                                   descriptor_header="YOLOv5 Stationery Dataset (3 Classes)")

        path = verifier.write_descriptor()

        text = path.read_text(encoding='utf-8')
        assert text.startswith("# YOLOv5 Stationery Dataset (3 Classes)\n")
        descriptor = yaml.safe_load(text)
        assert descriptor == {
            'path': str(output_dir),
            'train': 'images/train',
            'val': 'images/val',
            'nc': 3,
            'names': ['Pen', 'Ruler', 'Mug'],
        }

    @pytest.mark.unit
    def test_descriptor_quotes_awkward_names(self, quota, output_dir):
        registry = ClassRegistry([("Pen: blue", "/m/x"), ("yes", "/m/y")])
        path = DatasetVerifier(registry, quota, output_dir).write_descriptor()

        assert yaml.safe_load(path.read_text())['names'] == ["Pen: blue", "yes"]

    @pytest.mark.integration
    def test_verify_lists_missing_classes(self, small_registry, quota, output_dir, raw_layout):
        convert(raw_layout, output_dir, small_registry[0], 'train', 10)
        convert(raw_layout, output_dir, small_registry[1], 'train', 5)
        convert(raw_layout, output_dir, small_registry[0], 'val', 4)

        report = DatasetVerifier(small_registry, quota, output_dir).verify()

        assert report.train_images == 15
        assert report.val_images == 4
        assert not report.all_satisfied
        assert report.missing == [
            {'id': 1, 'name': 'Ruler', 'current': 5, 'required': 9},
            {'id': 2, 'name': 'Mug', 'current': 0, 'required': 9},
        ]
        assert report.descriptor_path.exists()

        with pytest.raises(VerificationShortfall) as exc_info:
            report.raise_for_shortfall()
        assert "Ruler (5/9)" in str(exc_info.value)

    @pytest.mark.unit
    def test_verify_empty_output(self, small_registry, quota, output_dir):
        report = DatasetVerifier(small_registry, quota, output_dir).verify()

        assert report.train_images == 0
        assert len(report.missing) == 3

    @pytest.mark.integration
    def test_save_summary_files(self, small_registry, quota, output_dir, raw_layout):
        convert(raw_layout, output_dir, small_registry[2], 'train', 9)
        verifier = DatasetVerifier(small_registry, quota, output_dir, reports_dir=output_dir / 'reports')

        verifier.verify(class_range=(0, 2))

        df = pd.read_csv(output_dir / 'reports' / 'class_report.csv')
        assert list(df.columns) == ['id', 'name', 'train_images', 'required', 'satisfied']
        assert df.loc[df['name'] == 'Mug', 'train_images'].item() == 9
        assert bool(df.loc[df['name'] == 'Mug', 'satisfied'].item())

        with open(output_dir / 'reports' / 'build_summary.json') as f:
            summary = json.load(f)
        assert summary['class_range'] == [0, 2]
        assert summary['run'] == []
        assert [m['name'] for m in summary['missing']] == ['Pen', 'Ruler']

    @pytest.mark.integration
    def test_verify_waits_for_concurrent_descriptor_writer(self, small_registry, quota, output_dir):
        fcntl = pytest.importorskip("fcntl")
        lock_path = output_dir / 'data.yaml.lock'
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        held = threading.Event()
        release = threading.Event()

        def other_run():
            with open(lock_path, 'a') as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                held.set()
                release.wait(5)
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

        holder = threading.Thread(target=other_run)
        holder.start()
        assert held.wait(5)
        threading.Timer(0.2, release.set).start()

        report = DatasetVerifier(small_registry, quota, output_dir, reports_dir=output_dir / 'reports').verify()
        holder.join()

        assert release.is_set()
        assert report.descriptor_path.exists()
        assert yaml.safe_load(report.descriptor_path.read_text())['nc'] == 3

    @pytest.mark.unit
    def test_from_config(self, test_config, registry, output_dir):
        verifier = DatasetVerifier.from_config(test_config, registry, Quota.from_config(test_config))

        assert verifier.descriptor_path == output_dir / 'data.yaml'
        assert verifier.reports_dir == output_dir / 'reports'
        assert verifier.quota.min_required_images == 9


class TestVerificationReport:
    """Test console rendering."""

    def make_report(self, counts, output_dir):
        class_counts = [
            {'id': i, 'name': name, 'train_images': n, 'required': 9, 'satisfied': n >= 9}
            for i, (name, n) in enumerate(counts)
        ]
        return VerificationReport(class_counts, sum(n for _, n in counts), 4, 9,
                                  output_dir, output_dir / 'data.yaml')

    @pytest.mark.unit
    def test_render_all_satisfied(self, output_dir):
        text = self.make_report([("Pen", 9), ("Mug", 12)], output_dir).render()

        assert "Training images:   21" in text
        assert "All 2 classes have sufficient data." in text
        assert "Missing classes" not in text
        assert "\033[" not in text

    @pytest.mark.unit
    def test_render_missing(self, output_dir):
        text = self.make_report([("Pen", 3), ("Mug", 12)], output_dir).render()

        assert "Missing classes (< 9 images):" in text
        assert "  - Pen (ID 0): 3/9" in text
        assert "Re-run this pipeline to download missing data." in text

    @pytest.mark.unit
    def test_render_with_color_and_command(self, output_dir, test_config):
        style = ReportStyle(enabled=True)
        command = build_training_command(test_config, output_dir / 'data.yaml')
        text = self.make_report([("Pen", 3)], output_dir).render(style, command)

        assert "\033[0;31mMissing classes" in text
        assert command in text

    @pytest.mark.unit
    def test_training_command(self, test_config, output_dir):
        command = build_training_command(test_config, output_dir / 'data.yaml')
        assert command == (
            f"python train.py --img 640 --batch 32 --epochs 200 --data {output_dir / 'data.yaml'} "
            f"--weights yolov5n.pt --device 0 --workers 8"
        )


class TestReportStyle:

    @pytest.mark.unit
    def test_disabled_style_is_plain(self):
        style = ReportStyle({'ok': 'X'}, enabled=False)
        assert style.ok("fine") == "fine"

    @pytest.mark.unit
    def test_custom_colors(self):
        style = ReportStyle({'ok': '<g>', 'reset': '</>'})
        assert style.ok("fine") == "<g>fine</>"
        assert style.error("bad") == "\033[0;31mbad</>"

    @pytest.mark.unit
    def test_from_config(self, test_config):
        assert ReportStyle.from_config(test_config).enabled is False
