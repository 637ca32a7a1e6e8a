"""
Final verification, dataset descriptor and end-of-run report.

Verification always covers the full taxonomy, whatever class range was
acquired in this run, so the report tells whether the dataset as a whole is
ready for training. A shortfall is advisory: the pipeline is meant to be
re-run until every class converges.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd
import yaml

from .classes import ClassRegistry, Quota
from .errors import VerificationShortfall
from .state import count_images, count_normalized
from .utils import AtomicFileWriter

logger = logging.getLogger(__name__)


class ReportStyle:
    """
    ANSI styling for the console report.

    Args:
        colors: Mapping with 'ok', 'warn', 'partial', 'error' and 'reset' codes
        enabled: When False every helper returns the text unchanged
    """

    DEFAULT_COLORS = {
        'ok': '\033[0;32m',
        'warn': '\033[1;33m',
        'partial': '\033[0;33m',
        'error': '\033[0;31m',
        'reset': '\033[0m',
    }

    def __init__(self, colors: Optional[Dict[str, str]] = None, enabled: bool = True):
        self.colors = {**self.DEFAULT_COLORS, **(colors or {})}
        self.enabled = enabled

    @classmethod
    def from_config(cls, config) -> "ReportStyle":
        return cls(colors=config.get('report.colors'), enabled=config.get('report.use_color', True))

    @classmethod
    def plain(cls) -> "ReportStyle":
        return cls(enabled=False)

    def paint(self, text: str, role: str) -> str:
        if not self.enabled:
            return text
        return f"{self.colors[role]}{text}{self.colors['reset']}"

    def ok(self, text: str) -> str:
        return self.paint(text, 'ok')

    def warn(self, text: str) -> str:
        return self.paint(text, 'warn')

    def partial(self, text: str) -> str:
        return self.paint(text, 'partial')

    def error(self, text: str) -> str:
        return self.paint(text, 'error')


def build_training_command(config, descriptor_path: Union[str, Path]) -> str:
    """Command line for the external YOLOv5 trainer."""
    return (
        f"python {config.get('training.entry_point', 'train.py')}"
        f" --img {config.get('training.img_size', 640)}"
        f" --batch {config.get('training.batch_size', 32)}"
        f" --epochs {config.get('training.epochs', 200)}"
        f" --data {descriptor_path}"
        f" --weights {config.get('training.weights', 'yolov5n.pt')}"
        f" --device {config.get('training.device', '0')}"
        f" --workers {config.get('training.workers', 8)}"
    )


class VerificationReport:
    """Result of a verification pass over the whole taxonomy."""

    def __init__(self, class_counts: List[Dict[str, Any]], train_images: int, val_images: int,
                 min_required: int, output_dir: Path, descriptor_path: Path):
        self.class_counts = class_counts
        self.train_images = train_images
        self.val_images = val_images
        self.min_required = min_required
        self.output_dir = output_dir
        self.descriptor_path = descriptor_path
        self.created_at = datetime.now().isoformat()

    @property
    def missing(self) -> List[Dict[str, Any]]:
        return [
            {'id': c['id'], 'name': c['name'], 'current': c['train_images'], 'required': c['required']}
            for c in self.class_counts if not c['satisfied']
        ]

    @property
    def all_satisfied(self) -> bool:
        return not self.missing

    def raise_for_shortfall(self) -> None:
        """Raise VerificationShortfall if any class is below the threshold."""
        if not self.all_satisfied:
            raise VerificationShortfall(self.missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created_at': self.created_at,
            'output_dir': str(self.output_dir),
            'descriptor': str(self.descriptor_path),
            'min_required_images': self.min_required,
            'train_images': self.train_images,
            'val_images': self.val_images,
            'all_satisfied': self.all_satisfied,
            'classes': self.class_counts,
            'missing': self.missing,
        }

    def render(self, style: Optional[ReportStyle] = None, training_command: Optional[str] = None) -> str:
        """Human-readable report for the console."""
        style = style or ReportStyle.plain()
        rule = "=" * 41
        lines = [
            style.ok(rule),
            style.ok("         Dataset Report"),
            style.ok(rule),
            f"Training images:   {self.train_images}",
            f"Validation images: {self.val_images}",
            "",
        ]

        if self.all_satisfied:
            lines.append(style.ok(f"All {len(self.class_counts)} classes have sufficient data."))
        else:
            lines.append(style.error(f"Missing classes (< {self.min_required} images):"))
            for entry in self.missing:
                lines.append(f"  - {entry['name']} (ID {entry['id']}): {entry['current']}/{entry['required']}")
            lines.append("")
            lines.append(style.warn("Re-run this pipeline to download missing data."))

        lines.extend([
            "",
            f"Dataset: {self.output_dir}",
            f"Config:  {self.descriptor_path}",
        ])
        if training_command:
            lines.extend(["", "Train command:", f"  {style.warn(training_command)}"])

        return "\n".join(lines)


class DatasetVerifier:
    """
    Re-scans the output tree against the quota and regenerates data.yaml.

    Args:
        registry: Full class taxonomy
        quota: Per-class targets
        output_dir: Dataset root
        descriptor_name: File name of the dataset descriptor
        descriptor_header: Comment written on the descriptor's first line
        reports_dir: Where summary files go, None disables them
    """

    def __init__(self, registry: ClassRegistry, quota: Quota, output_dir: Union[str, Path],
                 descriptor_name: str = 'data.yaml', descriptor_header: Optional[str] = None,
                 reports_dir: Optional[Union[str, Path]] = None):
        self.registry = registry
        self.quota = quota
        self.output_dir = Path(output_dir)
        self.descriptor_path = self.output_dir / descriptor_name
        self.descriptor_header = descriptor_header
        self.reports_dir = Path(reports_dir) if reports_dir else None

    @classmethod
    def from_config(cls, config, registry: ClassRegistry, quota: Quota) -> "DatasetVerifier":
        paths = config.get_data_paths()
        return cls(
            registry=registry,
            quota=quota,
            output_dir=paths['output'],
            descriptor_name=config.get('dataset.descriptor_name', 'data.yaml'),
            descriptor_header=config.get('dataset.descriptor_header'),
            reports_dir=paths['reports'] if config.get('report.write_summary_files', True) else None,
        )

    def build_descriptor(self) -> Dict[str, Any]:
        return {
            'path': str(self.output_dir),
            'train': 'images/train',
            'val': 'images/val',
            'nc': len(self.registry),
            'names': self.registry.names,
        }

    def write_descriptor(self) -> Path:
        """Regenerate the dataset descriptor from scratch."""
        descriptor = self.build_descriptor()
        with AtomicFileWriter.atomic_write(self.descriptor_path, blocking=True) as f:
            if self.descriptor_header:
                f.write(f"# {self.descriptor_header}\n")
            yaml.safe_dump(descriptor, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

        logger.info(f"Wrote dataset descriptor {self.descriptor_path}")
        return self.descriptor_path

    def collect_class_counts(self) -> List[Dict[str, Any]]:
        label_dir = self.output_dir / 'labels' / 'train'
        required = self.quota.min_required_images
        counts = []
        for class_def in self.registry:
            current = count_normalized(label_dir, class_def.id)
            counts.append({
                'id': class_def.id,
                'name': class_def.name,
                'train_images': current,
                'required': required,
                'satisfied': current >= required,
            })
        return counts

    def verify(self, run_results: Optional[Sequence] = None,
               class_range: Optional[Sequence[int]] = None) -> VerificationReport:
        """
        Verify every class and regenerate the descriptor.

        Args:
            run_results: ClassResult objects of this run, stored in the summary
            class_range: ``(start, end)`` acquired in this run, stored in the summary

        Returns:
            VerificationReport for the full taxonomy
        """
        class_counts = self.collect_class_counts()
        report = VerificationReport(
            class_counts=class_counts,
            train_images=count_images(self.output_dir / 'images' / 'train'),
            val_images=count_images(self.output_dir / 'images' / 'val'),
            min_required=self.quota.min_required_images,
            output_dir=self.output_dir,
            descriptor_path=self.write_descriptor(),
        )

        if report.all_satisfied:
            logger.info("All classes satisfied")
        else:
            logger.warning(f"{len(report.missing)} classes below {report.min_required} train images")

        if self.reports_dir is not None:
            self.save_summary(report, run_results or [], class_range)

        return report

    def save_summary(self, report: VerificationReport, run_results: Sequence,
                     class_range: Optional[Sequence[int]] = None) -> Dict[str, Path]:
        """Write class_report.csv and build_summary.json under the reports directory."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        csv_path = self.reports_dir / 'class_report.csv'
        json_path = self.reports_dir / 'build_summary.json'

        df = pd.DataFrame(report.class_counts, columns=['id', 'name', 'train_images', 'required', 'satisfied'])
        with AtomicFileWriter.atomic_write(csv_path, blocking=True) as f:
            df.to_csv(f, index=False)

        summary = report.to_dict()
        summary['class_range'] = list(class_range) if class_range is not None else None
        summary['run'] = [result.to_dict() for result in run_results]
        with AtomicFileWriter.atomic_write(json_path, blocking=True) as f:
            json.dump(summary, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved class report to {csv_path}")
        return {'csv': csv_path, 'json': json_path}
