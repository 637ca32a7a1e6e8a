"""
OID to YOLO annotation conversion.

The OIDv4 ToolKit writes one annotation file per image, one object per line:

    <object name> <x1> <y1> <x2> <y2>

with absolute pixel corners. YOLO expects one line per box:

    <class id> <x center> <y center> <width> <height>

with every value normalized by the image size and clipped to [0, 1].

Conversion runs once per class: a raw annotation file can list objects of
several classes, and each pass only takes the lines of the class being
converted. Label files are merged (see LabelFileWriter) so boxes contributed
by other classes for the same image survive.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import math
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm import tqdm

from .classes import ClassDefinition
from .downloader import RawCacheEntry
from .errors import ConversionError
from .utils import ImageProbe, LabelFileWriter

logger = logging.getLogger(__name__)

Box = Tuple[float, float, float, float]


def corners_to_yolo(x1: float, y1: float, x2: float, y2: float, width: int, height: int) -> Box:
    """
    Convert absolute corner coordinates to a normalized center-form box.

    Args:
        x1, y1: Top-left corner in pixels
        x2, y2: Bottom-right corner in pixels
        width, height: Image size in pixels

    Returns:
        ``(x_center, y_center, box_width, box_height)``, each clipped to [0, 1]

    Example:
        >>> corners_to_yolo(10, 20, 110, 220, 200, 400)
        (0.3, 0.3, 0.5, 0.5)
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image size must be positive, got {width}x{height}")

    box = np.array([
        ((x1 + x2) / 2) / width,
        ((y1 + y2) / 2) / height,
        (x2 - x1) / width,
        (y2 - y1) / height,
    ], dtype=np.float64)
    box = np.clip(box, 0.0, 1.0)

    # + 0.0 turns a clipped -0.0 into 0.0 so it never prints as "-0.000000"
    return tuple(float(v) + 0.0 for v in box)


def format_label_line(class_id: int, box: Sequence[float], precision: int = 6) -> str:
    """Format a YOLO label line with fixed precision."""
    return f"{class_id} " + " ".join(f"{value:.{precision}f}" for value in box)


def parse_annotation_line(line: str, object_name: str) -> Optional[Tuple[float, float, float, float]]:
    """
    Parse one OID annotation line for ``object_name``.

    The line must start with exactly ``"<object_name> "``: other objects,
    blank lines and names that only differ by surrounding whitespace are not
    this class and yield None. Extra trailing fields are ignored.

    Raises:
        ConversionError: If the line belongs to the class but its corners are
            missing or not finite numbers.
    """
    line = line.rstrip('\r\n')
    prefix = f"{object_name} "
    if not line.strip() or not line.startswith(prefix):
        return None

    fields = line[len(prefix):].split()
    if len(fields) < 4:
        raise ConversionError(f"Expected 4 coordinates, got {len(fields)}: {line!r}")

    try:
        x1, y1, x2, y2 = (float(v) for v in fields[:4])
    except ValueError as e:
        raise ConversionError(f"Malformed coordinates in {line!r}: {e}") from e

    if not all(math.isfinite(v) for v in (x1, y1, x2, y2)):
        raise ConversionError(f"Non-finite coordinates in {line!r}")

    return x1, y1, x2, y2


class ConversionStats:
    """Counters for one (class, split) conversion pass."""

    def __init__(self, class_id: int, split: str):
        self.class_id = class_id
        self.split = split
        self.files_seen = 0
        self.files_converted = 0
        self.files_without_boxes = 0
        self.missing_images = 0
        self.boxes_written = 0
        self.malformed_lines = 0
        self.errors = 0

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))

    def __repr__(self) -> str:
        return (f"ConversionStats(class_id={self.class_id}, split={self.split!r}, "
                f"converted={self.files_converted}/{self.files_seen}, boxes={self.boxes_written}, "
                f"errors={self.errors})")


class AnnotationConverter:
    """
    Converts a class's raw OID cache into the YOLO output tree.

    Args:
        output_dir: Dataset root (``images/<split>`` and ``labels/<split>`` below it)
        label_writer: Shared writer serializing label file updates
        precision: Decimal digits of normalized coordinates
        show_progress: Whether to show a tqdm bar per pass
    """

    def __init__(self, output_dir: Union[str, Path], label_writer: Optional[LabelFileWriter] = None,
                 precision: int = 6, show_progress: bool = True):
        self.output_dir = Path(output_dir)
        self.label_writer = label_writer or LabelFileWriter(self.output_dir / '.locks')
        self.precision = precision
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config, label_writer: Optional[LabelFileWriter] = None) -> "AnnotationConverter":
        output_dir = Path(config.get('dataset.output_dir'))
        return cls(
            output_dir=output_dir,
            label_writer=label_writer,
            precision=config.get('conversion.precision', 6),
        )

    def image_dir(self, split: str) -> Path:
        return self.output_dir / 'images' / split

    def label_dir(self, split: str) -> Path:
        return self.output_dir / 'labels' / split

    def convert_annotation_file(self, annotation_path: Union[str, Path], image_path: Union[str, Path],
                                class_def: ClassDefinition) -> Tuple[List[str], int]:
        """
        Convert the lines of one annotation file that belong to ``class_def``.

        Malformed lines are logged and skipped.

        Returns:
            ``(label_lines, malformed_line_count)``

        Raises:
            ConversionError: If the image or the annotation file cannot be read.
        """
        width, height = ImageProbe.get_dimensions(image_path)

        try:
            with open(annotation_path, 'r', encoding='utf-8') as f:
                raw_lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            raise ConversionError(f"Cannot read annotation file {annotation_path}: {e}",
                                  path=annotation_path) from e

        label_lines = []
        malformed = 0
        for line_number, line in enumerate(raw_lines, start=1):
            try:
                corners = parse_annotation_line(line, class_def.name)
            except ConversionError as e:
                logger.warning(f"{annotation_path}:{line_number}: {e}")
                malformed += 1
                continue

            if corners is None:
                continue

            box = corners_to_yolo(*corners, width, height)
            label_lines.append(format_label_line(class_def.id, box, self.precision))

        return label_lines, malformed

    def convert_split(self, class_def: ClassDefinition, raw_entry: RawCacheEntry,
                      output_split: Optional[str] = None) -> ConversionStats:
        """
        Convert every annotation file of a raw cache entry.

        An image is copied into ``images/<split>`` only when at least one box
        of the class was produced for it. Per-file failures are logged and
        skipped; a missing annotation directory is zero work.

        Args:
            class_def: Class being converted
            raw_entry: Raw cache of that class for one split
            output_split: Output split name, defaults to ``raw_entry.split``

        Returns:
            ConversionStats for the pass
        """
        split = output_split or raw_entry.split
        stats = ConversionStats(class_def.id, split)

        if not raw_entry.label_dir.is_dir():
            logger.info(f"No annotations for {class_def} ({split}) at {raw_entry.label_dir}")
            return stats

        annotation_files = sorted(raw_entry.label_dir.glob('*.txt'))
        if not annotation_files:
            logger.info(f"Annotation directory is empty for {class_def} ({split})")
            return stats

        image_dir = self.image_dir(split)
        label_dir = self.label_dir(split)
        image_dir.mkdir(parents=True, exist_ok=True)
        label_dir.mkdir(parents=True, exist_ok=True)

        progress = tqdm(annotation_files, desc=f"Converting {class_def.name} ({split})", unit="file",
                        disable=not self.show_progress, leave=False)
        for annotation_path in progress:
            stats.files_seen += 1
            stem = annotation_path.stem
            image_path = raw_entry.image_dir / f"{stem}.jpg"

            if not image_path.is_file():
                logger.debug(f"No image for annotation {annotation_path}")
                stats.missing_images += 1
                continue

            try:
                label_lines, malformed = self.convert_annotation_file(annotation_path, image_path, class_def)
            except ConversionError as e:
                logger.warning(f"Skipping {annotation_path.name}: {e}")
                stats.errors += 1
                continue

            stats.malformed_lines += malformed
            if not label_lines:
                stats.files_without_boxes += 1
                continue

            try:
                written = self.label_writer.write_example(
                    label_dir / f"{stem}.txt", class_def.id, label_lines,
                    image_source=image_path, image_target=image_dir / image_path.name
                )
            except (OSError, ConversionError) as e:
                logger.warning(f"Failed to write example {stem} for {class_def}: {e}")
                stats.errors += 1
                continue

            stats.files_converted += 1
            stats.boxes_written += written

        logger.info(f"Converted {class_def} ({split}): {stats.files_converted}/{stats.files_seen} files, "
                    f"{stats.boxes_written} boxes")
        return stats
