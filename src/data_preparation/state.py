"""
Filesystem state inspection.

The pipeline keeps no manifest: how far a class has progressed is re-derived
on every run by scanning the output label directory and the downloader's raw
cache. All functions here are pure reads, and a missing directory is simply
the zero state of a fresh checkout.
"""

import logging
from pathlib import Path
from typing import Iterable, Union

from .classes import ClassDefinition

logger = logging.getLogger(__name__)

# Output split -> split name used by the OIDv4 ToolKit
TOOLKIT_SPLITS = {
    'train': 'train',
    'val': 'validation',
}

DEFAULT_IMAGE_EXTENSIONS = ('.jpg',)


def label_file_has_class(label_path: Union[str, Path], class_id: int) -> bool:
    """
    Whether a label file has at least one line for ``class_id``.

    The class field is compared as a whole token, so class 1 never matches
    a line of class 10 or 11.
    """
    token = str(class_id)
    try:
        with open(label_path, 'r', encoding='utf-8') as f:
            for line in f:
                fields = line.split(maxsplit=1)
                if fields and fields[0] == token:
                    return True
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read label file {label_path}: {e}")
    return False


def count_normalized(label_dir: Union[str, Path], class_id: int) -> int:
    """
    Count label files in ``label_dir`` containing ``class_id``.

    Args:
        label_dir: A ``labels/<split>`` directory
        class_id: Class index to look for

    Returns:
        Number of images with at least one box of the class (0 if the
        directory is absent or empty)
    """
    label_dir = Path(label_dir)
    if not label_dir.is_dir():
        return 0

    return sum(1 for label_path in label_dir.glob('*.txt')
               if label_path.is_file() and label_file_has_class(label_path, class_id))


def count_raw(directory: Union[str, Path], extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS) -> int:
    """
    Count image files directly inside ``directory`` (non-recursive).

    Extensions are matched case-insensitively. Returns 0 if absent.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    suffixes = {ext.lower() for ext in extensions}
    return sum(1 for path in directory.iterdir() if path.is_file() and path.suffix.lower() in suffixes)


# Output image directories are scanned the same way as the raw cache.
count_images = count_raw


class RawCacheLayout:
    """
    Where the OIDv4 ToolKit puts a class's raw data.

    ``<toolkit>/OID/Dataset_<safe name>/<train|validation>/<class name>/`` holds
    the images, with one annotation file per image in its ``Label/``
    subdirectory.
    """

    def __init__(self, toolkit_dir: Union[str, Path]):
        self.toolkit_dir = Path(toolkit_dir)

    @staticmethod
    def dataset_name(class_def: ClassDefinition) -> str:
        return f"Dataset_{class_def.safe_name}"

    def dataset_dir(self, class_def: ClassDefinition) -> Path:
        return self.toolkit_dir / 'OID' / self.dataset_name(class_def)

    def image_dir(self, class_def: ClassDefinition, split: str) -> Path:
        return self.dataset_dir(class_def) / TOOLKIT_SPLITS[split] / class_def.name

    def label_dir(self, class_def: ClassDefinition, split: str) -> Path:
        return self.image_dir(class_def, split) / 'Label'
