"""
Raw data acquisition through the OIDv4 ToolKit.

The toolkit is treated as a black box: it is run once per (class, split) as
a child process and leaves images plus per-image annotation files in a known
directory layout (see RawCacheLayout). The pipeline only depends on the
narrow Downloader interface, so tests substitute a stub that writes fixtures.

References:
- OIDv4 ToolKit: https://github.com/EscVM/OIDv4_ToolKit

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import sys
import shutil
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

from .classes import ClassDefinition
from .errors import AcquisitionError
from .state import RawCacheLayout, TOOLKIT_SPLITS, count_raw

logger = logging.getLogger(__name__)


class RawCacheEntry:
    """Raw images and source-format annotations of one class and split."""

    def __init__(self, class_def: ClassDefinition, split: str, image_dir: Path, label_dir: Path):
        self.class_def = class_def
        self.split = split
        self.image_dir = Path(image_dir)
        self.label_dir = Path(label_dir)

    @classmethod
    def from_layout(cls, layout: RawCacheLayout, class_def: ClassDefinition, split: str) -> "RawCacheEntry":
        return cls(class_def, split, layout.image_dir(class_def, split), layout.label_dir(class_def, split))

    def image_count(self) -> int:
        return count_raw(self.image_dir)

    def __repr__(self) -> str:
        return f"RawCacheEntry(class={self.class_def.name!r}, split={self.split!r}, image_dir='{self.image_dir}')"


class Downloader:
    """Interface of the external acquisition tool."""

    def download(self, class_def: ClassDefinition, split: str, limit: int) -> RawCacheEntry:
        """
        Fetch up to ``limit`` images of a class for an output split.

        Raises:
            AcquisitionError: If the tool fails.
        """
        raise NotImplementedError

    def cache_entry(self, class_def: ClassDefinition, split: str) -> RawCacheEntry:
        """Location of the raw cache for a class and split, whether populated or not."""
        raise NotImplementedError

    def cleanup(self, class_def: ClassDefinition) -> None:
        """Remove the raw cache of a class. Caches are kept by default."""


class OIDToolkitDownloader(Downloader):
    """
    Runs ``main.py downloader`` of a local OIDv4 ToolKit checkout.

    Args:
        toolkit_dir: Toolkit checkout (contains ``main.py``)
        python_executable: Interpreter used to run the toolkit
        n_threads: Download threads per toolkit invocation
        timeout: Seconds to wait for one invocation, None waits forever
    """

    def __init__(self, toolkit_dir: Union[str, Path], python_executable: Optional[str] = None,
                 n_threads: int = 4, timeout: Optional[float] = None):
        self.toolkit_dir = Path(toolkit_dir)
        self.python_executable = python_executable or sys.executable
        self.n_threads = n_threads
        self.timeout = timeout
        self.layout = RawCacheLayout(self.toolkit_dir)

    @classmethod
    def from_config(cls, config) -> "OIDToolkitDownloader":
        return cls(
            toolkit_dir=config.get('acquisition.toolkit_dir'),
            python_executable=config.get('acquisition.python_executable'),
            n_threads=config.get('acquisition.n_threads', 4),
            timeout=config.get('acquisition.download_timeout'),
        )

    def cache_entry(self, class_def: ClassDefinition, split: str) -> RawCacheEntry:
        return RawCacheEntry.from_layout(self.layout, class_def, split)

    def cleanup(self, class_def: ClassDefinition) -> None:
        dataset_dir = self.layout.dataset_dir(class_def)
        if dataset_dir.exists():
            shutil.rmtree(dataset_dir)
            logger.info(f"Removed raw cache {dataset_dir}")

    def build_command(self, class_def: ClassDefinition, split: str, limit: int) -> List[str]:
        return [
            self.python_executable, '-u', 'main.py', 'downloader',
            '--classes', class_def.name,
            '--type_csv', TOOLKIT_SPLITS[split],
            '--n_threads', str(self.n_threads),
            '--limit', str(limit),
            '--yes',
            '--Dataset', self.layout.dataset_name(class_def),
        ]

    def download(self, class_def: ClassDefinition, split: str, limit: int) -> RawCacheEntry:
        if split not in TOOLKIT_SPLITS:
            raise ValueError(f"Unknown split: {split}")

        if not (self.toolkit_dir / 'main.py').exists():
            raise AcquisitionError(
                f"OIDv4 ToolKit not found at {self.toolkit_dir}",
                class_name=class_def.name, split=split
            )

        cmd = self.build_command(class_def, split, limit)
        logger.info(f"Downloading {split} for {class_def} ({limit} images)")
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            subprocess.run(cmd, cwd=self.toolkit_dir, check=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise AcquisitionError(
                f"Downloader exited with status {e.returncode} for {class_def} ({split})",
                class_name=class_def.name, split=split, returncode=e.returncode
            ) from e
        except subprocess.TimeoutExpired as e:
            raise AcquisitionError(
                f"Downloader timed out after {self.timeout}s for {class_def} ({split})",
                class_name=class_def.name, split=split
            ) from e
        except OSError as e:
            raise AcquisitionError(
                f"Could not start downloader for {class_def} ({split}): {e}",
                class_name=class_def.name, split=split
            ) from e

        entry = self.cache_entry(class_def, split)
        logger.info(f"{class_def} {split}: {entry.image_count()} raw images available")
        return entry
