"""
Data preparation utilities for the Stationery Dataset Builder.

Key Features:
- Atomic file operations for generated artifacts (data.yaml, reports, labels)
- Per-label-file locking so concurrent class conversions can share an image
- Header-only image dimension probing
- System monitoring to size the class worker pool

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import os
import shutil
import logging
import threading
import weakref
try:
    import fcntl
except ImportError:
    # fcntl is not available on Windows
    fcntl = None
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union
from contextlib import contextmanager

import psutil
from PIL import Image, UnidentifiedImageError

from .errors import ConversionError

logger = logging.getLogger(__name__)


class AtomicFileWriter:
    """
    Crash-safe file writing.

    Data is written to a temporary sibling file which is then moved over the
    target, so readers (and a re-run after an interruption) never observe a
    half-written descriptor, report or label file.
    """

    @staticmethod
    @contextmanager
    def atomic_write(filepath: Union[str, Path], mode: str = 'w', encoding: str = 'utf-8',
                     blocking: bool = False):
        """
        Context manager for atomic file writing with file locking.

        Takes an exclusive lock on a sibling .lock file, writes data to a .tmp
        file and moves it over the target.

        Non-blocking writers fail when another process holds the lock, and
        remove the .lock file when done. Blocking writers wait their turn and
        leave the .lock file in place: unlinking it while another process
        waits on it would let a third writer in alongside the second.

        Args:
            filepath: Target file path
            mode: File open mode (default: 'w')
            encoding: File encoding (default: 'utf-8')
            blocking: Wait for the lock instead of failing

        Yields:
            File handle for writing

        Raises:
            IOError: If a non-blocking lock cannot be acquired

        Example:
            >>> with AtomicFileWriter.atomic_write('data.yaml', blocking=True) as f:
            ...     yaml.safe_dump(descriptor, f)
        """
        filepath = Path(filepath)
        lock_path = filepath.with_suffix(filepath.suffix + '.lock')
        temp_path = filepath.with_suffix(filepath.suffix + '.tmp')

        filepath.parent.mkdir(parents=True, exist_ok=True)
        acquired = False

        try:
            with open(lock_path, 'a', encoding=encoding) as lock_file:
                try:
                    if fcntl is not None:
                        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
                        fcntl.flock(lock_file.fileno(), flags)
                        logger.debug(f"Acquired file lock for {filepath}")
                    else:
                        logger.debug(f"Using file existence lock for {filepath}")
                    acquired = True

                    with open(temp_path, mode, encoding=encoding) as temp_file:
                        yield temp_file

                    # Atomic move to final location
                    os.replace(temp_path, filepath)
                    logger.debug(f"Atomically wrote {filepath}")

                except BlockingIOError as e:
                    logger.error(f"Could not acquire lock for {filepath}: {e}")
                    raise IOError(f"File lock acquisition failed: {e}")

                finally:
                    if fcntl is not None and acquired:
                        try:
                            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                        except OSError as e:
                            logger.warning(f"Failed to release lock: {e}")

        except Exception as e:
            # The temp file belongs to whoever holds the lock
            if acquired and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"Failed to cleanup temp file {temp_path}: {cleanup_error}")

            logger.error(f"Atomic write failed for {filepath}: {e}")
            raise

        finally:
            if acquired and not blocking:
                try:
                    if lock_path.exists():
                        lock_path.unlink()
                except OSError as e:
                    logger.warning(f"Failed to cleanup lock file {lock_path}: {e}")


class LabelFileWriter:
    """
    Serialized, idempotent writer for YOLO label files.

    Several classes can annotate the same Open Images picture, so two class
    workers may target the same ``labels/<split>/<stem>.txt`` at once. Every
    mutation of a label path happens under a per-path ``threading.Lock``
    (workers in this process) and, where ``fcntl`` exists, an exclusive
    ``flock`` on a persistent lock file under ``lock_dir`` (other processes
    running a different class range).

    Merging replaces the lines of one class and keeps every other class's
    lines untouched, so converting a class twice never duplicates boxes.

    Args:
        lock_dir: Directory for the inter-process lock files. None disables
            OS-level locking (in-process locking still applies).
    """

    def __init__(self, lock_dir: Optional[Union[str, Path]] = None):
        self.lock_dir = Path(lock_dir) if lock_dir else None
        # Entries disappear once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _thread_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _lock_file_path(self, label_path: Path) -> Path:
        # Lock files are never deleted: unlinking a lock file another
        # process is blocked on would let a third process in.
        return self.lock_dir / label_path.parent.name / f"{label_path.stem}.lock"

    @contextmanager
    def locked(self, label_path: Union[str, Path]):
        """Hold the exclusive lock for ``label_path`` for the duration of the block."""
        label_path = Path(label_path)
        key = str(label_path.resolve())

        lock = self._thread_lock(key)
        with lock:
            if fcntl is None or self.lock_dir is None:
                yield
                return

            lock_file_path = self._lock_file_path(label_path)
            lock_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(lock_file_path, 'a', encoding='utf-8') as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def read_lines(label_path: Union[str, Path]) -> List[str]:
        """Non-empty lines of a label file, or [] when it does not exist."""
        label_path = Path(label_path)
        if not label_path.exists():
            return []
        try:
            with open(label_path, 'r', encoding='utf-8') as f:
                return [line.rstrip('\n') for line in f if line.strip()]
        except UnicodeDecodeError as e:
            raise ConversionError(f"Cannot decode label file {label_path}: {e}", path=label_path)

    @staticmethod
    def merge_lines(existing: Iterable[str], class_id: int, new_lines: Iterable[str]) -> List[str]:
        """
        Replace the lines of ``class_id`` in ``existing`` with ``new_lines``.

        Lines of other classes keep their order and come first; the new lines
        are de-duplicated preserving their order.
        """
        token = str(class_id)
        kept = [line for line in existing if line.split(maxsplit=1)[:1] != [token]]
        return kept + list(dict.fromkeys(new_lines))

    def merge_class_lines(self, label_path: Union[str, Path], class_id: int,
                          new_lines: Iterable[str]) -> int:
        """
        Merge one class's lines into a label file under the path lock.

        Args:
            label_path: Target ``<stem>.txt`` file
            class_id: Class whose previous lines are replaced
            new_lines: Formatted YOLO lines for that class

        Returns:
            Number of lines written for ``class_id``
        """
        new_lines = list(new_lines)
        with self.locked(label_path):
            return self._write_merged(Path(label_path), class_id, new_lines)

    def _write_merged(self, label_path: Path, class_id: int, new_lines: List[str]) -> int:
        """Rewrite ``label_path``; the caller must hold the path lock."""
        existing = self.read_lines(label_path)
        merged = self.merge_lines(existing, class_id, new_lines)

        if merged == existing:
            logger.debug(f"Label file unchanged: {label_path}")
        else:
            with AtomicFileWriter.atomic_write(label_path) as f:
                f.write(''.join(f"{line}\n" for line in merged))

        return self._count_class(merged, class_id)

    @staticmethod
    def _count_class(lines: Iterable[str], class_id: int) -> int:
        token = str(class_id)
        return sum(1 for line in lines if line.split(maxsplit=1)[:1] == [token])

    def write_example(self, label_path: Union[str, Path], class_id: int, new_lines: Iterable[str],
                      image_source: Union[str, Path], image_target: Union[str, Path]) -> int:
        """
        Copy an image into the output split and merge its label lines.

        The image is copied first so a label file never exists without its
        image. Both steps run under the label path lock.

        Returns:
            Number of lines written for ``class_id``
        """
        new_lines = list(new_lines)
        if not new_lines:
            return 0

        label_path = Path(label_path)
        image_target = Path(image_target)
        with self.locked(label_path):
            image_existed = image_target.exists()
            copy_file_atomic(image_source, image_target)
            try:
                return self._write_merged(label_path, class_id, new_lines)
            except Exception:
                # No image without its label
                if not image_existed:
                    image_target.unlink(missing_ok=True)
                raise


def copy_file_atomic(source: Union[str, Path], target: Union[str, Path]) -> None:
    """Copy ``source`` to ``target`` through a temporary file (never moves the source)."""
    source = Path(source)
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_suffix(target.suffix + '.tmp')
    try:
        shutil.copyfile(source, temp_path)
        os.replace(temp_path, target)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise


class ImageProbe:
    """
    Header-only image dimension probing.

    ``PIL.Image.open`` is lazy: it parses the header to report the size but
    does not decode pixel data until asked to, which keeps the per-image cost
    of conversion low.
    """

    @staticmethod
    def get_dimensions(image_path: Union[str, Path]) -> Tuple[int, int]:
        """
        Return ``(width, height)`` of an image.

        Raises:
            ConversionError: If the file is missing, unreadable, not an image
                or reports a zero dimension.
        """
        image_path = Path(image_path)
        try:
            with Image.open(image_path) as img:
                width, height = img.size
        except (OSError, UnidentifiedImageError, ValueError) as e:
            raise ConversionError(f"Cannot read image {image_path}: {e}", path=image_path) from e

        if width <= 0 or height <= 0:
            raise ConversionError(f"Invalid image size {width}x{height}: {image_path}", path=image_path)

        return width, height


class SystemMonitor:
    """
    Host resource checks used to size the class worker pool.

    Each worker spawns a downloader that itself runs several threads, so the
    pool width follows installed memory rather than the CPU count.
    """

    @staticmethod
    def get_memory_info() -> Dict[str, float]:
        memory = psutil.virtual_memory()
        return {
            'total_gb': memory.total / (1024**3),
            'available_gb': memory.available / (1024**3),
            'percent': memory.percent
        }

    @staticmethod
    def recommend_parallel_jobs(total_memory_gb: Optional[float] = None) -> int:
        """
        Recommend a worker pool width from installed memory.

        2 jobs below 8 GB, 4 jobs below 16 GB, 8 jobs otherwise.

        Args:
            total_memory_gb: Memory size to use instead of querying the host

        Returns:
            Number of parallel class workers
        """
        if total_memory_gb is None:
            total_memory_gb = SystemMonitor.get_memory_info()['total_gb']

        if total_memory_gb < 8:
            jobs = 2
        elif total_memory_gb < 16:
            jobs = 4
        else:
            jobs = 8

        logger.debug(f"Recommending {jobs} parallel jobs for {total_memory_gb:.1f} GB RAM")
        return jobs
