"""
Per-class acquisition planning and execution.

Planning is a pure function of two counts read from disk: how many train
images of the class are already converted, and how many raw train images the
downloader has cached. Classes that need work are processed on a bounded
thread pool, one class per worker, end to end (downloads, then train
conversion, then val conversion).

Failures stay inside their class: a failed download or conversion is logged,
recorded on the class result, and the rest of the batch carries on.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .classes import ClassDefinition, ClassRegistry, Quota
from .converter import AnnotationConverter, ConversionStats
from .downloader import Downloader
from .errors import AcquisitionError, ConfigurationError
from .state import count_normalized

logger = logging.getLogger(__name__)

SPLITS = ('train', 'val')


class Action(Enum):
    SATISFIED = 'satisfied'
    CONVERT = 'convert'
    DOWNLOAD = 'download'


class ClassPlan:
    """What to do for one class, with the counts the decision was made from."""

    def __init__(self, class_def: ClassDefinition, action: Action, normalized_count: int,
                 raw_count: int, needs_more_raw: bool = False):
        self.class_def = class_def
        self.action = action
        self.normalized_count = normalized_count
        self.raw_count = raw_count
        self.needs_more_raw = needs_more_raw

    @property
    def needs_work(self) -> bool:
        return self.action is not Action.SATISFIED

    def describe(self, quota: Quota) -> str:
        prefix = f"Class {self.class_def}: "
        if self.action is Action.SATISFIED:
            return prefix + f"{self.normalized_count}/{quota.per_class_train_target} - OK"
        if self.action is Action.CONVERT:
            return prefix + f"Processed: {self.normalized_count}, Raw: {self.raw_count} - Need conversion"
        if self.needs_more_raw:
            return (prefix + f"{self.normalized_count}/{quota.per_class_train_target} - Insufficient "
                    f"(only {self.raw_count} available), downloading more")
        return prefix + f"Processed: {self.normalized_count}, Raw: {self.raw_count} - Need download"

    def __repr__(self) -> str:
        return (f"ClassPlan(class_id={self.class_def.id}, action={self.action.value}, "
                f"normalized={self.normalized_count}, raw={self.raw_count}, "
                f"needs_more_raw={self.needs_more_raw})")


def plan_class(class_def: ClassDefinition, normalized_count: int, raw_count: int, quota: Quota) -> ClassPlan:
    """
    Decide the action for one class. Earlier rules win.

    1. Enough converted examples: nothing to do.
    2. Raw cache already holds the full train target: convert only.
    3. Everything cached is converted but it is not enough: download more.
    4. More raw images than converted ones: convert only.
    5. Nothing cached: download.
    """
    if normalized_count >= quota.min_required_images:
        return ClassPlan(class_def, Action.SATISFIED, normalized_count, raw_count)
    if raw_count >= quota.per_class_train_target:
        return ClassPlan(class_def, Action.CONVERT, normalized_count, raw_count)
    if normalized_count > 0 and normalized_count >= raw_count:
        return ClassPlan(class_def, Action.DOWNLOAD, normalized_count, raw_count, needs_more_raw=True)
    if raw_count > normalized_count:
        return ClassPlan(class_def, Action.CONVERT, normalized_count, raw_count)
    return ClassPlan(class_def, Action.DOWNLOAD, normalized_count, raw_count)


class ClassResult:
    """Outcome of processing one class."""

    def __init__(self, plan: ClassPlan):
        self.plan = plan
        self.downloads: Dict[str, str] = {}
        self.conversions: Dict[str, ConversionStats] = {}
        self.errors: List[str] = []
        self.final_count: Optional[int] = None

    @property
    def class_def(self) -> ClassDefinition:
        return self.plan.class_def

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict:
        return {
            'class_id': self.class_def.id,
            'name': self.class_def.name,
            'action': self.plan.action.value,
            'normalized_before': self.plan.normalized_count,
            'raw_before': self.plan.raw_count,
            'normalized_after': self.final_count,
            'downloads': dict(self.downloads),
            'conversions': {split: stats.to_dict() for split, stats in self.conversions.items()},
            'errors': list(self.errors),
        }


class AcquisitionScheduler:
    """
    Plans and runs acquisition for a range of classes.

    Args:
        registry: Class taxonomy
        quota: Per-class targets
        downloader: Acquisition tool adapter
        converter: Converter writing into the output tree
        parallel_jobs: Worker pool width
        cleanup_raw_cache: Remove a class's raw cache once it is satisfied
    """

    def __init__(self, registry: ClassRegistry, quota: Quota, downloader: Downloader,
                 converter: AnnotationConverter, parallel_jobs: int = 4, cleanup_raw_cache: bool = False):
        if parallel_jobs < 1:
            raise ConfigurationError(f"parallel_jobs must be >= 1, got {parallel_jobs}")

        self.registry = registry
        self.quota = quota
        self.downloader = downloader
        self.converter = converter
        self.parallel_jobs = parallel_jobs
        self.cleanup_raw_cache = cleanup_raw_cache

    @property
    def train_label_dir(self) -> Path:
        return self.converter.label_dir('train')

    def plan(self, start: int, end: int) -> List[ClassPlan]:
        """Plan every class with ``start <= id <= end``."""
        if start < 0 or start > end or end > self.registry.max_class_id:
            raise ConfigurationError(
                f"Invalid class range [{start}, {end}], expected 0 <= start <= end <= {self.registry.max_class_id}"
            )

        plans = []
        for class_def in self.registry.in_range(start, end):
            normalized_count = count_normalized(self.train_label_dir, class_def.id)
            raw_count = self.downloader.cache_entry(class_def, 'train').image_count()
            plan = plan_class(class_def, normalized_count, raw_count, self.quota)
            logger.info(f"  - {plan.describe(self.quota)}")
            plans.append(plan)
        return plans

    def run(self, plans: List[ClassPlan]) -> List[ClassResult]:
        """
        Process every plan that needs work and wait for all of them.

        Returns:
            Results of the processed classes, sorted by class id
        """
        work = [plan for plan in plans if plan.needs_work]
        if not work:
            logger.info("All classes have sufficient images. No download needed.")
            return []

        workers = min(self.parallel_jobs, len(work))
        logger.info(f"Processing {len(work)} classes with {workers} parallel jobs")

        results = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='class-worker') as pool:
            futures = {pool.submit(self.process_class, plan): plan for plan in work}
            for completed, future in enumerate(as_completed(futures), start=1):
                plan = futures[future]
                try:
                    result = future.result()
                except Exception as e:  # process_class records its own errors
                    logger.error(f"Worker for {plan.class_def} crashed: {e}")
                    result = ClassResult(plan)
                    result.errors.append(str(e))
                results.append(result)

                status = "Complete" if result.succeeded else "Finished with errors"
                logger.info(f"[{completed}/{len(work)}] {plan.class_def}: {status} "
                            f"({result.final_count} train images)")

        return sorted(results, key=lambda r: r.class_def.id)

    def process_class(self, plan: ClassPlan) -> ClassResult:
        """Download what is missing for one class, then convert both splits."""
        class_def = plan.class_def
        result = ClassResult(plan)
        logger.info(f"Processing {class_def} (code {class_def.remote_code}, action {plan.action.value})")

        for split in SPLITS:
            result.downloads[split] = self._download_split(plan, split, result)

        for split in SPLITS:
            try:
                entry = self.downloader.cache_entry(class_def, split)
                result.conversions[split] = self.converter.convert_split(class_def, entry, split)
            except Exception as e:
                logger.error(f"Conversion of {class_def} ({split}) failed: {e}")
                result.errors.append(f"conversion {split}: {e}")

        result.final_count = count_normalized(self.train_label_dir, class_def.id)

        if self.cleanup_raw_cache and result.final_count >= self.quota.min_required_images:
            try:
                self.downloader.cleanup(class_def)
            except OSError as e:
                logger.warning(f"Could not remove raw cache of {class_def}: {e}")

        return result

    def _download_split(self, plan: ClassPlan, split: str, result: ClassResult) -> str:
        class_def = plan.class_def
        target = self.quota.target_for_split(split)

        if split == 'train' and plan.action is not Action.DOWNLOAD:
            return 'not needed'

        raw_count = self.downloader.cache_entry(class_def, split).image_count()
        if raw_count >= target:
            logger.info(f"{class_def} {split} raw images already exist ({raw_count}/{target}). Skipping download.")
            return 'cached'

        try:
            entry = self.downloader.download(class_def, split, target)
        except AcquisitionError as e:
            logger.error(f"Download failed: {e}")
            result.errors.append(f"download {split}: {e}")
            return 'failed'

        logger.info(f"{class_def} {split}: {entry.image_count()} downloaded")
        return 'downloaded'
