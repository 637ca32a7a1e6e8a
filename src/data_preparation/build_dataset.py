"""
Dataset construction for the Stationery Dataset Builder.

This module orchestrates the acquisition pipeline: it plans which classes need
work from the current filesystem state, downloads and converts them on a
bounded worker pool, then verifies the full taxonomy and regenerates the
dataset descriptor.

Key Features:
- Resumable: progress is re-derived from the output and raw cache directories
- Idempotent: satisfied classes are skipped and re-conversion never duplicates boxes
- Bounded class-level parallelism
- Advisory end-of-run report with a re-run suggestion

Usage:
    stationery-build-dataset            # Process all 32 classes (0-31)
    stationery-build-dataset 1 5        # Process only classes ID 1-5
    stationery-build-dataset 6 6        # Process only class ID 6

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import re
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .classes import ClassRegistry, Quota
from .converter import AnnotationConverter
from .downloader import Downloader, OIDToolkitDownloader
from .errors import ConfigurationError, VerificationShortfall
from .report import DatasetVerifier, ReportStyle, build_training_command
from .scheduler import AcquisitionScheduler
from .utils import LabelFileWriter, SystemMonitor

logger = logging.getLogger(__name__)

_CLASS_ID_PATTERN = re.compile(r'^[0-9]+$')


def parse_class_range(start_arg: Optional[str], end_arg: Optional[str], max_class_id: int) -> Tuple[int, int]:
    """
    Validate the CLI class range.

    Args:
        start_arg: First class id as typed, None for 0
        end_arg: Last class id as typed, None for ``max_class_id``
        max_class_id: Highest id in the registry

    Returns:
        ``(start, end)`` as integers

    Raises:
        ConfigurationError: If an argument is not a non-negative integer, the
            range is reversed, or an id exceeds ``max_class_id``.
    """
    start_arg = '0' if start_arg is None else str(start_arg)
    end_arg = str(max_class_id) if end_arg is None else str(end_arg)

    if not _CLASS_ID_PATTERN.match(start_arg) or not _CLASS_ID_PATTERN.match(end_arg):
        raise ConfigurationError(f"Arguments must be numbers (class IDs 0-{max_class_id}), "
                                 f"got {start_arg!r} and {end_arg!r}")

    start, end = int(start_arg), int(end_arg)
    if start > end:
        raise ConfigurationError(f"START_ID ({start}) must be <= END_ID ({end})")
    if start > max_class_id or end > max_class_id:
        raise ConfigurationError(f"Class IDs must be 0-{max_class_id}")

    return start, end


class DatasetBuilder:
    """
    Primary dataset acquisition and conversion pipeline.

    Every run starts from what is on disk, so the builder can be invoked
    repeatedly (for the full taxonomy or a narrower class range) until all
    classes reach their quota.
    """

    def __init__(self, config, registry: Optional[ClassRegistry] = None,
                 downloader: Optional[Downloader] = None, parallel_jobs: Optional[int] = None):
        """
        Initialize dataset builder with configuration.

        Args:
            config: Configuration object with data paths and parameters
            registry: Class taxonomy (defaults to the 32 stationery classes)
            downloader: Acquisition tool adapter (defaults to the OIDv4 ToolKit)
            parallel_jobs: Worker pool width overriding the configuration
        """
        self.config = config
        self.data_paths = config.get_data_paths()
        self.registry = registry or ClassRegistry()
        self.quota = Quota.from_config(config)
        self.downloader = downloader or OIDToolkitDownloader.from_config(config)
        self.parallel_jobs = parallel_jobs or self._resolve_parallel_jobs()

        self.label_writer = LabelFileWriter(self.data_paths['output'] / '.locks')
        self.converter = AnnotationConverter.from_config(config, label_writer=self.label_writer)
        self.scheduler = AcquisitionScheduler(
            registry=self.registry,
            quota=self.quota,
            downloader=self.downloader,
            converter=self.converter,
            parallel_jobs=self.parallel_jobs,
            cleanup_raw_cache=config.get('acquisition.cleanup_raw_cache', False),
        )
        self.verifier = DatasetVerifier.from_config(config, self.registry, self.quota)

        logger.info(f"Initialized DatasetBuilder with {len(self.registry)} classes, {self.quota}")
        logger.info(f"Data paths: {self.data_paths}")

    def _resolve_parallel_jobs(self) -> int:
        parallel_jobs = self.config.get('acquisition.parallel_jobs', 4)
        if parallel_jobs == 'auto':
            return SystemMonitor.recommend_parallel_jobs()
        return int(parallel_jobs)

    def prepare_output_dirs(self) -> None:
        for key in ('images_train', 'images_val', 'labels_train', 'labels_val'):
            self.data_paths[key].mkdir(parents=True, exist_ok=True)
        logger.info(f"Output directory: {self.data_paths['output']}")

    def build_dataset(self, start: Optional[int] = None, end: Optional[int] = None) -> Dict[str, Any]:
        """
        Main orchestration function for dataset building.

        Args:
            start: First class id to acquire (default 0)
            end: Last class id to acquire (default: last class)

        Returns:
            Dictionary with plans, per-class results and the verification report
        """
        start = 0 if start is None else start
        end = self.registry.max_class_id if end is None else end

        logger.info(f"Processing class IDs: {start} to {end}")

        logger.info("Step 1/4: Preparing output directory")
        self.prepare_output_dirs()

        logger.info(f"Step 2/4: Checking existing data (ID {start}-{end})")
        plans = self.scheduler.plan(start, end)

        logger.info(f"Step 3/4: Downloading and converting ({self.parallel_jobs} parallel jobs)")
        results = self.scheduler.run(plans)

        logger.info("Step 4/4: Final verification")
        report = self.verifier.verify(run_results=results, class_range=(start, end))

        failed = [r for r in results if not r.succeeded]
        if failed:
            logger.warning(f"{len(failed)} classes finished with errors: "
                           f"{', '.join(r.class_def.name for r in failed)}")

        return {
            'class_range': (start, end),
            'plans': plans,
            'results': results,
            'report': report,
        }


def main(argv=None) -> int:
    """
    Main entry point for dataset building.

    The shortfall report is advisory: a run that leaves classes below the
    threshold still exits 0, and re-running the same range converges on the
    quota. ``--strict`` opts in to a failing status for that case.

    Returns:
        Process exit code: 0 on success or shortfall, 1 for configuration
        errors or an unwritable output, 2 when ``--strict`` is set and
        classes remain below the threshold.
    """
    import argparse

    parser = argparse.ArgumentParser(description='Build the Open Images stationery detection dataset')
    parser.add_argument('start_id', nargs='?', help='First class ID (default: 0)')
    parser.add_argument('end_id', nargs='?', help='Last class ID (default: last class)')
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('--output-dir', type=str, help='Override dataset.output_dir')
    parser.add_argument('--toolkit-dir', type=str, help='Override acquisition.toolkit_dir')
    parser.add_argument('--jobs', type=str, help="Parallel class workers (integer or 'auto')")
    parser.add_argument('--strict', action='store_true',
                        help='Exit with status 2 if classes remain incomplete (default: report only, exit 0)')
    parser.add_argument('--no-color', action='store_true', help='Disable colored report output')
    parser.add_argument('--verbose', action='store_true', help='Verbose logging')

    args = parser.parse_args(argv)

    # Validate the range before touching the filesystem
    registry = ClassRegistry()
    try:
        start, end = parse_class_range(args.start_id, args.end_id, registry.max_class_id)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        from ..config import Config

        config = Config(args.config)
        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)

        if args.output_dir:
            config.set('dataset.output_dir', str(Path(args.output_dir).resolve()))
        if args.toolkit_dir:
            config.set('acquisition.toolkit_dir', str(Path(args.toolkit_dir).resolve()))
        if args.jobs:
            config.set('acquisition.parallel_jobs', args.jobs if args.jobs == 'auto' else _parse_jobs(args.jobs))
        if args.no_color:
            config.set('report.use_color', False)

        validation_results = config.validate()
        for warning in validation_results['warnings']:
            logger.warning(warning)
        if not validation_results['valid']:
            raise ConfigurationError("Configuration validation failed: " + "; ".join(validation_results['errors']))

        builder = DatasetBuilder(config, registry=registry)
        results = builder.build_dataset(start, end)

    except ConfigurationError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error(f"Dataset build failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    report = results['report']
    print(report.render(ReportStyle.from_config(config), build_training_command(config, report.descriptor_path)))

    if args.strict:
        try:
            report.raise_for_shortfall()
        except VerificationShortfall as e:
            logger.error(str(e))
            return 2

    return 0


def _parse_jobs(value: str) -> int:
    if not _CLASS_ID_PATTERN.match(value) or int(value) < 1:
        raise ConfigurationError(f"--jobs must be a positive integer or 'auto', got {value!r}")
    return int(value)


if __name__ == "__main__":
    sys.exit(main())
