"""
Centralized configuration management for the Stationery Dataset Builder.

This module implements the configuration layer for the acquisition pipeline:
dataset output layout, per-class quotas, the external OIDv4 ToolKit downloader,
conversion settings, the hyperparameters printed for the external trainer and
the console report styling.

Values are read from a YAML file and deep-merged over in-code defaults, so a
partial config file only needs the keys it overrides.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import os
import sys
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union

logger = logging.getLogger(__name__)


class Config:
    """
    Centralized configuration management for the Stationery Dataset Builder.

    Provides dot-notation access to every parameter of the pipeline:

    - Output dataset layout and descriptor settings
    - Per-class train/val quotas and the completion threshold
    - OIDv4 ToolKit location and invocation parameters
    - Worker pool width for class-level parallelism
    - Console report colors (passed into the report component)
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to custom configuration file.
                        If None, uses default config.yaml in project root.
        """
        self.project_root = Path(__file__).parent.parent.parent
        self.config_path = Path(config_path) if config_path else self.project_root / "config.yaml"
        self.config = self._load_config()

        # Set up logging after config is loaded
        self._setup_logging()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from YAML file over the built-in defaults.

        Returns:
            Dictionary containing all configuration parameters
        """
        default_config = self._get_default_config()

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    file_config = yaml.safe_load(f) or {}

                # Deep merge configurations (file overrides defaults)
                merged_config = self._deep_merge(default_config, file_config)
                logger.info(f"Configuration loaded from {self.config_path}")
                return merged_config

            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {self.config_path}: {e}")
                logger.info("Using default configuration")

        else:
            # Save default config for reference
            self._save_config(default_config)
            logger.info(f"Created default configuration at {self.config_path}")

        return default_config

    def _get_default_config(self) -> Dict[str, Any]:
        """
        Generate the default configuration.

        Quotas default to 250 train and 50 val
        images per class, complete at 90% of the train target.

        Returns:
            Dictionary with default configuration parameters
        """
        datasets_dir = self.project_root / 'datasets'

        return {
            'project': {
                'name': 'stationery_dataset_builder',
                'version': '1.0.0',
                'description': 'Open Images acquisition and YOLO conversion for stationery detection'
            },

            # Output dataset (consumed by the external trainer)
            'dataset': {
                'output_dir': str(datasets_dir / 'processed' / 'stationery_32class'),
                'descriptor_name': 'data.yaml',
                'descriptor_header': 'YOLOv5 Stationery Dataset (32 Classes)'
            },

            # Per-class quotas
            'quota': {
                'per_class_train_target': 250,
                'per_class_val_target': 50,
                'completion_threshold_percent': 90
            },

            # External downloader (OIDv4 ToolKit)
            'acquisition': {
                'toolkit_dir': str(datasets_dir / 'toolkits' / 'OIDv4_ToolKit'),
                'python_executable': sys.executable,
                'n_threads': 4,                     # Concurrency hint passed to the toolkit
                'parallel_jobs': 4,                 # 2-4 for 8GB RAM, 4-8 for 16GB+ ('auto' to size from memory)
                'download_timeout': None,           # Seconds per child process, None waits forever
                'cleanup_raw_cache': False
            },

            # Coordinate conversion
            'conversion': {
                'precision': 6
            },

            # External trainer hyperparameters (printed in the report)
            'training': {
                'entry_point': 'train.py',
                'weights': 'yolov5n.pt',
                'img_size': 640,
                'batch_size': 32,
                'epochs': 200,
                'device': '0',
                'workers': 8
            },

            # Console report styling
            'report': {
                'use_color': True,
                'colors': {
                    'ok': '\033[0;32m',
                    'warn': '\033[1;33m',
                    'partial': '\033[0;33m',
                    'error': '\033[0;31m',
                    'reset': '\033[0m'
                },
                'reports_subdir': 'reports',
                'write_summary_files': True
            },

            # Logging configuration
            'logging': {
                'level': 'INFO',
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'date_format': '%Y-%m-%d %H:%M:%S'
            }
        }

    def _deep_merge(self, dict1: Dict[str, Any], dict2: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries, with dict2 values taking precedence.

        Args:
            dict1: Base dictionary
            dict2: Override dictionary

        Returns:
            Merged dictionary
        """
        result = dict1.copy()

        for key, value in dict2.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _save_config(self, config: Dict[str, Any]) -> None:
        """
        Save configuration to YAML file.

        Args:
            config: Configuration dictionary to save
        """
        try:
            os.makedirs(self.config_path.parent, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(
                    config,
                    f,
                    default_flow_style=False,
                    indent=2,
                    sort_keys=False,
                    allow_unicode=True
                )

        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")

    def _setup_logging(self) -> None:
        """Set up logging configuration based on config parameters."""
        log_level = getattr(logging, str(self.get('logging.level', 'INFO')).upper(), logging.INFO)
        log_format = self.get('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        logging.basicConfig(
            level=log_level,
            format=log_format,
            datefmt=self.get('logging.date_format', '%Y-%m-%d %H:%M:%S')
        )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'quota.per_class_train_target')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Examples:
            >>> config = Config()
            >>> target = config.get('quota.per_class_train_target')
            >>> jobs = config.get('acquisition.parallel_jobs', 4)
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split('.')
        config_ref = self.config

        # Navigate to parent dictionary
        for k in keys[:-1]:
            if k not in config_ref:
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

    def update(self, updates: Dict[str, Any]) -> None:
        """
        Update multiple configuration values.

        Args:
            updates: Dictionary of key-value pairs to update
        """
        for key, value in updates.items():
            self.set(key, value)

    def save(self) -> None:
        """Save current configuration to file."""
        self._save_config(self.config)
        logger.info(f"Configuration saved to {self.config_path}")

    def validate(self) -> Dict[str, Any]:
        """
        Validate configuration parameters for consistency and correctness.

        Returns:
            Dictionary with validation results
        """
        validation_results = {
            'valid': True,
            'errors': [],
            'warnings': []
        }

        train_target = self.get('quota.per_class_train_target', 250)
        val_target = self.get('quota.per_class_val_target', 50)
        threshold = self.get('quota.completion_threshold_percent', 90)

        for name, value in (('per_class_train_target', train_target),
                            ('per_class_val_target', val_target)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                validation_results['errors'].append(f"quota.{name} must be a positive integer, got {value!r}")
                validation_results['valid'] = False

        if not isinstance(threshold, int) or isinstance(threshold, bool) or not 1 <= threshold <= 100:
            validation_results['errors'].append(
                f"quota.completion_threshold_percent must be between 1 and 100, got {threshold!r}"
            )
            validation_results['valid'] = False

        parallel_jobs = self.get('acquisition.parallel_jobs', 4)
        if parallel_jobs != 'auto' and (not isinstance(parallel_jobs, int) or parallel_jobs < 1):
            validation_results['errors'].append(
                f"acquisition.parallel_jobs must be >= 1 or 'auto', got {parallel_jobs!r}"
            )
            validation_results['valid'] = False
        elif isinstance(parallel_jobs, int) and parallel_jobs > (os.cpu_count() or 1) * 4:
            validation_results['warnings'].append(
                f"parallel_jobs ({parallel_jobs}) is far above the CPU count ({os.cpu_count()})"
            )

        precision = self.get('conversion.precision', 6)
        if not isinstance(precision, int) or not 1 <= precision <= 12:
            validation_results['errors'].append(f"conversion.precision must be between 1 and 12, got {precision!r}")
            validation_results['valid'] = False

        toolkit_dir = Path(self.get('acquisition.toolkit_dir', ''))
        if not (toolkit_dir / 'main.py').exists():
            validation_results['warnings'].append(
                f"OIDv4 ToolKit not found at {toolkit_dir}; only cached raw data can be converted"
            )

        return validation_results

    def get_data_paths(self) -> Dict[str, Path]:
        """
        Get all relevant data paths as Path objects.

        Returns:
            Dictionary mapping path names to Path objects
        """
        output_dir = Path(self.get('dataset.output_dir'))
        toolkit_dir = Path(self.get('acquisition.toolkit_dir'))

        return {
            'output': output_dir,
            'images_train': output_dir / 'images' / 'train',
            'images_val': output_dir / 'images' / 'val',
            'labels_train': output_dir / 'labels' / 'train',
            'labels_val': output_dir / 'labels' / 'val',
            'descriptor': output_dir / self.get('dataset.descriptor_name', 'data.yaml'),
            'reports': output_dir / self.get('report.reports_subdir', 'reports'),
            'toolkit': toolkit_dir,
            'raw_cache': toolkit_dir / 'OID'
        }

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"Config(project={self.get('project.name')}, version={self.get('project.version')})"

    def __repr__(self) -> str:
        """Detailed string representation."""
        return f"Config(config_path='{self.config_path}', loaded={self.config_path.exists()})"
