"""
Data preparation for the Stationery Dataset Builder.

Implements the acquisition pipeline with:
- Filesystem-derived, resumable per-class state
- OIDv4 ToolKit download orchestration
- OID to YOLO coordinate conversion with locked label merging
- Verification, data.yaml generation and reporting
"""

from .classes import ClassDefinition, ClassRegistry, Quota, STATIONERY_CLASSES
from .errors import (
    DatasetBuildError,
    ConfigurationError,
    AcquisitionError,
    ConversionError,
    VerificationShortfall
)
from .utils import (
    AtomicFileWriter,
    LabelFileWriter,
    ImageProbe,
    SystemMonitor
)
from .state import count_normalized, count_raw, RawCacheLayout
from .downloader import Downloader, OIDToolkitDownloader, RawCacheEntry
from .converter import AnnotationConverter, corners_to_yolo, format_label_line
from .scheduler import AcquisitionScheduler, Action, ClassPlan, plan_class
from .report import DatasetVerifier, ReportStyle, VerificationReport
from .build_dataset import DatasetBuilder

__all__ = [
    "ClassDefinition",
    "ClassRegistry",
    "Quota",
    "STATIONERY_CLASSES",
    "DatasetBuildError",
    "ConfigurationError",
    "AcquisitionError",
    "ConversionError",
    "VerificationShortfall",
    "AtomicFileWriter",
    "LabelFileWriter",
    "ImageProbe",
    "SystemMonitor",
    "count_normalized",
    "count_raw",
    "RawCacheLayout",
    "Downloader",
    "OIDToolkitDownloader",
    "RawCacheEntry",
    "AnnotationConverter",
    "corners_to_yolo",
    "format_label_line",
    "AcquisitionScheduler",
    "Action",
    "ClassPlan",
    "plan_class",
    "DatasetVerifier",
    "ReportStyle",
    "VerificationReport",
    "DatasetBuilder"
]
