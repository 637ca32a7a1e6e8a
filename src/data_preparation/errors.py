"""
Exception hierarchy for the dataset acquisition pipeline.

Only ConfigurationError is fatal. The others are raised by library code and
caught at the image or class boundary by the converter and the scheduler.
"""


class DatasetBuildError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(DatasetBuildError):
    """Invalid class range or quota settings. Raised before any work begins."""


class AcquisitionError(DatasetBuildError):
    """The external downloader failed for one (class, split)."""

    def __init__(self, message: str, class_name: str = None, split: str = None, returncode: int = None):
        super().__init__(message)
        self.class_name = class_name
        self.split = split
        self.returncode = returncode


class ConversionError(DatasetBuildError):
    """An image or annotation line could not be converted."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class VerificationShortfall(DatasetBuildError):
    """One or more classes are still below the completion threshold."""

    def __init__(self, missing):
        self.missing = list(missing)
        names = ", ".join(f"{m['name']} ({m['current']}/{m['required']})" for m in self.missing)
        super().__init__(f"{len(self.missing)} classes below threshold: {names}")
