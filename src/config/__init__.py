"""
Configuration management for the Stationery Dataset Builder.

Provides centralized configuration handling with support for:
- Dataset output layout and descriptor generation
- Per-class quotas and completion thresholds
- OIDv4 ToolKit downloader parameters
- Report styling and logging
"""

from .config import Config

__all__ = ["Config"]
