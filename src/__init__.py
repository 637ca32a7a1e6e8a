"""
Stationery Dataset Builder

Acquires per-class Open Images subsets through the OIDv4 ToolKit, converts
their annotations to YOLO format and verifies per-class quotas, producing an
images/labels tree and a data.yaml for YOLOv5 training.

References:
- Kuznetsova, A., et al. (2020). The Open Images Dataset V4. IJCV.
- YOLOv5 dataset format: https://docs.ultralytics.com/datasets/detect/
"""

__version__ = "1.0.0"
__author__ = "Stationery Dataset Builder Team"
__email__ = "contact@example.com"

# Core modules
from . import config
from . import data_preparation

__all__ = [
    "config",
    "data_preparation"
]
