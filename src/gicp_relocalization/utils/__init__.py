"""
Utility Functions Module

This module provides common utilities used across the relocalization project:
- Logging setup
- Typed YAML configuration
- Rigid transform math and the stamped transform message
"""

from .logging import setup_logger, configure_package_logging
from .config import AppConfig, load_config
from .transforms import (
    StampedTransform,
    apply_transform,
    se3_exp,
    skew,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "setup_logger",
    "configure_package_logging",
    "AppConfig",
    "load_config",
    "StampedTransform",
    "apply_transform",
    "se3_exp",
    "skew",
    "save_transform_matrix",
    "load_transform_matrix",
]
