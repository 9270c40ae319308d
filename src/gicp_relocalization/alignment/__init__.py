"""
Spatial Alignment Module

This module provides the generalized-ICP solver used to align incoming scans
to the preprocessed reference map.
"""

from .gicp_registration import GICPRegistration, RegistrationResult

__all__ = [
    "GICPRegistration",
    "RegistrationResult",
]
