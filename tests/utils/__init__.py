"""
Test utilities for PulseConnect.
"""

from .async_helpers import wait_for_condition, assert_completes_within, drain

__all__ = [
    "wait_for_condition",
    "assert_completes_within",
    "drain",
]
