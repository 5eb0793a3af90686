"""
Session handling for the PulseConnect client core.
"""

from .context import SessionContext
from .coordinator import SessionCoordinator

__all__ = [
    'SessionContext',
    'SessionCoordinator',
]
