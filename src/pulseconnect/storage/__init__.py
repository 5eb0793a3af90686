"""
Storage components for the PulseConnect client core.
"""

from .slot import DurableSlot, MemorySlot, FileSlot

__all__ = [
    'DurableSlot',
    'MemorySlot',
    'FileSlot',
]
