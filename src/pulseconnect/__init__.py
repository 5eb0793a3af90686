"""
PulseConnect - client core for the PulseConnect campus alerting platform.

This package provides the device-side building blocks of the client:
- Offline-first preference synchronization with a remote service
- Custom theme variants stored alongside the preferences
- A resilient WebSocket event channel with bounded reconnection
- Session handling that ties both to authentication transitions
"""

__version__ = "0.1.0"
__author__ = "PulseConnect Team"

__all__ = [
    '__version__',
]
