#!/usr/bin/env python3
"""
PulseConnect - Main entry point for python -m pulseconnect
"""

from pulseconnect.cli import main

if __name__ == "__main__":
    main()
