"""
Tests for the PulseConnect client core.
"""
