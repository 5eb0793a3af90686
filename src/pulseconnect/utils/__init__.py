"""Utility modules for the PulseConnect client core"""
