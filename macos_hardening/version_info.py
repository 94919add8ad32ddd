"""
Version information for the macOS Hardening Tool
"""

__version__ = "2.0.0"
