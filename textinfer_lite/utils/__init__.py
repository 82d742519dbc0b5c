"""
Utilities and helper functions.

Provides:
- Logging configuration
"""

from textinfer_lite.utils.logging import DEFAULT_FORMAT, setup_logging

__all__ = ["DEFAULT_FORMAT", "setup_logging"]
