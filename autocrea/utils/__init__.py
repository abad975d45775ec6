"""Utility functions for AUTOCREA."""

from autocrea.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
