"""Utility functions for Album Organizer."""

from .checksums import combined_checksum, file_checksum
from .decorators import handle_errors, retry, track_performance

__all__ = [
    "combined_checksum",
    "file_checksum",
    "handle_errors",
    "retry",
    "track_performance",
]
