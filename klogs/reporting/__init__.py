"""Live progress reporting for log transfers."""

from .progress import ProgressReporter, format_bytes

__all__ = ["ProgressReporter", "format_bytes"]
