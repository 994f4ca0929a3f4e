"""Runtime helpers used by the simulation runner."""

from .bencher import Bencher, format_duration, write_sample
from .progress import ProgressReporter

__all__ = ["Bencher", "ProgressReporter", "format_duration", "write_sample"]
