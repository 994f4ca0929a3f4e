"""Lightweight terminal progress reporting for simulation iterations."""

from __future__ import annotations

import math
import sys
import time
from typing import TextIO

ETA_EWMA_ALPHA = 0.3
ETA_MIN_SAMPLES = 2


class ProgressReporter:
    """Terminal progress bar over iterations with ETA feedback."""

    def __init__(
        self,
        total_iterations: int,
        *,
        enabled: bool = False,
        stream: TextIO | None = None,
        header: str | None = None,
    ) -> None:
        self.enabled = bool(enabled and total_iterations > 0)
        self.total = max(int(total_iterations), 1)
        self.stream = stream if stream is not None else sys.stdout
        self.header = header
        self.start = time.monotonic()
        self._finished = False
        self._header_emitted = False
        self._isatty = bool(getattr(self.stream, "isatty", lambda: False)())
        self._eta_ewma_s: float | None = None
        self._eta_samples = 0
        self._last_wall: float | None = None

    def emit_header(self) -> None:
        if not self.enabled or self._header_emitted:
            return
        if self.header:
            self.stream.write(f"{self.header}\n")
            self.stream.flush()
        self._header_emitted = True

    def update(self, iteration: int, *, synthesized: bool = False) -> None:
        """Render the bar after ``iteration`` (1-based) has completed."""

        if not self.enabled or self._finished:
            return
        now = time.monotonic()
        self._update_eta(now)
        frac = min(max(iteration / self.total, 0.0), 1.0)
        is_last = iteration >= self.total
        bar_width = 28
        filled = int(bar_width * frac)
        bar = "#" * filled + "-" * (bar_width - filled)
        remaining = max(self.total - iteration, 0)
        eta_text = "ETA ?"
        if self._eta_ewma_s is not None and self._eta_samples >= ETA_MIN_SAMPLES:
            eta_text = _format_eta(self._eta_ewma_s * remaining)
        marker = " fx" if synthesized else ""
        line = f"[{bar}] {frac * 100:5.1f}% iteration {iteration}/{self.total} {eta_text}{marker}"
        if self._isatty:
            self.stream.write(f"\r\033[2K{line}")
            if is_last:
                self.stream.write("\n")
        else:
            self.stream.write(f"{line}\n")
        if is_last:
            self._finished = True
        self.stream.flush()

    def _update_eta(self, now: float) -> None:
        last = self._last_wall if self._last_wall is not None else self.start
        seconds = now - last
        if math.isfinite(seconds) and seconds > 0.0:
            if self._eta_ewma_s is None:
                self._eta_ewma_s = seconds
            else:
                self._eta_ewma_s = ETA_EWMA_ALPHA * seconds + (1.0 - ETA_EWMA_ALPHA) * self._eta_ewma_s
            self._eta_samples += 1
        self._last_wall = now


def _format_eta(seconds: float) -> str:
    if not math.isfinite(seconds) or seconds < 0.0:
        return "ETA ?"
    if seconds >= 3600.0:
        return f"ETA {seconds/3600.0:.1f}h"
    if seconds >= 60.0:
        return f"ETA {seconds/60.0:.1f}m"
    return f"ETA {seconds:.0f}s"
