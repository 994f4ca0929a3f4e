"""Background persistence of duration samples.

A :class:`Bencher` owns a sink file and a worker thread. Measurements are
enqueued when their scope ends and the worker appends one
``<seconds>.<nanoseconds:09>`` line per sample. :meth:`Bencher.flush` sends a
sentinel and joins the worker, so every queued sample is on disk afterwards.
"""
from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Iterator, Optional, TextIO, Union

from ..errors import BencherClosedError
from ..io.paths import create_file_recursively

logger = logging.getLogger(__name__)

_DONE = object()


def format_duration(nanoseconds: int) -> str:
    secs, nanos = divmod(int(nanoseconds), 1_000_000_000)
    return f"{secs}.{nanos:09d}"


def write_sample(path: Union[str, Path], nanoseconds: int) -> Path:
    """Write a single sample to a fresh file, bypassing any worker thread."""

    target = create_file_recursively(path)
    target.write_text(format_duration(nanoseconds) + "\n", encoding="utf-8")
    return target


class Bencher:
    def __init__(self, sink_path: Union[str, Path]) -> None:
        self.path = create_file_recursively(sink_path)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False
        self._worker: Optional[threading.Thread] = threading.Thread(
            target=self._persist, name=f"bencher-{self.path.name}", daemon=True
        )
        self._worker.start()

    def _persist(self) -> None:
        with self.path.open("a", encoding="utf-8") as sink:
            self._drain(sink)

    def _drain(self, sink: TextIO) -> None:
        while True:
            item = self._queue.get()
            if item is _DONE:
                return
            sink.write(format_duration(item) + "\n")
            sink.flush()

    @contextlib.contextmanager
    def bench(self) -> Iterator[None]:
        """Measure the enclosed block and enqueue its duration at exit."""

        if self._closed:
            raise BencherClosedError("tried to benchmark but the bencher has already been flushed")
        start = time.perf_counter_ns()
        try:
            yield
        finally:
            self._queue.put(time.perf_counter_ns() - start)

    def record(self, nanoseconds: int) -> None:
        if self._closed:
            raise BencherClosedError("tried to benchmark but the bencher has already been flushed")
        self._queue.put(int(nanoseconds))

    def flush(self) -> None:
        """Persist every queued sample and stop the worker. Idempotent."""

        if self._worker is None:
            return
        self._closed = True
        self._queue.put(_DONE)
        self._worker.join()
        self._worker = None
        logger.debug("benchmark sink %s closed", self.path)

    close = flush

    @property
    def closed(self) -> bool:
        return self._closed


__all__ = ["Bencher", "format_duration", "write_sample"]
