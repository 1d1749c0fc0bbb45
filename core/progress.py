"""Progress reporting shared by page extraction and frame matching."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from tqdm import tqdm

__all__ = [
    "ProgressAggregator",
    "ProgressCounter",
    "ProgressReporter",
    "ProgressSink",
    "TqdmProgressSink",
    "null_reporter",
]

LOGGER = logging.getLogger("slidesync.progress")

ProgressSink = Callable[[int, int, str], None]


class ProgressReporter:
    """Forwards ``(processed, total, message)`` triples to a sink."""

    __slots__ = ("_sink",)

    def __init__(self, sink: ProgressSink) -> None:
        self._sink = sink

    def report(self, processed: int, total: int, message: str = "") -> None:
        self._sink(int(processed), int(total), message)


def _discard(processed: int, total: int, message: str) -> None:
    return None


def null_reporter() -> ProgressReporter:
    return ProgressReporter(_discard)


class ProgressAggregator:
    """Combines the progress of independent sub-tasks into one stream.

    Each nested reporter owns one slot; a report replaces that slot and the
    sums over all slots are forwarded to the sink while the lock is held, so
    the sink sees totals in the order the updates were applied.
    """

    def __init__(self, sink: ProgressSink) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self._slots: Dict[int, Tuple[int, int]] = {}
        self._next_id = 0

    def create_nested(self) -> ProgressReporter:
        with self._lock:
            slot = self._next_id
            self._next_id += 1
            self._slots[slot] = (0, 0)

        def _report(processed: int, total: int, message: str) -> None:
            with self._lock:
                self._slots[slot] = (processed, total)
                done = sum(value[0] for value in self._slots.values())
                overall = sum(value[1] for value in self._slots.values())
                self._sink(done, overall, message)

        return ProgressReporter(_report)

    def snapshot(self) -> Tuple[int, int]:
        with self._lock:
            return (
                sum(value[0] for value in self._slots.values()),
                sum(value[1] for value in self._slots.values()),
            )


class ProgressCounter:
    """Thread-safe ``processed`` counter for a sub-task of known size."""

    def __init__(self, reporter: ProgressReporter, total: int, *, message: str = "") -> None:
        self._reporter = reporter
        self._total = max(0, int(total))
        self._message = message
        self._processed = 0
        self._lock = threading.Lock()

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def total(self) -> int:
        return self._total

    def start(self) -> None:
        self._reporter.report(0, self._total, self._message)

    def advance(self, count: int = 1) -> None:
        with self._lock:
            self._processed += count
            if self._processed > self._total:
                self._total = self._processed
            self._reporter.report(self._processed, self._total, self._message)

    def finish(self, message: Optional[str] = None) -> None:
        with self._lock:
            self._total = self._processed = max(self._processed, self._total)
            self._reporter.report(self._processed, self._total, message or self._message)


class TqdmProgressSink:
    """Renders aggregated progress as a single console bar."""

    def __init__(self, *, disable: bool = False) -> None:
        self._bar = tqdm(total=0, unit="step", dynamic_ncols=True, disable=disable)
        self._lock = threading.Lock()

    def __call__(self, processed: int, total: int, message: str) -> None:
        with self._lock:
            if self._bar.total != total:
                self._bar.total = total
            if self._bar.n != processed:
                self._bar.n = processed
            if message:
                self._bar.set_description_str(message, refresh=False)
            self._bar.refresh()

    def close(self) -> None:
        with self._lock:
            self._bar.close()
