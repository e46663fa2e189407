"""Lifecycle event sequencing for one generation run.

A run emits exactly one ``start`` first, then any number of element and
progress events, then exactly one terminal event (``complete`` or
``failed``).  Anything emitted after the terminal event is dropped.
Timestamps come from a monotonic clock and are strictly increasing.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


START = "start"
ELEMENT_CREATED = "element_created"
ELEMENT_UPDATED = "element_updated"
EDGE_CREATED = "edge_created"
PROGRESS = "progress"
COMPLETE = "complete"
FAILED = "failed"

TERMINAL_EVENTS = (COMPLETE, FAILED)


def estimate_progress(created: int) -> int:
    """Rough percentage for a run whose final element count is unknown.

    Climbs quickly for the first few elements and never reaches 100 before
    the run actually completes.
    """
    if created <= 0:
        return 0
    return min(99, math.floor(created / max(9, created + 1) * 100))


@dataclass(frozen=True)
class LifecycleEvent:
    kind: str
    timestamp_ns: int
    element_id: Optional[str] = None
    progress: Optional[int] = None
    error: Optional[BaseException] = None
    detail: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_EVENTS


@dataclass
class LifecycleSequencer:
    """Enforces event ordering and forwards each event to ``listener``."""
    listener: Optional[Callable[[LifecycleEvent], None]] = None
    clock: Callable[[], int] = time.monotonic_ns
    events: list[LifecycleEvent] = field(default_factory=list)
    created_count: int = 0
    _last_ts: int = field(default=-1, repr=False)

    @property
    def started(self) -> bool:
        return bool(self.events)

    @property
    def finished(self) -> bool:
        return bool(self.events) and self.events[-1].is_terminal

    @property
    def progress(self) -> int:
        for event in reversed(self.events):
            if event.progress is not None:
                return event.progress
        return 0

    def start(self) -> Optional[LifecycleEvent]:
        if self.started:
            raise RuntimeError("Lifecycle already started")
        logger.info("Generation started")
        return self._emit(START, progress=0)

    def element_created(self, element_id: str) -> Optional[LifecycleEvent]:
        event = self._emit(ELEMENT_CREATED, element_id=element_id)
        if event is not None:
            self.created_count += 1
            self._emit(PROGRESS, progress=estimate_progress(self.created_count))
        return event

    def element_updated(self, element_id: str) -> Optional[LifecycleEvent]:
        return self._emit(ELEMENT_UPDATED, element_id=element_id)

    def edge_created(self, edge_key: str) -> Optional[LifecycleEvent]:
        return self._emit(EDGE_CREATED, element_id=edge_key)

    def complete(self, detail: Any = None) -> Optional[LifecycleEvent]:
        event = self._emit(COMPLETE, progress=100, detail=detail)
        if event is not None:
            logger.info(f"Generation complete ({self.created_count} elements)")
        return event

    def fail(self, error: BaseException) -> Optional[LifecycleEvent]:
        event = self._emit(FAILED, error=error)
        if event is not None:
            logger.info(f"Generation failed: {error!r}")
        return event

    def _next_timestamp(self) -> int:
        ts = self.clock()
        if ts <= self._last_ts:
            ts = self._last_ts + 1
        self._last_ts = ts
        return ts

    def _emit(self, kind: str, **fields) -> Optional[LifecycleEvent]:
        if self.finished:
            logger.debug(f"Ignoring {kind} event after terminal event")
            return None
        if kind != START and not self.started:
            raise RuntimeError(f"{kind} event emitted before start")

        event = LifecycleEvent(kind=kind, timestamp_ns=self._next_timestamp(), **fields)
        self.events.append(event)
        if self.listener is not None:
            self.listener(event)
        return event
