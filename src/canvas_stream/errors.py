"""Error taxonomy and diagnostics for canvas-stream.

Only ``StreamTransportFailure`` ends a session.  Every other error kind is
recoverable: the parser and layout engine raise them internally, catch them
at the element boundary, and turn them into a ``Diagnostic`` that is logged
and kept for inspection.

    MalformedMarkup            element skipped, scan continues
    MissingRequiredAttribute   element dropped
    OutOfRangeCoordinate       value clamped
    OverlapDetected            corrected in place
    UnknownElementType         mapped to the fallback category
    StreamTransportFailure     terminal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional


class CanvasStreamError(Exception):
    """Base class for every error raised by canvas-stream."""

    kind = "error"

    def __init__(self, message: str, element_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.element_id = element_id


class MalformedMarkup(CanvasStreamError):
    kind = "malformed_markup"


class MissingRequiredAttribute(MalformedMarkup):
    kind = "missing_required_attribute"


class OutOfRangeCoordinate(CanvasStreamError):
    kind = "out_of_range_coordinate"


class OverlapDetected(CanvasStreamError):
    kind = "overlap_detected"


class UnknownElementType(CanvasStreamError):
    kind = "unknown_element_type"


class StreamTransportFailure(CanvasStreamError):
    """The upstream text stream failed (HTTP error, timeout, disconnect)."""

    kind = "stream_transport_failure"


class AnchorLockedError(CanvasStreamError):
    """Raised when code tries to move an anchor that is already locked."""

    kind = "anchor_locked"


@dataclass
class Diagnostic:
    """A non-fatal observation recorded while parsing or laying out."""
    kind: str
    message: str
    element_id: Optional[str] = None

    @classmethod
    def from_error(cls, error: CanvasStreamError) -> "Diagnostic":
        return cls(kind=error.kind, message=error.message, element_id=error.element_id)


@dataclass
class DiagnosticLog:
    """Collects diagnostics and mirrors each one to a logger.

    One log is owned by each parser / session so diagnostics from
    independent sessions never mix.
    """
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    entries: list[Diagnostic] = field(default_factory=list)

    def record(self, error: CanvasStreamError) -> Diagnostic:
        diagnostic = Diagnostic.from_error(error)
        self.entries.append(diagnostic)
        self.logger.warning(f"[{diagnostic.kind}] {diagnostic.message}")
        return diagnostic

    def of_kind(self, kind: str) -> list[Diagnostic]:
        return [d for d in self.entries if d.kind == kind]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)
