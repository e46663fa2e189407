"""Self-healing overlap validation for column ledgers.

Correct placement should never produce overlaps; these passes run after
every reposition and fix whatever slipped through (an element placed before
a taller neighbour above it reported its real height, for example).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import LayoutConfig
from .errors import DiagnosticLog, OverlapDetected
from .state import ColumnTracker, PositionUpdate

logger = logging.getLogger(__name__)

OVERLAP_TOLERANCE = 1.0


@dataclass(frozen=True)
class OverlapViolation:
    col: int
    upper_id: str
    lower_id: str
    required_y: float
    actual_y: float


def detect_overlaps(
    col: int,
    tracker: ColumnTracker,
    config: LayoutConfig,
    diagnostics: Optional[DiagnosticLog] = None,
) -> list[PositionUpdate]:
    """Push apart overlapping neighbours in one column.

    Pairs are checked top to bottom and each correction is written to the
    ledger before the next pair is checked, so a moved element can push the
    one below it in turn.  Returns the corrections for the host to apply.
    """
    track = tracker.get(col)
    if track is None:
        return []

    corrections: list[PositionUpdate] = []
    for upper, lower in zip(track.entries, track.entries[1:]):
        required_y = upper.y + upper.actual_height + config.vertical_gap
        if lower.y < required_y - OVERLAP_TOLERANCE:
            if diagnostics is not None:
                diagnostics.record(OverlapDetected(
                    f"{lower.element_id} overlaps {upper.element_id} in column {col}: "
                    f"y={lower.y:.0f}, moved to {required_y:.0f}",
                    lower.element_id,
                ))
            lower.y = required_y
            corrections.append(PositionUpdate(element_id=lower.element_id, new_y=required_y))

    return corrections


def detect_all_overlaps(
    tracker: ColumnTracker,
    config: LayoutConfig,
    diagnostics: Optional[DiagnosticLog] = None,
) -> list[PositionUpdate]:
    corrections: list[PositionUpdate] = []
    for col in sorted(tracker.columns):
        corrections.extend(detect_overlaps(col, tracker, config, diagnostics))
    return corrections


def validate_no_overlap_invariant(tracker: ColumnTracker, config: LayoutConfig) -> list[OverlapViolation]:
    """List every adjacent pair that violates the spacing rule, without fixing it."""
    violations = []
    for col in sorted(tracker.columns):
        entries = tracker.columns[col].entries
        for upper, lower in zip(entries, entries[1:]):
            required_y = upper.y + upper.actual_height + config.vertical_gap
            if lower.y < required_y - OVERLAP_TOLERANCE:
                violations.append(OverlapViolation(
                    col=col,
                    upper_id=upper.element_id,
                    lower_id=lower.element_id,
                    required_y=required_y,
                    actual_y=lower.y,
                ))
    if violations:
        logger.debug(f"{len(violations)} overlap violation(s) found")
    return violations
