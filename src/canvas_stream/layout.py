"""
Anchor-based column layout.

Elements are placed into grid columns inside a container whose top-left
corner (the anchor) never moves once locked.  Within a column, elements are
stacked by row using their *actual* rendered heights, so a node whose body
keeps growing pushes the nodes below it down instead of overlapping them:

    anchor ──▶ ┌─────────────────────────────┐
               │ header band                 │
               │ ┌──────┐       ┌──────┐     │  y0 = anchor_y + header + top
               │ │ r0c0 │       │ r0c1 │     │
               │ └──────┘       └──────┘     │
               │   gap                       │  y1 = y0 + h0 + vertical_gap
               │ ┌──────┐                    │
               │ │ r1c0 │                    │
               └─┴──────┴────────────────────┘

Every function here is pure over the state objects it is handed
(``AnchorState``, ``ColumnTracker``).  Column ledgers are keyed by the
clamped grid column, and x offsets are summed over the columns between the
running minimum and the element's column, so negative or late-arriving
coordinates never invalidate what is already placed.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .config import LayoutConfig
from .errors import DiagnosticLog, OutOfRangeCoordinate
from .state import (
    AnchorState,
    ColumnEntry,
    ColumnTracker,
    ContainerBounds,
    PlacedPosition,
    PositionUpdate,
)

logger = logging.getLogger(__name__)

# Moves at or below this many pixels are not worth a host update.
REPOSITION_THRESHOLD = 1.0


def clamp(value: int, bound: int) -> tuple[int, bool]:
    """Clamp ``value`` to ``[-bound, bound]``; also report whether it changed."""
    clamped = max(-bound, min(bound, int(value)))
    return clamped, clamped != value


def calculate_safe_zones(anchor: AnchorState, config: LayoutConfig) -> tuple[float, float]:
    """Return the ``(top, left)`` clearance reserved for an inbound connector."""
    top = config.edge_label_safe_zone if anchor.edge_direction == "top" else 0.0
    left = config.edge_label_safe_zone if anchor.edge_direction == "left" else 0.0
    return top, left


def content_top(anchor: AnchorState, config: LayoutConfig) -> float:
    """Y of the first element in any column."""
    top_safe, _ = calculate_safe_zones(anchor, config)
    return anchor.anchor_y + config.header_clearance + top_safe


def content_left(anchor: AnchorState, config: LayoutConfig) -> float:
    """X of the leftmost column."""
    _, left_safe = calculate_safe_zones(anchor, config)
    return anchor.anchor_x + config.padding + left_safe


def normalize_coordinates(row: int, col: int, anchor: AnchorState) -> tuple[int, int]:
    return row - anchor.min_row_seen, col - anchor.min_col_seen


def column_x(col: int, anchor: AnchorState, tracker: ColumnTracker, config: LayoutConfig) -> float:
    """X of grid column ``col``: left edge plus every column to its left."""
    x = content_left(anchor, config)
    for c in range(anchor.min_col_seen, col):
        track = tracker.get(c)
        width = track.max_width if track is not None and track.max_width > 0 else config.node_width
        x += width + config.horizontal_gap
    return x


def calculate_element_position(
    element_id: str,
    row: int,
    col: int,
    anchor: AnchorState,
    tracker: ColumnTracker,
    config: LayoutConfig,
    diagnostics: Optional[DiagnosticLog] = None,
) -> PlacedPosition:
    """Choose the pixel position of an element at grid ``(row, col)``.

    Out-of-range coordinates are clamped and reported; they never fail.
    Updates the anchor's running minimums as a side effect.
    """
    grid_row, row_clamped = clamp(row, config.max_grid_coord)
    grid_col, col_clamped = clamp(col, config.max_grid_coord)
    if (row_clamped or col_clamped) and diagnostics is not None:
        diagnostics.record(OutOfRangeCoordinate(
            f"Element {element_id} at ({row}, {col}) clamped to ({grid_row}, {grid_col})", element_id
        ))

    anchor.observe(grid_row, grid_col)
    norm_row, norm_col = normalize_coordinates(grid_row, grid_col, anchor)

    x = column_x(grid_col, anchor, tracker, config)

    track = tracker.get(grid_col)
    previous = track.previous(grid_row) if track is not None else None
    if previous is None:
        y = content_top(anchor, config)
    else:
        y = previous.y + previous.actual_height + config.vertical_gap

    return PlacedPosition(x=x, y=y, row=norm_row, col=norm_col, grid_row=grid_row, grid_col=grid_col)


def register_element_in_column(
    element_id: str,
    row: int,
    col: int,
    y: float,
    actual_height: float,
    tracker: ColumnTracker,
    width: float = 0.0,
) -> ColumnEntry:
    """Insert or update an element in its column ledger (sorted by row)."""
    located = tracker.locate(element_id)
    if located is not None and located[0] != col:
        tracker.columns[located[0]].entries.remove(located[1])
    return tracker.track(col).upsert(
        ColumnEntry(element_id=element_id, row=row, y=y, actual_height=actual_height, width=width)
    )


def update_element_height(
    element_id: str,
    height: float,
    tracker: ColumnTracker,
    width: Optional[float] = None,
) -> Optional[tuple[int, int]]:
    """Record a new true height for a placed element.

    Returns ``(col, row)`` of the element so the caller can cascade, or None
    when the element is not in any ledger.
    """
    located = tracker.locate(element_id)
    if located is None:
        return None
    col, entry = located
    entry.actual_height = height
    if width is not None:
        entry.width = width
        track = tracker.columns[col]
        track.max_width = max(track.max_width, width)
    return col, entry.row


def calculate_repositioning(
    col: int,
    changed_row: int,
    tracker: ColumnTracker,
    config: LayoutConfig,
) -> list[PositionUpdate]:
    """Recompute y for every entry below ``changed_row`` in column ``col``.

    Entries at or above the changed row, and other columns, are untouched.
    The cascade is computed on the new values but the ledger itself is not
    modified; pass the result to ``apply_position_updates``.
    """
    track = tracker.get(col)
    if track is None:
        return []

    updates: list[PositionUpdate] = []
    previous_bottom: Optional[float] = None

    for entry in track.entries:
        if entry.row <= changed_row or previous_bottom is None:
            previous_bottom = entry.y + entry.actual_height
            continue
        new_y = previous_bottom + config.vertical_gap
        if abs(new_y - entry.y) > REPOSITION_THRESHOLD:
            updates.append(PositionUpdate(element_id=entry.element_id, new_y=new_y))
        previous_bottom = new_y + entry.actual_height

    if updates:
        logger.debug(f"Column {col}: row {changed_row} changed, moving {len(updates)} element(s)")
    return updates


def apply_position_updates(updates: Iterable[PositionUpdate], tracker: ColumnTracker) -> None:
    for update in updates:
        located = tracker.locate(update.element_id)
        if located is not None:
            located[1].y = update.new_y


def calculate_container_bounds(
    current: Optional[ContainerBounds],
    members: Iterable[tuple[float, float, float, float]],
    anchor: AnchorState,
    config: LayoutConfig,
) -> ContainerBounds:
    """Grow the container to enclose every member ``(x, y, width, height)``.

    The origin is always the anchor and neither dimension ever shrinks.
    """
    width = current.width if current is not None else 0.0
    height = current.height if current is not None else 0.0

    for x, y, w, h in members:
        width = max(width, x + w - anchor.anchor_x + config.padding)
        height = max(height, y + h - anchor.anchor_y + config.padding)

    return ContainerBounds(x=anchor.anchor_x, y=anchor.anchor_y, width=width, height=height)
