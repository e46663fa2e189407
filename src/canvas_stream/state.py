"""
Per-container layout state.

Everything the layout engine needs to remember between chunks lives here and
is owned by exactly one container in one session:

    AnchorState    the locked pixel origin plus running min row/col
    ColumnTracker  one ordered ledger of placed elements per grid column

The positioning functions in ``layout`` are pure over these objects: they
read and mutate what they are handed and keep nothing of their own.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Iterator, Optional

from .errors import AnchorLockedError


SAFE_ZONE_SIDES = ("top", "left")


# ---------------------------------------------------------------------------
# Anchor
# ---------------------------------------------------------------------------

@dataclass
class AnchorState:
    """Fixed top-left origin of a container.

    ``anchor_x`` / ``anchor_y`` are captured once by ``lock()``.  After that,
    assigning either raises ``AnchorLockedError``; content that would extend
    above or left of the origin is normalized instead.
    """
    anchor_x: float = 0.0
    anchor_y: float = 0.0
    locked: bool = False
    min_row_seen: int = 0
    min_col_seen: int = 0
    edge_direction: Optional[str] = None

    def __setattr__(self, name, value):
        if name in ("anchor_x", "anchor_y") and self.__dict__.get("locked"):
            if self.__dict__.get(name) != value:
                raise AnchorLockedError(f"Cannot move locked anchor ({name}={value})")
        super().__setattr__(name, value)

    def lock(self, x: float, y: float, edge_direction: Optional[str] = None) -> None:
        if self.locked:
            raise AnchorLockedError(f"Anchor already locked at ({self.anchor_x}, {self.anchor_y})")
        if edge_direction is not None and edge_direction not in SAFE_ZONE_SIDES:
            raise ValueError(f"edge_direction must be one of {SAFE_ZONE_SIDES}, got {edge_direction!r}")
        self.anchor_x = x
        self.anchor_y = y
        self.edge_direction = edge_direction
        self.locked = True

    @classmethod
    def locked_at(cls, x: float, y: float, edge_direction: Optional[str] = None) -> "AnchorState":
        anchor = cls()
        anchor.lock(x, y, edge_direction)
        return anchor

    def translated(self, dx: float, dy: float = 0.0) -> "AnchorState":
        """A locked copy moved by ``(dx, dy)``, for moving a whole container.

        The running minimums and edge direction carry over, so every member
        keeps its offset from the anchor.
        """
        moved = AnchorState.locked_at(self.anchor_x + dx, self.anchor_y + dy, self.edge_direction)
        moved.min_row_seen = self.min_row_seen
        moved.min_col_seen = self.min_col_seen
        return moved

    def observe(self, row: int, col: int) -> None:
        """Fold a (clamped) grid coordinate into the running minimums."""
        self.min_row_seen = min(self.min_row_seen, row)
        self.min_col_seen = min(self.min_col_seen, col)


# ---------------------------------------------------------------------------
# Column ledgers
# ---------------------------------------------------------------------------

@dataclass
class ColumnEntry:
    element_id: str
    row: int
    y: float
    actual_height: float
    width: float = 0.0

    @property
    def bottom(self) -> float:
        return self.y + self.actual_height


@dataclass
class ColumnTrack:
    """Elements placed in one grid column, kept sorted by row."""
    column_index: int
    entries: list[ColumnEntry] = field(default_factory=list)
    max_width: float = 0.0

    def find(self, element_id: str) -> Optional[ColumnEntry]:
        for entry in self.entries:
            if entry.element_id == element_id:
                return entry
        return None

    def previous(self, row: int) -> Optional[ColumnEntry]:
        """Entry with the largest row strictly less than ``row``."""
        rows = [e.row for e in self.entries]
        i = bisect.bisect_left(rows, row)
        return self.entries[i - 1] if i > 0 else None

    def upsert(self, entry: ColumnEntry) -> ColumnEntry:
        existing = self.find(entry.element_id)
        if existing is not None:
            self.entries.remove(existing)
        rows = [e.row for e in self.entries]
        self.entries.insert(bisect.bisect_right(rows, entry.row), entry)
        self.max_width = max(self.max_width, entry.width)
        return entry


class ColumnTracker:
    """All column ledgers of one container, keyed by grid column."""

    def __init__(self):
        self.columns: dict[int, ColumnTrack] = {}

    def track(self, col: int) -> ColumnTrack:
        if col not in self.columns:
            self.columns[col] = ColumnTrack(column_index=col)
        return self.columns[col]

    def get(self, col: int) -> Optional[ColumnTrack]:
        return self.columns.get(col)

    def locate(self, element_id: str) -> Optional[tuple[int, ColumnEntry]]:
        """Return ``(col, entry)`` for a placed element, or None."""
        for col, track in self.columns.items():
            entry = track.find(element_id)
            if entry is not None:
                return col, entry
        return None

    def remove(self, element_id: str) -> Optional[ColumnEntry]:
        """Drop a withdrawn element from its ledger.  Column widths are kept."""
        located = self.locate(element_id)
        if located is None:
            return None
        col, entry = located
        self.columns[col].entries.remove(entry)
        return entry

    def entries(self) -> Iterator[tuple[int, ColumnEntry]]:
        for col in sorted(self.columns):
            for entry in self.columns[col].entries:
                yield col, entry

    def __len__(self) -> int:
        return sum(len(t.entries) for t in self.columns.values())

    def __contains__(self, element_id: str) -> bool:
        return self.locate(element_id) is not None


# ---------------------------------------------------------------------------
# Value types passed between the engine and its callers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NodeActualSize:
    """True rendered size of an element, as reported by the host."""
    element_id: str
    width: float
    height: float


@dataclass(frozen=True)
class ContainerBounds:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class PlacedPosition:
    """Pixel position chosen for an element.

    ``row`` / ``col`` are normalized against the running minimum;
    ``grid_row`` / ``grid_col`` are the clamped logical coordinates the
    column ledgers are keyed by.
    """
    x: float
    y: float
    row: int
    col: int
    grid_row: int
    grid_col: int


@dataclass(frozen=True)
class PositionUpdate:
    element_id: str
    new_y: float
