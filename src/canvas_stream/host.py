"""
Host surface: the canvas that streamed elements are drawn onto.

The layout engine never measures text itself.  It creates items on a host,
asks the host how big they really rendered, and moves them in response.
``HostSurface`` is the contract; ``MemoryCanvas`` is an in-memory
implementation that measures with Pillow and exports the JSON Canvas format
used by Obsidian (``to_json_canvas``).
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from .models import ParsedGroup
from .renderer import CanvasRenderer, TextMeasurer

logger = logging.getLogger(__name__)


def new_item_id() -> str:
    return uuid.uuid4().hex[:16]


def determine_edge_sides(
    source: tuple[float, float, float, float],
    target: tuple[float, float, float, float],
) -> tuple[str, str]:
    """Pick ``(from_side, to_side)`` for a connector between two rects.

    Rects are ``(x, y, width, height)``.  The dominant axis of the
    center-to-center offset decides between a horizontal and a vertical
    connector.
    """
    sx, sy, sw, sh = source
    tx, ty, tw, th = target
    dx = (tx + tw / 2) - (sx + sw / 2)
    dy = (ty + th / 2) - (sy + sh / 2)

    if abs(dx) > abs(dy):
        return ("right", "left") if dx > 0 else ("left", "right")
    return ("bottom", "top") if dy > 0 else ("top", "bottom")


@runtime_checkable
class HostSurface(Protocol):
    """Operations the streaming session needs from a canvas."""

    def create_text_node(self, x: float, y: float, width: float, height: float, text: str,
                         color: Optional[str] = None, parent_id: Optional[str] = None) -> str: ...

    def create_group(self, x: float, y: float, width: float, height: float, label: str,
                     color: Optional[str] = None) -> str: ...

    def create_edge(self, from_id: str, to_id: str, from_side: str, to_side: str,
                    label: Optional[str] = None, direction: str = "forward") -> str: ...

    def update_text(self, item_id: str, text: str) -> None: ...

    def move(self, item_id: str, x: float, y: float) -> None: ...

    def resize(self, item_id: str, width: float, height: float) -> None: ...

    def remove(self, item_id: str) -> None: ...

    def children_of(self, group_id: str) -> list[str]: ...

    def measure(self, content: str, width: float) -> tuple[float, float]: ...

    def rect_of(self, item_id: str) -> Optional[tuple[float, float, float, float]]: ...

    def place_container(self, group: ParsedGroup) -> tuple[float, float]: ...

    async def refresh(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory canvas
# ---------------------------------------------------------------------------

class CanvasItem(BaseModel):
    """A text node or group on the canvas."""
    id: str
    type: str = "text"
    x: float
    y: float
    width: float
    height: float
    text: Optional[str] = None
    label: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[str] = None

    @property
    def rect(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)


class CanvasEdgeItem(BaseModel):
    id: str
    from_node: str
    from_side: str
    to_node: str
    to_side: str
    label: Optional[str] = None
    direction: str = "forward"


class MemoryCanvas:
    """In-memory ``HostSurface`` with Pillow measurement.

    Args:
        measurer: Object with ``measure(content, width) -> (width, height)``.
                  Defaults to a Pillow ``TextMeasurer``.
        container_gap: Horizontal space between containers placed by
                       ``place_container``.
        origin: Where the first container goes.
    """

    def __init__(
        self,
        measurer=None,
        container_gap: float = 200.0,
        origin: tuple[float, float] = (0.0, 0.0),
    ):
        self.measurer = measurer if measurer is not None else TextMeasurer()
        self.container_gap = container_gap
        self.origin = origin
        self.items: dict[str, CanvasItem] = {}
        self.edges: dict[str, CanvasEdgeItem] = {}
        self.refresh_count = 0
        self.removed: list[str] = []

    # --- Creation ---

    def create_text_node(self, x, y, width, height, text, color=None, parent_id=None) -> str:
        item = CanvasItem(id=new_item_id(), type="text", x=x, y=y, width=width, height=height,
                          text=text, color=color, parent_id=parent_id)
        self.items[item.id] = item
        return item.id

    def create_group(self, x, y, width, height, label, color=None) -> str:
        item = CanvasItem(id=new_item_id(), type="group", x=x, y=y, width=width, height=height,
                          label=label, color=color)
        self.items[item.id] = item
        return item.id

    def create_edge(self, from_id, to_id, from_side, to_side, label=None, direction="forward") -> str:
        if from_id not in self.items or to_id not in self.items:
            raise KeyError(f"Cannot connect {from_id} -> {to_id}: unknown item")
        edge = CanvasEdgeItem(id=new_item_id(), from_node=from_id, from_side=from_side,
                              to_node=to_id, to_side=to_side, label=label, direction=direction)
        self.edges[edge.id] = edge
        return edge.id

    # --- Mutation ---

    def update_text(self, item_id, text) -> None:
        self.items[item_id].text = text

    def move(self, item_id, x, y) -> None:
        item = self.items[item_id]
        item.x = x
        item.y = y

    def resize(self, item_id, width, height) -> None:
        item = self.items[item_id]
        item.width = width
        item.height = height

    def remove(self, item_id) -> None:
        """Remove an item, its connectors, and (for groups) its children."""
        if item_id not in self.items:
            return
        for child_id in self.children_of(item_id):
            self.remove(child_id)
        del self.items[item_id]
        self.removed.append(item_id)
        for edge_id in [e.id for e in self.edges.values() if item_id in (e.from_node, e.to_node)]:
            del self.edges[edge_id]

    # --- Queries ---

    def children_of(self, group_id) -> list[str]:
        return [item.id for item in self.items.values() if item.parent_id == group_id]

    def get(self, item_id: str) -> Optional[CanvasItem]:
        return self.items.get(item_id)

    def rect_of(self, item_id) -> Optional[tuple[float, float, float, float]]:
        item = self.items.get(item_id)
        return item.rect if item is not None else None

    def measure(self, content, width) -> tuple[float, float]:
        return self.measurer.measure(content, width)

    def place_container(self, group: ParsedGroup) -> tuple[float, float]:
        """Place a new container to the right of everything already on the canvas."""
        top_level = [item for item in self.items.values() if item.parent_id is None]
        if not top_level:
            return self.origin
        right = max(item.x + item.width for item in top_level)
        return (right + self.container_gap, self.origin[1])

    async def refresh(self) -> None:
        self.refresh_count += 1

    # --- Import / export ---

    @classmethod
    def from_json_canvas(cls, data: dict, **kwargs) -> "MemoryCanvas":
        """Load a JSON Canvas document.

        The format has no explicit membership, so a text node belongs to the
        smallest group whose rectangle fully contains it.
        """
        canvas = cls(**kwargs)
        for node in data.get("nodes", []):
            canvas.items[node["id"]] = CanvasItem(
                id=node["id"],
                type="group" if node.get("type") == "group" else "text",
                x=node["x"],
                y=node["y"],
                width=node["width"],
                height=node["height"],
                text=node.get("text"),
                label=node.get("label"),
                color=node.get("color"),
            )

        groups = sorted(
            (item for item in canvas.items.values() if item.type == "group"),
            key=lambda g: g.width * g.height,
        )
        for item in canvas.items.values():
            if item.type == "group":
                continue
            for group in groups:
                if (group.x <= item.x and group.y <= item.y
                        and item.x + item.width <= group.x + group.width
                        and item.y + item.height <= group.y + group.height):
                    item.parent_id = group.id
                    break

        direction = {("arrow", "arrow"): "bi", ("none", "none"): "none"}
        for edge in data.get("edges", []):
            ends = (edge.get("fromEnd", "none"), edge.get("toEnd", "arrow"))
            canvas.edges[edge["id"]] = CanvasEdgeItem(
                id=edge["id"],
                from_node=edge["fromNode"],
                from_side=edge.get("fromSide", "right"),
                to_node=edge["toNode"],
                to_side=edge.get("toSide", "left"),
                label=edge.get("label"),
                direction=direction.get(ends, "forward"),
            )
        return canvas

    def to_json_canvas(self) -> dict:
        """Export as a JSON Canvas document (groups listed before their children)."""
        nodes = []
        ordered = sorted(self.items.values(), key=lambda item: item.type != "group")
        for item in ordered:
            data = {
                "id": item.id,
                "type": item.type,
                "x": round(item.x),
                "y": round(item.y),
                "width": round(item.width),
                "height": round(item.height),
            }
            if item.type == "group":
                data["label"] = item.label or ""
            else:
                data["text"] = item.text or ""
            if item.color:
                data["color"] = item.color
            nodes.append(data)

        edges = []
        for edge in self.edges.values():
            data = {
                "id": edge.id,
                "fromNode": edge.from_node,
                "fromSide": edge.from_side,
                "toNode": edge.to_node,
                "toSide": edge.to_side,
            }
            if edge.direction == "bi":
                data["fromEnd"] = "arrow"
            if edge.direction == "none":
                data["toEnd"] = "none"
            if edge.label:
                data["label"] = edge.label
            edges.append(data)

        return {"nodes": nodes, "edges": edges}

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.write_text(json.dumps(self.to_json_canvas(), indent=2))
        logger.info(f"Canvas written to {path}")
        return path

    def render_png(self, output_path: Optional[str] = None, theme: str = "dark") -> bytes:
        return CanvasRenderer(theme=theme).render(self.to_json_canvas(), output_path)
