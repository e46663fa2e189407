"""
Data models for canvas-stream: the elements extracted from a text stream.

The stream grammar has three element kinds:

    node   a text card with a semantic type, grid coordinate and body
    group  a titled container holding directly-nested nodes (one level)
    edge   a connector between two element ids

Grid coordinates (``row`` / ``col``) are logical, signed integers.  They are
turned into pixels by the layout engine, never here.

This module also defines the **node type system**: seven semantic types that
control color-coding on the canvas:

    default  plain text / detail
    concept  a core concept (orange)
    step     a step or technical implementation (blue)
    resource a resource, file or positive result (green)
    warning  a risk or error (red)
    insight  a conclusion or summary (purple)
    question an open question or todo (yellow)

Unknown types fall back to ``default``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_NODE_TYPE = "default"
DEFAULT_GROUP_TITLE = "Untitled Group"
DEFAULT_EDGE_DIRECTION = "forward"

EDGE_DIRECTIONS = ("forward", "bi", "none")


# ---------------------------------------------------------------------------
# Type system
# ---------------------------------------------------------------------------

class NodeStyle(BaseModel):
    """Visual styling for a node type.

    Attributes:
        canvas_color: Obsidian canvas color code ("1"-"6"), or None for gray.
        border_color: Accent color used by the PNG renderer.
        description:  Human-readable meaning of the type.
    """
    canvas_color: Optional[str] = None
    border_color: str = "#999999"
    description: str = ""


NODE_STYLES: dict[str, NodeStyle] = {
    "default":  NodeStyle(canvas_color=None, border_color="#999999", description="Plain text / detail"),
    "concept":  NodeStyle(canvas_color="2", border_color="#FF9800", description="Core concept"),
    "step":     NodeStyle(canvas_color="5", border_color="#00BCD4", description="Step / implementation"),
    "resource": NodeStyle(canvas_color="4", border_color="#4CAF50", description="Resource / reference"),
    "warning":  NodeStyle(canvas_color="1", border_color="#F44336", description="Risk / error"),
    "insight":  NodeStyle(canvas_color="6", border_color="#9C27B0", description="Insight / summary"),
    "question": NodeStyle(canvas_color="3", border_color="#FFC107", description="Question / todo"),
}

NODE_TYPES: tuple[str, ...] = tuple(NODE_STYLES)


def is_valid_node_type(value: str) -> bool:
    """Return True if ``value`` (case-insensitive) names a known node type."""
    return value.lower() in NODE_STYLES


def get_color_for_type(node_type: Optional[str]) -> Optional[str]:
    """Map a node type to its canvas color code; unknown types map to None."""
    if not node_type:
        return None
    style = NODE_STYLES.get(node_type.lower())
    return style.canvas_color if style else None


def get_style(node_type: Optional[str]) -> NodeStyle:
    return NODE_STYLES.get((node_type or DEFAULT_NODE_TYPE).lower(), NODE_STYLES[DEFAULT_NODE_TYPE])


# ---------------------------------------------------------------------------
# Parsed elements
# ---------------------------------------------------------------------------

class ParsedNode(BaseModel):
    """A node extracted from the stream.

    ``content`` has already been sanitized and dedented by the parser.
    ``group_id`` is set when the node appeared inside a ``group`` element.
    """
    id: str
    type: str = DEFAULT_NODE_TYPE
    title: Optional[str] = None
    row: int = 0
    col: int = 0
    content: str = ""
    group_id: Optional[str] = None

    def get_label(self) -> str:
        """Return ``title`` if set, otherwise the id."""
        return self.title if self.title else self.id

    def get_style(self) -> NodeStyle:
        return get_style(self.type)


class ParsedGroup(BaseModel):
    """A group extracted from the stream, with its direct children."""
    id: str
    title: str = DEFAULT_GROUP_TITLE
    row: int = 0
    col: int = 0
    children: list[ParsedNode] = Field(default_factory=list)

    def get_label(self) -> str:
        return self.title if self.title else self.id


class ParsedEdge(BaseModel):
    """A connector between two element ids.

    On the wire the endpoints are the ``from`` / ``to`` attributes; ``from``
    is a Python keyword so the fields are ``from_id`` / ``to_id`` with
    aliases.
    """
    model_config = ConfigDict(populate_by_name=True)

    from_id: str = Field(alias="from")
    to_id: str = Field(alias="to")
    dir: str = DEFAULT_EDGE_DIRECTION
    label: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable identity used to deduplicate edges."""
        return f"{self.from_id}->{self.to_id}"
