"""
Theme definitions for canvas snapshots.

Provides dark and light color palettes for the PNG renderer.
Each theme defines colors for:
- Canvas background
- Text (group labels, node labels, body)
- Group containers (background/border)
- Text nodes and connectors

Node accent colors are not part of a theme: they come from the node's
canvas color code (see ``CANVAS_COLOR_HEX``).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .models import NODE_STYLES


@dataclass
class ThemePalette:
    """Color palette for a theme."""

    # Canvas
    background: str

    # Text
    label_color: str
    body_text_color: str
    muted_text_color: str

    # Group containers
    group_fill: str
    group_fill_alpha: int
    group_border: str
    group_label: str

    # Text nodes
    node_fill: str
    node_border: str

    # Connectors without a colored source
    connection_base: str


# Catppuccin Mocha
DARK_THEME = ThemePalette(
    background="#11111b",
    label_color="#cdd6f4",
    body_text_color="#a6adc8",
    muted_text_color="#6c7086",
    group_fill="#181825",
    group_fill_alpha=120,
    group_border="#45475a",
    group_label="#a6adc8",
    node_fill="#1e1e2e",
    node_border="#6c7086",
    connection_base="#585b70",
)


# Catppuccin Latte
LIGHT_THEME = ThemePalette(
    background="#ffffff",
    label_color="#1e1e2e",
    body_text_color="#4c4f69",
    muted_text_color="#6c6f85",
    group_fill="#e6e9ef",
    group_fill_alpha=180,
    group_border="#9ca0b0",
    group_label="#4c4f69",
    node_fill="#eff1f5",
    node_border="#9ca0b0",
    connection_base="#8c8fa1",
)


THEMES: dict[str, ThemePalette] = {
    "dark": DARK_THEME,
    "light": LIGHT_THEME,
}


# Canvas color code ("1"-"6") -> accent hex, taken from the node type table
CANVAS_COLOR_HEX: dict[str, str] = {
    style.canvas_color: style.border_color
    for style in NODE_STYLES.values()
    if style.canvas_color is not None
}


def get_theme(name: str) -> ThemePalette:
    """Get a theme palette by name.

    Raises:
        ValueError: If theme name is not recognized
    """
    if name not in THEMES:
        valid = ", ".join(THEMES.keys())
        raise ValueError(f"Unknown theme '{name}'. Valid themes: {valid}")
    return THEMES[name]


def accent_for(color: Optional[str], theme: ThemePalette) -> str:
    """Accent hex for a canvas color code, a literal hex color, or None."""
    if not color:
        return theme.node_border
    if color.startswith("#"):
        return color
    return CANVAS_COLOR_HEX.get(color, theme.node_border)
