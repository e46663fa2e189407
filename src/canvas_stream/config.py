"""Layout and transport configuration for canvas-stream.

All layout values are in canvas pixels unless noted otherwise.  The defaults
describe a 360px-wide text node stacked in columns inside a container whose
title band is 100px tall:

    anchor ─┬────────────────────────────────┐
            │  header band (header_height)    │
            │  top_padding / safe zone        │
            │  ┌──────┐  horizontal_gap  ┌──┐ │
            │  │ node │ ───────────────▶ │  │ │
            │  └──────┘                  └──┘ │
            │     vertical_gap                │
            │  ┌──────┐                       │
            │  │ node │                       │
            └──┴──────┴───────────────────────┘

A config can be built from keyword overrides (``create_config``), from a YAML
file (``load_config``), or from the file named by ``CANVAS_STREAM_CONFIG``
(``config_from_env``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


CONFIG_ENV_VAR = "CANVAS_STREAM_CONFIG"
API_KEY_ENV_VAR = "CANVAS_STREAM_API_KEY"
BASE_URL_ENV_VAR = "CANVAS_STREAM_BASE_URL"
MODEL_ENV_VAR = "CANVAS_STREAM_MODEL"


# --- Layout constants ---

DEFAULT_NODE_WIDTH = 360
DEFAULT_NODE_HEIGHT = 200
VERTICAL_GAP = 80
HORIZONTAL_GAP = 80
CONTAINER_PADDING = 20
HEADER_HEIGHT = 100
TOP_PADDING = 20
EDGE_LABEL_SAFE_ZONE = 40
MAX_GRID_COORD = 100


class LayoutConfig(BaseModel):
    """Options consumed by the layout engine.

    Attributes:
        node_width:           Width used for a column whose true width is unknown.
        node_height:          Height assumed before the host reports a real one.
        padding:              Inset between the container edge and its content.
        vertical_gap:         Minimum space between stacked elements in a column.
        horizontal_gap:       Space between adjacent columns.
        header_height:        Height of the container's title band.
        top_padding:          Extra inset below the header band.
        edge_label_safe_zone: Clearance reserved on the side an inbound
                              connector attaches to.
        max_grid_coord:       Symmetric clamp bound for logical row/col values.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    node_width: float = Field(default=DEFAULT_NODE_WIDTH, gt=0)
    node_height: float = Field(default=DEFAULT_NODE_HEIGHT, gt=0)
    padding: float = Field(default=CONTAINER_PADDING, ge=0)
    vertical_gap: float = Field(default=VERTICAL_GAP, ge=0)
    horizontal_gap: float = Field(default=HORIZONTAL_GAP, ge=0)
    header_height: float = Field(default=HEADER_HEIGHT, ge=0)
    top_padding: float = Field(default=TOP_PADDING, ge=0)
    edge_label_safe_zone: float = Field(default=EDGE_LABEL_SAFE_ZONE, ge=0)
    max_grid_coord: int = Field(default=MAX_GRID_COORD, ge=0)

    @property
    def header_clearance(self) -> float:
        """Vertical offset of row 0 below the anchor, before any safe zone."""
        return self.header_height + self.top_padding


class TransportConfig(BaseModel):
    """Settings for the OpenAI-compatible streaming endpoint."""
    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-chat"
    api_key: Optional[str] = None
    timeout: float = Field(default=120.0, gt=0)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


def create_config(**overrides) -> LayoutConfig:
    """Build a layout config, overriding only the fields given.

    ``None`` values are ignored so callers can forward optional settings
    without filtering them first.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    return LayoutConfig(**values)


def load_config(path: str | Path) -> LayoutConfig:
    """Load a layout config from a YAML file.

    The file may either contain the layout keys at the top level or nest
    them under a ``layout:`` key.
    """
    data = yaml.safe_load(Path(path).read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Layout config must be a mapping, got {type(data).__name__}")
    if "layout" in data:
        data = data["layout"] or {}
    return create_config(**data)


def config_from_env() -> LayoutConfig:
    """Load the config named by ``CANVAS_STREAM_CONFIG``, or the defaults."""
    path = os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return LayoutConfig()
    return load_config(path)


def transport_config_from_env(**overrides) -> TransportConfig:
    """Build transport settings from the environment plus explicit overrides."""
    values = {
        "api_key": os.environ.get(API_KEY_ENV_VAR),
        "base_url": os.environ.get(BASE_URL_ENV_VAR),
        "model": os.environ.get(MODEL_ENV_VAR),
    }
    values.update(overrides)
    return TransportConfig(**{k: v for k, v in values.items() if v is not None})
