"""Pillow-backed text measurement and PNG snapshots of JSON canvases."""

from __future__ import annotations

import math
import textwrap
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from .themes import ThemePalette, accent_for, get_theme


# --- Font handling ---

def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a font, falling back to default if none available."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return ImageFont.load_default()


def _load_bold_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a bold font, falling back to regular."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
        "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return _load_font(size)


# --- Color helpers ---

def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert hex color to RGB tuple. Supports both 3-char and 6-char hex."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = hex_color[0]*2 + hex_color[1]*2 + hex_color[2]*2
    return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))


def _hex_to_rgba(hex_color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    r, g, b = _hex_to_rgb(hex_color)
    return (r, g, b, alpha)


def _lighten(hex_color: str, factor: float = 0.3) -> str:
    """Blend toward white; 0.0 keeps the color, 1.0 gives white."""
    r, g, b = _hex_to_rgb(hex_color)
    r = int(r + (255 - r) * factor)
    g = int(g + (255 - g) * factor)
    b = int(b + (255 - b) * factor)
    return f"#{r:02x}{g:02x}{b:02x}"


# --- Text wrapping ---

def _text_width(font, text: str) -> float:
    bbox = font.getbbox(text)
    return bbox[2] - bbox[0]


def _wrap_text(text: str, font, max_width: int) -> list[str]:
    """Word-wrap one paragraph to fit within max_width pixels."""
    words = text.split()
    lines = []
    current = ""

    for word in words:
        test = f"{current} {word}" if current else word
        if _text_width(font, test) <= max_width:
            current = test
        else:
            if current:
                lines.append(current)
            if _text_width(font, word) > max_width:
                # Character-level wrap for a single overlong word
                for chunk in textwrap.wrap(word, width=max(1, max_width // 8)):
                    lines.append(chunk)
                current = ""
            else:
                current = word

    if current:
        lines.append(current)

    return lines if lines else [""]


def wrap_content(text: str, font, max_width: int) -> list[str]:
    """Wrap multi-line content, keeping explicit line breaks."""
    lines: list[str] = []
    for paragraph in text.split("\n"):
        lines.extend(_wrap_text(paragraph, font, max_width))
    return lines


# --- Measurement ---

class TextMeasurer:
    """Measures the rendered size of a text node.

    Text nodes keep the width they are given; the height follows the number
    of wrapped lines.

    Layout breakdown (top to bottom):
        TOP_BAR          colored indicator bar
        PADDING          inset above the text
        wrapped lines    LINE_HEIGHT each
        PADDING          inset below the text
    """

    PADDING = 24
    TOP_BAR = 6
    LINE_HEIGHT = 24
    MIN_HEIGHT = 80

    def __init__(self, font_size: int = 18):
        self.font = _load_font(font_size)

    def wrap(self, content: str, width: float) -> list[str]:
        return wrap_content(content or "", self.font, max(1, int(width - 2 * self.PADDING)))

    def measure(self, content: str, width: float) -> tuple[float, float]:
        lines = self.wrap(content, width)
        height = self.TOP_BAR + 2 * self.PADDING + len(lines) * self.LINE_HEIGHT
        return (float(width), float(max(height, self.MIN_HEIGHT)))


# --- Main renderer ---

def _side_point(node: dict, side: str) -> tuple[float, float]:
    x, y, w, h = node["x"], node["y"], node["width"], node["height"]
    if side == "left":
        return (x, y + h / 2)
    if side == "right":
        return (x + w, y + h / 2)
    if side == "top":
        return (x + w / 2, y)
    return (x + w / 2, y + h)


class CanvasRenderer:
    """Renders a JSON canvas (``{"nodes": [...], "edges": [...]}``) to PNG."""

    PADDING = 60
    GROUP_LABEL_OFFSET = 30

    def __init__(self, scale: float = 1.0, theme: str = "dark"):
        self.scale = scale
        self.measurer = TextMeasurer(int(18 * scale))
        self.font_body = self.measurer.font
        self.font_group = _load_bold_font(int(16 * scale))
        self.theme: ThemePalette = get_theme(theme)

    def render(self, canvas: dict, output_path: Optional[str] = None) -> bytes:
        """Render the canvas to PNG bytes. Optionally save to file."""
        nodes = canvas.get("nodes", [])
        edges = canvas.get("edges", [])
        by_id = {n["id"]: n for n in nodes}

        bounds = self._calculate_bounds(nodes)
        img_width = max(1, int(bounds["width"] * self.scale))
        img_height = max(1, int(bounds["height"] * self.scale))

        img = Image.new("RGBA", (img_width, img_height), _hex_to_rgba(self.theme.background))
        draw = ImageDraw.Draw(img)

        ox = -bounds["min_x"] + self.PADDING
        oy = -bounds["min_y"] + self.PADDING

        for node in nodes:
            if node.get("type") == "group":
                self._draw_group(draw, node, ox, oy)

        for edge in edges:
            source = by_id.get(edge.get("fromNode"))
            target = by_id.get(edge.get("toNode"))
            if source is None or target is None:
                continue
            self._draw_edge(draw, edge, source, target, ox, oy)

        for node in nodes:
            if node.get("type") != "group":
                self._draw_text_node(draw, node, ox, oy)

        buf = BytesIO()
        img.save(buf, format="PNG", optimize=True)
        png_bytes = buf.getvalue()

        if output_path:
            Path(output_path).write_bytes(png_bytes)

        return png_bytes

    def _calculate_bounds(self, nodes: list[dict]) -> dict:
        if not nodes:
            return {"min_x": 0, "min_y": 0, "width": 400, "height": 300}

        min_x = min(n["x"] for n in nodes)
        min_y = min(n["y"] for n in nodes) - self.GROUP_LABEL_OFFSET
        max_x = max(n["x"] + n["width"] for n in nodes)
        max_y = max(n["y"] + n["height"] for n in nodes)

        return {
            "min_x": min_x,
            "min_y": min_y,
            "width": max_x - min_x + 2 * self.PADDING,
            "height": max_y - min_y + 2 * self.PADDING,
        }

    def _box(self, node: dict, ox: float, oy: float) -> tuple[float, float, float, float]:
        s = self.scale
        x = (node["x"] + ox) * s
        y = (node["y"] + oy) * s
        return (x, y, x + node["width"] * s, y + node["height"] * s)

    def _draw_group(self, draw: ImageDraw.ImageDraw, node: dict, ox: float, oy: float):
        x1, y1, x2, y2 = self._box(node, ox, oy)
        border = accent_for(node.get("color"), self.theme) if node.get("color") else self.theme.group_border
        draw.rounded_rectangle(
            [x1, y1, x2, y2],
            radius=12,
            fill=_hex_to_rgba(self.theme.group_fill, self.theme.group_fill_alpha),
            outline=border,
            width=2,
        )
        label = node.get("label") or ""
        draw.text(
            (x1 + 16, y1 - self.GROUP_LABEL_OFFSET * self.scale + 6),
            label,
            fill=self.theme.group_label,
            font=self.font_group,
        )

    def _draw_text_node(self, draw: ImageDraw.ImageDraw, node: dict, ox: float, oy: float):
        """Draw a text node; lines that do not fit are cut with an ellipsis."""
        s = self.scale
        x1, y1, x2, y2 = self._box(node, ox, oy)
        accent = accent_for(node.get("color"), self.theme)

        draw.rounded_rectangle([x1, y1, x2, y2], radius=int(8 * s), fill=self.theme.node_fill,
                               outline=accent, width=max(1, int(2 * s)))
        bar = int(TextMeasurer.TOP_BAR * s)
        draw.rounded_rectangle([x1 + 2, y1 + 2, x2 - 2, y1 + bar + 2], radius=int(8 * s), fill=accent)

        pad = TextMeasurer.PADDING * s
        line_height = TextMeasurer.LINE_HEIGHT * s
        lines = wrap_content(node.get("text") or "", self.font_body, max(1, int(x2 - x1 - 2 * pad)))

        top = y1 + bar + pad
        max_lines = max(1, int((y2 - pad - top) / line_height))
        shown = lines[:max_lines]
        if len(lines) > max_lines:
            shown[-1] = shown[-1][:20] + "..."

        for i, line in enumerate(shown):
            draw.text((x1 + pad, top + i * line_height), line, fill=self.theme.body_text_color, font=self.font_body)

    def _draw_edge(self, draw: ImageDraw.ImageDraw, edge: dict, source: dict, target: dict, ox: float, oy: float):
        s = self.scale
        from_side = edge.get("fromSide", "right")
        to_side = edge.get("toSide", "left")
        sx, sy = _side_point(source, from_side)
        tx, ty = _side_point(target, to_side)
        start = ((sx + ox) * s, (sy + oy) * s)
        end = ((tx + ox) * s, (ty + oy) * s)

        color = _lighten(accent_for(source.get("color"), self.theme), 0.25) if source.get("color") \
            else self.theme.connection_base
        direction = "vertical" if from_side in ("top", "bottom") else "horizontal"
        points = self._bezier_points(start, end, direction)

        for i in range(len(points) - 1):
            draw.line([points[i], points[i + 1]], fill=color, width=max(1, int(3 * s)))

        arrow = int(16 * s)
        if edge.get("toEnd", "arrow") == "arrow":
            self._draw_arrowhead(draw, points[-2], points[-1], color, arrow)
        if edge.get("fromEnd", "none") == "arrow":
            self._draw_arrowhead(draw, points[1], points[0], color, arrow)

        label = edge.get("label")
        if label:
            mx, my = points[len(points) // 2]
            w = _text_width(self.font_group, label)
            draw.text((mx - w / 2, my - 10 * s), label, fill=self.theme.muted_text_color, font=self.font_group)

    def _bezier_points(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
        direction: str,
        steps: int = 30,
    ) -> list[tuple[float, float]]:
        """Cubic S-curve between two points, bending along ``direction``."""
        sx, sy = start
        ex, ey = end

        if direction == "vertical":
            offset = max(abs(ey - sy) * 0.4, 40 * self.scale)
            sign = 1 if ey > sy else -1
            cp1x, cp1y = sx, sy + sign * offset
            cp2x, cp2y = ex, ey - sign * offset
        else:
            offset = max(abs(ex - sx) * 0.4, 40 * self.scale)
            sign = 1 if ex > sx else -1
            cp1x, cp1y = sx + sign * offset, sy
            cp2x, cp2y = ex - sign * offset, ey

        points = []
        for i in range(steps + 1):
            t = i / steps
            x = (1-t)**3 * sx + 3*(1-t)**2*t * cp1x + 3*(1-t)*t**2 * cp2x + t**3 * ex
            y = (1-t)**3 * sy + 3*(1-t)**2*t * cp1y + 3*(1-t)*t**2 * cp2y + t**3 * ey
            points.append((x, y))
        return points

    @staticmethod
    def _draw_arrowhead(draw: ImageDraw.ImageDraw, start, end, color: str, size: int):
        dx = end[0] - start[0]
        dy = end[1] - start[1]
        length = math.sqrt(dx * dx + dy * dy)
        if length == 0:
            return
        udx = dx / length
        udy = dy / length
        ax = end[0] - size * udx + (size / 2) * udy
        ay = end[1] - size * udy - (size / 2) * udx
        bx = end[0] - size * udx - (size / 2) * udy
        by = end[1] - size * udy + (size / 2) * udx
        draw.polygon([(end[0], end[1]), (ax, ay), (bx, by)], fill=color)
