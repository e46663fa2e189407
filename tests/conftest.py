"""Pytest configuration and shared fixtures for canvas-stream tests."""

import pytest

from canvas_stream.config import LayoutConfig
from canvas_stream.host import MemoryCanvas


class LineMeasurer:
    """Deterministic measurer: every line of content is ``line_height`` tall."""

    def __init__(self, line_height: float = 200):
        self.line_height = line_height

    def measure(self, content: str, width: float) -> tuple[float, float]:
        lines = max(1, len((content or "").split("\n")))
        return (float(width), float(lines * self.line_height))


async def failing_stream(chunks, error):
    """Yield ``chunks`` then raise ``error``."""
    for chunk in chunks:
        yield chunk
    raise error


async def chunked(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.fixture
def measurer():
    return LineMeasurer()


@pytest.fixture
def canvas(measurer):
    """Empty canvas whose first container is anchored at (0, 240)."""
    return MemoryCanvas(measurer=measurer, origin=(0.0, 240.0))


@pytest.fixture
def config():
    """Default layout with a 40px vertical gap (row 0 lands at y=360 on ``canvas``)."""
    return LayoutConfig(vertical_gap=40)


@pytest.fixture
def simple_markup():
    """Three scattered nodes and two connectors."""
    return (
        '<node id="n1" type="concept" title="Core Idea" row="0" col="1">\n'
        "    The fundamental concept is **modularity**.\n"
        "    - Separation of concerns\n"
        "</node>\n"
        '<node id="n2" type="step" title="Implementation" row="1" col="1">\n'
        "    1. Define interfaces\n"
        "    2. Implement modules\n"
        "</node>\n"
        '<node id="n3" type="warning" title="Pitfalls" row="1" col="0">Avoid tight coupling.</node>\n'
        '<edge from="n1" to="n2" dir="forward" label="leads to" />\n'
        '<edge from="n2" to="n3" label="must avoid"/>\n'
    )


@pytest.fixture
def group_markup():
    """One group holding two stacked steps."""
    return (
        '<group id="g1" title="Technical Implementation" row="0" col="1">\n'
        '    <node id="s1" type="step" title="Setup" row="0" col="0">\n'
        "    Initial configuration steps...\n"
        "    </node>\n"
        '    <node id="s2" type="step" title="Execution" row="1" col="0">\n'
        "    Main execution flow...\n"
        "    More detail.\n"
        "    </node>\n"
        "</group>\n"
    )
