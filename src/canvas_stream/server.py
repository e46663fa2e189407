"""canvas-stream MCP server: stream tag markup onto a canvas and export it."""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import config_from_env, transport_config_from_env
from .errors import StreamTransportFailure
from .host import MemoryCanvas
from .session import StreamSession, replay
from .transport import build_messages, stream_completion

logger = logging.getLogger(__name__)


# --- Constants ---
OUTPUT_DIR = Path(os.environ.get("CANVAS_STREAM_OUTPUT_DIR", Path.home() / ".canvas-stream"))
DEFAULT_CHUNK_SIZE = 24

server = Server("canvas-stream")


def _ensure_output_dir():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


_OUTPUT_PROPERTIES = {
    "filename": {
        "type": "string",
        "description": "Output filename (without extension). Default: auto-generated.",
    },
    "render_png": {
        "type": "boolean",
        "description": "Also write a PNG snapshot next to the .canvas file. Default: false.",
        "default": False,
    },
}


# --- Tool definitions ---

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="layout_markup",
            description=(
                "Lay out canvas tag markup (<node>, <group>, <edge>) as if it were "
                "streaming in, and write the result as a JSON Canvas file. "
                "Returns the file path, element counts and any diagnostics."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "markup": {
                        "type": "string",
                        "description": (
                            "Tag markup, for example:\n"
                            '<node id="n1" type="concept" row="0" col="0">Core idea</node>\n'
                            '<node id="n2" type="step" row="1" col="0">Next step</node>\n'
                            '<edge from="n1" to="n2" label="leads to"/>\n'
                            "\n"
                            "Node types: default, concept, step, resource, warning, insight, question"
                        ),
                    },
                    "chunk_size": {
                        "type": "integer",
                        "description": f"Characters per simulated chunk (default {DEFAULT_CHUNK_SIZE}).",
                        "default": DEFAULT_CHUNK_SIZE,
                    },
                    **_OUTPUT_PROPERTIES,
                },
                "required": ["markup"],
            },
        ),
        Tool(
            name="generate_canvas",
            description=(
                "Ask the configured OpenAI-compatible model to answer an instruction "
                "as canvas markup, lay it out while it streams, and write a JSON Canvas file."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "instruction": {"type": "string", "description": "What to generate."},
                    "source_text": {
                        "type": "string",
                        "description": "Optional text of the card being expanded.",
                    },
                    **_OUTPUT_PROPERTIES,
                },
                "required": ["instruction"],
            },
        ),
        Tool(
            name="regenerate_group",
            description=(
                "Replace the contents of one group in an existing .canvas file with new "
                "streamed markup. The old contents are kept if the stream fails before "
                "producing anything."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "canvas_path": {"type": "string", "description": "Path to the .canvas file."},
                    "group_id": {"type": "string", "description": "Id of the group to regenerate."},
                    "markup": {
                        "type": "string",
                        "description": "New markup. If omitted, `instruction` is sent to the model.",
                    },
                    "instruction": {"type": "string", "description": "Instruction for the model."},
                },
                "required": ["canvas_path", "group_id"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    if name == "layout_markup":
        return await _layout_markup(arguments)
    elif name == "generate_canvas":
        return await _generate_canvas(arguments)
    elif name == "regenerate_group":
        return await _regenerate_group(arguments)
    else:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]


def _summary(session: StreamSession, canvas: MemoryCanvas, path: Path, png_path: str | None) -> list[TextContent]:
    return [TextContent(
        type="text",
        text=json.dumps({
            "status": "success",
            "path": str(path),
            "png": png_path,
            "elements": len(session.elements),
            "containers": sum(1 for c in session.containers.values() if c.host_id is not None),
            "edges": len(session.edges),
            "diagnostics": [f"[{d.kind}] {d.message}" for d in session.diagnostics],
        }),
    )]


def _write_outputs(canvas: MemoryCanvas, args: dict) -> tuple[Path, str | None]:
    _ensure_output_dir()
    filename = args.get("filename") or str(uuid.uuid4())[:8]
    path = canvas.save(OUTPUT_DIR / f"{filename}.canvas")
    png_path = None
    if args.get("render_png", False):
        png_path = str(OUTPUT_DIR / f"{filename}.png")
        canvas.render_png(png_path)
    return path, png_path


async def _layout_markup(args: dict) -> list[TextContent]:
    """Replay markup through a streaming session."""
    canvas = MemoryCanvas()
    session = StreamSession(canvas, config=config_from_env())
    chunk_size = int(args.get("chunk_size", DEFAULT_CHUNK_SIZE))

    await session.run(replay(args["markup"], chunk_size))

    path, png_path = _write_outputs(canvas, args)
    return _summary(session, canvas, path, png_path)


async def _generate_canvas(args: dict) -> list[TextContent]:
    """Stream a model completion onto a new canvas."""
    canvas = MemoryCanvas()
    session = StreamSession(canvas, config=config_from_env())
    messages = build_messages(args["instruction"], args.get("source_text"))

    try:
        await session.run(stream_completion(messages, transport_config_from_env()))
    except StreamTransportFailure as e:
        logger.error(f"Generation failed: {e}")
        if not session.elements:
            return [TextContent(type="text", text=f"Generation failed: {e}")]

    path, png_path = _write_outputs(canvas, args)
    return _summary(session, canvas, path, png_path)


async def _regenerate_group(args: dict) -> list[TextContent]:
    """Regenerate one group of an existing canvas file in place."""
    path = Path(args["canvas_path"])
    if not path.exists():
        return [TextContent(type="text", text=f"Canvas not found: {path}")]

    canvas = MemoryCanvas.from_json_canvas(json.loads(path.read_text()))
    group_id = args["group_id"]
    if canvas.get(group_id) is None or canvas.get(group_id).type != "group":
        return [TextContent(type="text", text=f"Group not found: {group_id}")]

    session = StreamSession(canvas, config=config_from_env())
    if args.get("markup"):
        stream = replay(args["markup"], DEFAULT_CHUNK_SIZE)
    elif args.get("instruction"):
        stream = stream_completion(build_messages(args["instruction"]), transport_config_from_env())
    else:
        return [TextContent(type="text", text="Provide either markup or instruction")]

    try:
        await session.regenerate(group_id, stream)
    except StreamTransportFailure as e:
        logger.error(f"Regeneration failed: {e}")
        if session.chunks_received == 0:
            return [TextContent(type="text", text=f"Regeneration failed, canvas unchanged: {e}")]

    canvas.save(path)
    return _summary(session, canvas, path, None)


def main():
    """Entry point for the MCP server."""
    import asyncio
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(_run())


async def _run():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    main()
