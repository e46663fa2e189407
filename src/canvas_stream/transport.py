"""Streaming client for an OpenAI-compatible chat completions endpoint.

Yields the text deltas of a ``stream=True`` completion as they arrive.  Any
HTTP error, timeout or dropped connection is raised as
``StreamTransportFailure``, which is the only error that ends a session.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import aiohttp

from .config import TransportConfig
from .errors import StreamTransportFailure
from .models import NODE_STYLES

logger = logging.getLogger(__name__)


def _type_rules() -> str:
    return "\n".join(f"- {name}: {style.description}" for name, style in NODE_STYLES.items())


GENERATION_PROMPT = f"""
You are a canvas assistant. Answer the user's instruction as a set of cards
laid out on a grid.

OUTPUT FORMAT:
1. Each card: <node id="..." type="..." title="..." row="Int" col="Int">Markdown</node>
2. Related cards may be wrapped in <group id="..." title="..." row="Int" col="Int">...</group>
   (one level only, no groups inside groups).
3. Optional connectors: <edge from="id" to="id" dir="forward|bi|none" label="..."/>
4. row/col are relative to the source card at (0, 0); negative values are allowed.

TYPES (control the card color):
{_type_rules()}

Keep each card focused. Use the language of the instruction. Output only the
tags above, no surrounding prose.
""".strip()


def build_messages(instruction: str, source_text: Optional[str] = None) -> list[dict]:
    """Chat messages asking the model for streamed canvas markup."""
    messages = [{"role": "system", "content": GENERATION_PROMPT}]
    if source_text:
        messages.append({"role": "user", "content": f"Source card:\n{source_text}"})
    messages.append({"role": "user", "content": instruction})
    return messages


def parse_sse_line(line: str) -> Optional[str]:
    """Extract the text delta from one server-sent-events line.

    Returns ``""`` for lines that carry no text, None for the ``[DONE]``
    terminator.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return ""
    payload = line[len("data:"):].strip()
    if payload == "[DONE]":
        return None
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning(f"Skipping undecodable stream event: {payload[:80]}")
        return ""
    choices = event.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("delta") or {}).get("content") or ""


async def stream_completion(
    messages: list[dict],
    config: Optional[TransportConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> AsyncIterator[str]:
    """Yield completion text chunks for ``messages``.

    Pass ``session`` to reuse a connection pool; otherwise one is opened for
    the duration of the stream.
    """
    config = config or TransportConfig()
    url = f"{config.base_url.rstrip('/')}/chat/completions"
    body = {"model": config.model, "messages": messages, "stream": True}
    if config.max_tokens is not None:
        body["max_tokens"] = config.max_tokens
    if config.temperature is not None:
        body["temperature"] = config.temperature
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"

    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=config.timeout))

    try:
        async with session.post(url, json=body, headers=headers) as response:
            if response.status >= 400:
                detail = (await response.text())[:200]
                raise StreamTransportFailure(f"HTTP {response.status} from {url}: {detail}")

            buffer = b""
            async for chunk in response.content.iter_any():
                buffer += chunk
                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    text = parse_sse_line(line.decode("utf-8", errors="replace"))
                    if text is None:
                        return
                    if text:
                        yield text

            if buffer.strip():
                text = parse_sse_line(buffer.decode("utf-8", errors="replace"))
                if text:
                    yield text
            raise StreamTransportFailure(f"Stream from {url} ended without [DONE]")
    except asyncio.TimeoutError as e:
        raise StreamTransportFailure(f"Timed out after {config.timeout}s waiting for {url}") from e
    except aiohttp.ClientError as e:
        raise StreamTransportFailure(f"Connection to {url} failed: {e}") from e
    finally:
        if owns_session:
            await session.close()
