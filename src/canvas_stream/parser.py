"""Incremental tag-stream parser for canvas-stream.

The generator streams a small tag vocabulary:

    <group id="g1" title="Overview" row="0" col="0">
      <node id="n1" type="concept" row="0" col="0">Markdown body</node>
      <node id="n2" type="step" row="1" col="0">...</node>
    </group>
    <edge from="n1" to="n2" dir="forward" label="leads to"/>

Chunk boundaries never line up with tag boundaries, so no prefix of the
buffer is guaranteed to be well-formed.  Rather than handing the text to an
XML parser, ``StreamTagParser`` runs a small scanner over the raw buffer:

  * complete elements are consumed in document order starting at
    ``processed_length``; the cursor only moves forward, to the end of the
    last consumed element, and the scan stops at the first element whose
    closing markup has not arrived yet;
  * in-progress elements are previewed read-only from the unprocessed tail,
    so the caller can show a node while its body is still streaming;
  * malformed elements are skipped with a diagnostic and never abort a scan.

Extracted text goes through ``sanitize_content`` (drop a trailing partial
tag such as ``</no``) and ``dedent_content`` (remove uniform indentation so
Markdown does not render it as a code block).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from xml.sax.saxutils import unescape

from .errors import (
    CanvasStreamError,
    DiagnosticLog,
    MalformedMarkup,
    MissingRequiredAttribute,
    UnknownElementType,
)
from .models import (
    DEFAULT_EDGE_DIRECTION,
    DEFAULT_GROUP_TITLE,
    DEFAULT_NODE_TYPE,
    EDGE_DIRECTIONS,
    ParsedEdge,
    ParsedGroup,
    ParsedNode,
    is_valid_node_type,
)

logger = logging.getLogger(__name__)


# --- Scanner patterns ---

# Any structural tag start: <node, </node, <group, </group, <edge, </edge
_TOKEN = re.compile(r"</?(?:node|group|edge)\b")
_OPEN_TAG = re.compile(r"<(?P<name>node|group|edge)(?P<attrs>\s[^<>]*?)?(?P<self_closing>/?)>")
_CLOSE_TAG = re.compile(r"</(?P<name>node|group|edge)\s*>")
_NODE_CLOSE = re.compile(r"</node\s*>")
_EDGE_CLOSE = re.compile(r"\s*</edge\s*>")
_NODE_OPEN_TAG = re.compile(r"<node(?P<attrs>\s[^<>]*?)?(?P<self_closing>/?)>")
_GROUP_OPEN_TAG = re.compile(r"<group(?P<attrs>\s[^<>]*?)?(?<!/)>")
_GROUP_CLOSE = re.compile(r"</group\s*>")
_ATTRIBUTE = re.compile(r"""(?P<key>[A-Za-z_][\w.-]*)\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)')""")
_INTEGER = re.compile(r"\s*([+-]?\d+)")

# Trailing fragment of a tag cut by a chunk boundary: <, </, <abc, </abc
_PARTIAL_TAG = re.compile(r"</?[A-Za-z]*\Z")
_ENTITIES = {"&quot;": '"', "&apos;": "'"}


# ---------------------------------------------------------------------------
# Content clean-up
# ---------------------------------------------------------------------------

def sanitize_content(content: str) -> str:
    """Remove a trailing partial tag from ``content``.

    Strips ``<``, ``</``, ``<`` + letters and ``</`` + letters at the very
    end of the string, repeatedly, so ``"text<</"`` becomes ``"text"``.
    A ``<`` followed by anything else is ordinary text: ``"a < b"`` and
    ``"x<5"`` are returned unchanged.
    """
    if not isinstance(content, str):
        content = "" if content is None else str(content)
    while True:
        stripped = _PARTIAL_TAG.sub("", content, count=1)
        if stripped == content:
            return content
        content = stripped


def _leading_whitespace(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def dedent_content(content: str) -> str:
    """Remove the indentation shared by every non-blank line.

    Spaces and tabs each count as one unit.  Relative indentation between
    lines is preserved and blank or whitespace-only lines are left exactly
    as they are.
    """
    if not isinstance(content, str):
        content = "" if content is None else str(content)
    lines = content.split("\n")
    indents = [_leading_whitespace(line) for line in lines if line.strip()]
    if not indents:
        return content
    shared = min(indents)
    if shared == 0:
        return content
    return "\n".join(line[shared:] if line.strip() else line for line in lines)


def clean_content(raw: str) -> str:
    """Full clean-up applied to node bodies: sanitize, trim blank edges, dedent.

    Entities are unescaped last and the result is sanitized again, so an
    escaped ``&lt;/b`` at the end cannot surface as a partial tag.
    """
    text = sanitize_content(raw)
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    text = dedent_content("\n".join(lines)).rstrip()
    return sanitize_content(unescape(text, _ENTITIES)).rstrip()


# ---------------------------------------------------------------------------
# Attribute helpers
# ---------------------------------------------------------------------------

def _parse_attributes(raw: Optional[str]) -> dict[str, str]:
    attrs: dict[str, str] = {}
    if not raw:
        return attrs
    for match in _ATTRIBUTE.finditer(raw):
        value = match.group("dq") if match.group("dq") is not None else match.group("sq")
        attrs[match.group("key")] = unescape(value, _ENTITIES)
    return attrs


def _parse_int(value: Optional[str]) -> Optional[int]:
    """Leading-integer parse: ``"3"`` and ``"3px"`` give 3, ``"x"`` gives None."""
    if value is None:
        return None
    match = _INTEGER.match(value)
    return int(match.group(1)) if match else None


def _require_coordinates(attrs: dict[str, str], kind: str, element_id: str) -> tuple[int, int]:
    if "row" not in attrs or "col" not in attrs:
        raise MissingRequiredAttribute(
            f"{kind.capitalize()} {element_id} missing 'row' or 'col' attribute", element_id
        )
    row = _parse_int(attrs["row"])
    col = _parse_int(attrs["col"])
    if row is None or col is None:
        raise MalformedMarkup(f"{kind.capitalize()} {element_id} has invalid row/col values", element_id)
    return row, col


def _preview_coordinates(attrs: dict[str, str]) -> Optional[tuple[int, int]]:
    row = _parse_int(attrs.get("row"))
    col = _parse_int(attrs.get("col"))
    if row is None or col is None:
        return None
    return row, col


@dataclass
class _OpenGroup:
    """A group whose opening tag has been scanned but not its closing tag."""
    start: int
    group: Optional[ParsedGroup]
    children: list[ParsedNode] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class StreamTagParser:
    """Buffers one stream and extracts nodes, groups and edges from it.

    One instance belongs to exactly one streaming session.
    """

    def __init__(self, diagnostics: Optional[DiagnosticLog] = None):
        self.buffer: str = ""
        self.processed_length: int = 0
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog(logger=logger)
        self._open_group: Optional[_OpenGroup] = None
        self._rejected: set[int] = set()
        self._rejected_node_ids: list[str] = []
        self._pending_nodes: list[ParsedNode] = []
        self._pending_groups: list[ParsedGroup] = []
        self._pending_edges: list[ParsedEdge] = []

    # --- Buffer access ---

    def append(self, chunk: str) -> None:
        """Append a chunk to the buffer.  No parsing happens here."""
        if chunk:
            self.buffer += chunk

    @property
    def unprocessed_content(self) -> str:
        return self.buffer[self.processed_length:]

    @property
    def full_content(self) -> str:
        return self.buffer

    # --- Content helpers ---

    def sanitize_content(self, content: str) -> str:
        return sanitize_content(content)

    def dedent_content(self, content: str) -> str:
        return dedent_content(content)

    # --- Complete elements ---

    def detect_complete_nodes(self) -> list[ParsedNode]:
        """Return nodes completed since the last call, in document order."""
        self._scan()
        nodes, self._pending_nodes = self._pending_nodes, []
        return nodes

    def detect_complete_groups(self) -> list[ParsedGroup]:
        """Return groups whose closing tag arrived since the last call."""
        self._scan()
        groups, self._pending_groups = self._pending_groups, []
        return groups

    def detect_complete_edges(self) -> list[ParsedEdge]:
        """Return edges completed since the last call."""
        self._scan()
        edges, self._pending_edges = self._pending_edges, []
        return edges

    def detect_rejected_nodes(self) -> list[str]:
        """Ids of node tags rejected since the last call.

        A node can be previewed while its body streams and still be rejected
        once the rest of it arrives (another tag interrupts it before
        ``</node>``); callers use this to withdraw such previews.
        """
        self._scan()
        ids, self._rejected_node_ids = self._rejected_node_ids, []
        return ids

    def _advance(self, end: int) -> None:
        if end > self.processed_length:
            self.processed_length = end

    def _reject(self, start: int, error: CanvasStreamError) -> None:
        if start in self._rejected:
            return
        self._rejected.add(start)
        self.diagnostics.record(error)

    def _reject_node(self, tag: re.Match, error: CanvasStreamError) -> None:
        if tag.start() in self._rejected:
            return
        self._reject(tag.start(), error)
        node_id = _parse_attributes(tag.group("attrs")).get("id")
        if node_id:
            self._rejected_node_ids.append(node_id)

    def _scan(self) -> None:
        """Consume every complete element after the cursor.

        Each detect call runs the same scan so the three element kinds are
        consumed together in document order; nothing is lost when an edge
        sits between two nodes.
        """
        buf = self.buffer
        pos = self.processed_length

        while True:
            token = _TOKEN.search(buf, pos)
            if token is None:
                return
            start = token.start()

            if buf.startswith("</", start):
                close = _CLOSE_TAG.match(buf, start)
                if close is None:
                    if buf.find(">", start) == -1:
                        return  # closing tag still streaming
                    pos = start + 2
                    continue
                if close.group("name") == "group" and self._open_group is not None:
                    self._close_group(close.end())
                pos = close.end()
                continue

            tag = _OPEN_TAG.match(buf, start)
            if tag is None:
                if buf.find(">", start) == -1:
                    return  # opening tag still streaming
                self._reject(start, MalformedMarkup(f"Malformed tag at offset {start}"))
                pos = start + 1
                continue

            name = tag.group("name")
            if name == "node":
                next_pos = self._scan_node(tag)
            elif name == "edge":
                next_pos = self._scan_edge(tag)
            else:
                next_pos = self._scan_group(tag)

            if next_pos is None:
                return
            pos = next_pos

    def _scan_node(self, tag: re.Match) -> Optional[int]:
        buf = self.buffer
        start = tag.start()

        if tag.group("self_closing"):
            end = tag.end()
            body = ""
        else:
            close = _NODE_CLOSE.search(buf, tag.end())
            interrupt = _TOKEN.search(buf, tag.end(), close.start() if close else len(buf))
            if interrupt is not None and not buf.startswith("</node", interrupt.start()):
                # Another element began before this node was closed.
                self._reject_node(tag, MalformedMarkup(f"Unclosed node at offset {start}"))
                return interrupt.start()
            if close is None:
                return None
            end = close.end()
            body = buf[tag.end():close.start()]

        try:
            node = self._build_node(_parse_attributes(tag.group("attrs")), body)
        except CanvasStreamError as e:
            self._reject_node(tag, e)
            return end

        node.group_id = self._enclosing_group_id(start)
        self._pending_nodes.append(node)
        if self._open_group is not None and self._open_group.group is not None:
            self._open_group.children.append(node)
        self._advance(end)
        return end

    def _scan_edge(self, tag: re.Match) -> Optional[int]:
        end = tag.end()
        if not tag.group("self_closing"):
            close = _EDGE_CLOSE.match(self.buffer, end)
            if close is not None:
                end = close.end()
            elif "</edge>".startswith(self.buffer[end:].strip()) and self.buffer[end:].strip():
                return None  # closing tag partially streamed

        try:
            edge = self._build_edge(_parse_attributes(tag.group("attrs")))
        except CanvasStreamError as e:
            self._reject(tag.start(), e)
            return end

        self._pending_edges.append(edge)
        self._advance(end)
        return end

    def _scan_group(self, tag: re.Match) -> Optional[int]:
        start = tag.start()
        attrs = _parse_attributes(tag.group("attrs"))

        if tag.group("self_closing"):
            try:
                group = self._build_group(attrs)
            except CanvasStreamError as e:
                self._reject(start, e)
                return tag.end()
            self._pending_groups.append(group)
            self._advance(tag.end())
            return tag.end()

        if self._open_group is not None and self._open_group.start == start:
            return tag.end()

        if self._open_group is not None:
            previous = self._open_group.group.id if self._open_group.group else "?"
            self._reject(start, MalformedMarkup(
                f"Group opened at offset {start} before group {previous} was closed; "
                "only one nesting level is supported"
            ))

        try:
            group = self._build_group(attrs)
        except CanvasStreamError as e:
            self._reject(start, e)
            group = None
        self._open_group = _OpenGroup(start=start, group=group)
        return tag.end()

    def _close_group(self, end: int) -> None:
        opened = self._open_group
        self._open_group = None
        if opened is None or opened.group is None:
            return
        group = opened.group.model_copy(update={"children": list(opened.children)})
        self._pending_groups.append(group)
        self._advance(end)

    # --- Element construction ---

    def _node_type(self, value: Optional[str], element_id: str, report: bool = True) -> str:
        if value is None:
            return DEFAULT_NODE_TYPE
        if is_valid_node_type(value):
            return value.lower()
        if report:
            self.diagnostics.record(UnknownElementType(
                f'Invalid node type "{value}" for {element_id}, using "{DEFAULT_NODE_TYPE}"', element_id
            ))
        return DEFAULT_NODE_TYPE

    def _build_node(self, attrs: dict[str, str], body: str) -> ParsedNode:
        node_id = attrs.get("id")
        if not node_id:
            raise MissingRequiredAttribute("Node missing required 'id' attribute")
        row, col = _require_coordinates(attrs, "node", node_id)
        return ParsedNode(
            id=node_id,
            type=self._node_type(attrs.get("type"), node_id),
            title=attrs.get("title") or None,
            row=row,
            col=col,
            content=clean_content(body),
        )

    def _build_group(self, attrs: dict[str, str]) -> ParsedGroup:
        group_id = attrs.get("id")
        if not group_id:
            raise MissingRequiredAttribute("Group missing required 'id' attribute")
        row, col = _require_coordinates(attrs, "group", group_id)
        return ParsedGroup(
            id=group_id,
            title=attrs.get("title") or DEFAULT_GROUP_TITLE,
            row=row,
            col=col,
        )

    def _build_edge(self, attrs: dict[str, str]) -> ParsedEdge:
        from_id = attrs.get("from")
        to_id = attrs.get("to")
        if not from_id or not to_id:
            raise MissingRequiredAttribute("Edge missing required 'from' or 'to' attribute")

        direction = (attrs.get("dir") or DEFAULT_EDGE_DIRECTION).lower()
        if direction not in EDGE_DIRECTIONS:
            self.diagnostics.record(UnknownElementType(
                f'Invalid edge direction "{attrs.get("dir")}" for {from_id}->{to_id}, '
                f'using "{DEFAULT_EDGE_DIRECTION}"'
            ))
            direction = DEFAULT_EDGE_DIRECTION

        return ParsedEdge(
            from_id=from_id,
            to_id=to_id,
            dir=direction,
            label=attrs.get("label") or None,
        )

    def _enclosing_group_id(self, position: int) -> Optional[str]:
        """Id of the group left open before ``position``, by counting tags."""
        before = self.buffer[:position]
        opens = list(_GROUP_OPEN_TAG.finditer(before))
        closes = len(_GROUP_CLOSE.findall(before))
        if len(opens) <= closes:
            return None
        return _parse_attributes(opens[-1].group("attrs")).get("id") or None

    # --- In-progress elements ---

    def detect_incomplete_nodes(self) -> list[ParsedNode]:
        """Preview nodes whose closing tag has not arrived yet.

        Only tags complete detection could still accept are previewed: an
        opening tag without an id or without integer ``row`` and ``col`` is
        skipped, and so is a node already rejected as unclosed.

        Read-only: calling this any number of times gives the same result and
        never moves ``processed_length``.
        """
        buf = self.buffer
        nodes: list[ParsedNode] = []

        for tag in _NODE_OPEN_TAG.finditer(buf, self.processed_length):
            if tag.group("self_closing"):
                continue
            if tag.start() in self._rejected:
                continue
            following = _TOKEN.search(buf, tag.end())
            if following is not None and buf.startswith("</node", following.start()):
                continue  # closed; complete detection owns it

            attrs = _parse_attributes(tag.group("attrs"))
            node_id = attrs.get("id")
            coordinates = _preview_coordinates(attrs)
            if not node_id or coordinates is None:
                continue

            end = following.start() if following is not None else len(buf)
            nodes.append(ParsedNode(
                id=node_id,
                type=self._node_type(attrs.get("type"), node_id, report=False),
                title=attrs.get("title") or None,
                row=coordinates[0],
                col=coordinates[1],
                content=clean_content(buf[tag.end():end]),
                group_id=self._enclosing_group_id(tag.start()),
            ))

        return nodes

    def detect_incomplete_groups(self) -> list[ParsedGroup]:
        """Preview groups whose closing tag has not arrived yet.

        A group whose children were already consumed still counts: its
        opening tag sits before the cursor but the group itself is open.
        """
        buf = self.buffer
        groups: list[ParsedGroup] = []
        seen: set[int] = set()

        opened = self._open_group
        if opened is not None and opened.group is not None:
            groups.append(opened.group.model_copy(update={"children": list(opened.children)}))
            seen.add(opened.start)

        for tag in _GROUP_OPEN_TAG.finditer(buf, self.processed_length):
            if tag.start() in seen or tag.start() in self._rejected:
                continue
            if _GROUP_CLOSE.search(buf, tag.end()) is not None:
                continue
            attrs = _parse_attributes(tag.group("attrs"))
            group_id = attrs.get("id")
            coordinates = _preview_coordinates(attrs)
            if not group_id or coordinates is None:
                continue
            groups.append(ParsedGroup(
                id=group_id,
                title=attrs.get("title") or DEFAULT_GROUP_TITLE,
                row=coordinates[0],
                col=coordinates[1],
            ))

        return groups
