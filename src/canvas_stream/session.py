"""
Streaming session: turns a chunked tag stream into laid-out canvas items.

Per chunk:

    append ──▶ complete / in-progress elements ──▶ position (anchor + columns)
           ──▶ host creates item ──▶ host measures true size
           ──▶ cascade below ──▶ overlap pass ──▶ grow container
           ──▶ one host refresh

Each chunk is processed to completion before the next one is awaited.  All
state (parser, anchors, column ledgers, pending references) belongs to one
``StreamSession``; independent sessions never share anything.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from .config import LayoutConfig
from .errors import DiagnosticLog, MalformedMarkup
from .host import HostSurface, determine_edge_sides
from .layout import (
    apply_position_updates,
    calculate_container_bounds,
    calculate_element_position,
    calculate_repositioning,
    calculate_safe_zones,
    column_x,
    register_element_in_column,
    update_element_height,
)
from .lifecycle import LifecycleEvent, LifecycleSequencer
from .models import DEFAULT_NODE_TYPE, ParsedEdge, ParsedGroup, ParsedNode, get_color_for_type
from .overlap import detect_overlaps, validate_no_overlap_invariant
from .parser import StreamTagParser
from .resolver import DependencyResolver
from .state import AnchorState, ColumnTracker, ContainerBounds, PlacedPosition, PositionUpdate

logger = logging.getLogger(__name__)

# Container for nodes that are not inside any group
ROOT_CONTAINER = "__root__"


@dataclass
class ElementRecord:
    element_id: str
    host_id: str
    container_id: str
    grid_row: int
    grid_col: int
    x: float
    y: float
    width: float
    height: float
    content: str
    type: str = DEFAULT_NODE_TYPE

    @property
    def rect(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)


@dataclass
class ContainerLayout:
    """Layout state of one container: locked anchor, column ledgers, bounds."""
    container_id: str
    host_id: Optional[str]
    anchor: AnchorState
    bounds: ContainerBounds
    tracker: ColumnTracker = field(default_factory=ColumnTracker)
    members: list[str] = field(default_factory=list)


class StreamSession:
    """Drives one generation run onto a host surface.

    Args:
        host: Canvas the items are created on.
        config: Layout options; defaults to ``LayoutConfig()``.
        listener: Called with every ``LifecycleEvent``.
        source_id: Host id of an existing item the generated content
                   answers; the first container (or top-level node) is
                   connected to it.
    """

    def __init__(
        self,
        host: HostSurface,
        config: Optional[LayoutConfig] = None,
        listener: Optional[Callable[[LifecycleEvent], None]] = None,
        source_id: Optional[str] = None,
    ):
        self.host = host
        self.config = config or LayoutConfig()
        self.diagnostics = DiagnosticLog(logger=logger)
        self.parser = StreamTagParser(self.diagnostics)
        self.lifecycle = LifecycleSequencer(listener=listener)
        self.resolver = DependencyResolver(is_available=self._is_available)
        self.source_id = source_id

        self.containers: dict[str, ContainerLayout] = {}
        self.elements: dict[str, ElementRecord] = {}
        self.edges: dict[str, str] = {}
        self._connected: dict[str, ParsedEdge] = {}
        self._placement: list[str] = []
        self._previewed: set[str] = set()

        self.chunks_received = 0
        self.originals_removed = 0
        self._originals: Optional[list[str]] = None
        self._source_connected = False
        self._dirty = False

    # ------------------------------------------------------------------
    # Stream driving
    # ------------------------------------------------------------------

    def _ensure_started(self) -> None:
        if not self.lifecycle.started:
            self.lifecycle.start()
        elif self.lifecycle.finished:
            raise RuntimeError("Session already finished")

    async def feed(self, chunk: str) -> None:
        """Process one chunk to completion, then refresh the host once."""
        self._ensure_started()
        if not chunk:
            return
        self.chunks_received += 1
        if self._originals is not None:
            self._remove_originals()

        self.parser.append(chunk)
        self._process()
        await self.refresh()

    async def refresh(self) -> None:
        """Refresh the host if anything changed since the last refresh."""
        if self._dirty:
            self._dirty = False
            await self.host.refresh()

    async def run(self, stream: AsyncIterable[str]) -> list[LifecycleEvent]:
        """Consume ``stream`` to the end and return the lifecycle events.

        A failure (including cancellation) emits the terminal ``failed``
        event and is re-raised.
        """
        self._ensure_started()
        try:
            async for chunk in stream:
                await self.feed(chunk)
            await self.finish()
        except (asyncio.CancelledError, Exception) as e:
            self.lifecycle.fail(e)
            raise
        return list(self.lifecycle.events)

    async def finish(self) -> None:
        """Settle unresolved references, refresh, and emit ``complete``."""
        self._ensure_started()
        for item in self.resolver.flush():
            payload = item.payload
            if isinstance(payload, ParsedNode):
                self.diagnostics.record(MalformedMarkup(
                    f"Group {payload.group_id} never appeared; placing {payload.id} at top level", payload.id
                ))
                self._upsert_node(payload.model_copy(update={"group_id": None}))
            elif isinstance(payload, ParsedEdge):
                self.diagnostics.record(MalformedMarkup(f"Edge {payload.key} skipped: endpoint not found"))

        for container in self.containers.values():
            for violation in validate_no_overlap_invariant(container.tracker, self.config):
                logger.warning(f"Unresolved overlap in {container.container_id}: {violation}")

        await self.refresh()
        self.lifecycle.complete(detail={
            "elements": len(self.elements),
            "edges": len(self.edges),
            "diagnostics": len(self.diagnostics),
        })

    async def regenerate(self, container_id: str, stream: AsyncIterable[str]) -> list[LifecycleEvent]:
        """Replace the children of an existing host group with streamed content.

        The original children stay until the first chunk arrives and are
        removed exactly once at that point.  A failure before any chunk
        leaves them untouched; a later failure leaves the partial new content.
        """
        rect = self.host.rect_of(container_id)
        if rect is None:
            raise KeyError(f"Unknown container {container_id}")

        x, y, width, height = rect
        self._originals = list(self.host.children_of(container_id))
        self.containers[ROOT_CONTAINER] = ContainerLayout(
            container_id=ROOT_CONTAINER,
            host_id=container_id,
            anchor=AnchorState.locked_at(x, y),
            bounds=ContainerBounds(x=x, y=y, width=width, height=height),
        )
        self._placement.append(ROOT_CONTAINER)
        logger.info(f"Regenerating {container_id} ({len(self._originals)} existing children)")
        return await self.run(stream)

    def _remove_originals(self) -> None:
        originals, self._originals = self._originals, None
        for item_id in originals:
            self.host.remove(item_id)
        self.originals_removed = len(originals)
        self._dirty = True
        logger.debug(f"Removed {len(originals)} original item(s)")

    def _process(self) -> None:
        parser = self.parser
        for group in parser.detect_complete_groups() + parser.detect_incomplete_groups():
            self._ensure_container(group)
        for element_id in parser.detect_rejected_nodes():
            self._withdraw_preview(element_id)
        for node in parser.detect_complete_nodes():
            self._submit_node(node)
        for edge in parser.detect_complete_edges():
            self.create_edge(edge)
        for node in parser.detect_incomplete_nodes():
            self._preview_node(node)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def _initial_bounds(self, anchor: AnchorState) -> ContainerBounds:
        top_safe, left_safe = calculate_safe_zones(anchor, self.config)
        cfg = self.config
        return ContainerBounds(
            x=anchor.anchor_x,
            y=anchor.anchor_y,
            width=cfg.padding * 2 + left_safe + cfg.node_width,
            height=cfg.header_clearance + top_safe + cfg.node_height + cfg.padding,
        )

    def _ensure_container(self, group: ParsedGroup) -> ContainerLayout:
        existing = self.containers.get(group.id)
        if existing is not None:
            return existing

        x, y = self._place(group)
        edge_direction = None
        source_rect = self._source_rect()
        if source_rect is not None:
            provisional = self._initial_bounds(AnchorState.locked_at(x, y))
            _, to_side = determine_edge_sides(
                source_rect, (x, y, provisional.width, provisional.height)
            )
            edge_direction = to_side if to_side in ("top", "left") else None

        anchor = AnchorState.locked_at(x, y, edge_direction)
        bounds = self._initial_bounds(anchor)
        host_id = self.host.create_group(x, y, bounds.width, bounds.height, group.get_label())
        container = ContainerLayout(container_id=group.id, host_id=host_id, anchor=anchor, bounds=bounds)
        self.containers[group.id] = container
        self._placement.append(group.id)
        self._dirty = True
        self._separate_containers()

        logger.debug(f"Container {group.id} anchored at ({container.anchor.anchor_x}, {container.anchor.anchor_y})")
        self._connect_source(host_id)
        self.lifecycle.element_created(group.id)
        self.resolver.notify_created(group.id)
        return container

    def _container(self, container_id: Optional[str]) -> ContainerLayout:
        if container_id is not None and container_id in self.containers:
            return self.containers[container_id]
        root = self.containers.get(ROOT_CONTAINER)
        if root is None:
            x, y = self._place(ParsedGroup(id=ROOT_CONTAINER, title=""))
            anchor = AnchorState.locked_at(x, y)
            root = ContainerLayout(
                container_id=ROOT_CONTAINER, host_id=None, anchor=anchor, bounds=self._initial_bounds(anchor)
            )
            self.containers[ROOT_CONTAINER] = root
            self._placement.append(ROOT_CONTAINER)
        return root

    def _place(self, group: ParsedGroup) -> tuple[float, float]:
        """Host placement, pushed right of every container this session placed.

        The root container has no host item, so the host alone cannot see it.
        """
        x, y = self.host.place_container(group)
        provisional = self._initial_bounds(AnchorState.locked_at(x, y))
        return self._clear_x(provisional, self._placement), y

    def _clear_x(self, bounds: ContainerBounds, others: list[str]) -> float:
        """Leftmost x at or after ``bounds.x`` that keeps a gap to ``others``."""
        gap = self.config.horizontal_gap
        x = bounds.x
        moved = True
        while moved:
            moved = False
            for container_id in others:
                other = self.containers[container_id].bounds
                if (x < other.right + gap and other.x < x + bounds.width + gap
                        and bounds.y < other.bottom and other.y < bounds.bottom):
                    x = other.right + gap
                    moved = True
        return x

    def _separate_containers(self) -> None:
        """Keep top-level containers apart after one of them grew.

        Containers are visited in placement order; each is pushed right of
        any earlier one it now touches.  A push moves the container and its
        members together, so the anchor keeps its place relative to them.
        """
        for index, container_id in enumerate(self._placement):
            container = self.containers[container_id]
            x = self._clear_x(container.bounds, self._placement[:index])
            if x != container.bounds.x:
                self._translate(container, x - container.bounds.x)

    def _translate(self, container: ContainerLayout, dx: float) -> None:
        container.anchor = container.anchor.translated(dx)
        container.bounds = replace(container.bounds, x=container.bounds.x + dx)
        if container.host_id is not None:
            self.host.move(container.host_id, container.bounds.x, container.bounds.y)
        for element_id in container.members:
            record = self.elements[element_id]
            record.x += dx
            self.host.move(record.host_id, record.x, record.y)
        self._dirty = True
        logger.debug(f"Container {container.container_id} moved right by {dx} to clear its neighbours")

    def get_container_bounds(self, container_id: Optional[str] = None) -> ContainerBounds:
        if container_id is None:
            if ROOT_CONTAINER in self.containers:
                container_id = ROOT_CONTAINER
            elif self.containers:
                container_id = next(iter(self.containers))
            else:
                raise KeyError("Session has no containers yet")
        return self.containers[container_id].bounds

    # ------------------------------------------------------------------
    # Elements
    # ------------------------------------------------------------------

    def create_element(
        self,
        element_id: str,
        row: int,
        col: int,
        content: str,
        node_type: str = DEFAULT_NODE_TYPE,
        container_id: Optional[str] = None,
    ) -> PlacedPosition:
        """Place and create a text element; returns where it was put."""
        self._ensure_started()
        existing = self.elements.get(element_id)
        if existing is not None:
            self.diagnostics.record(MalformedMarkup(f"Duplicate element id {element_id}", element_id))
            container = self.containers[existing.container_id]
            norm_row = existing.grid_row - container.anchor.min_row_seen
            norm_col = existing.grid_col - container.anchor.min_col_seen
            return PlacedPosition(existing.x, existing.y, norm_row, norm_col, existing.grid_row, existing.grid_col)

        container = self._container(container_id)
        pos = calculate_element_position(
            element_id, row, col, container.anchor, container.tracker, self.config, self.diagnostics
        )

        width, height = self.host.measure(content, self.config.node_width)
        host_id = self.host.create_text_node(
            pos.x, pos.y, width, height, content,
            color=get_color_for_type(node_type), parent_id=container.host_id,
        )
        register_element_in_column(
            element_id, pos.grid_row, pos.grid_col, pos.y, height, container.tracker, width=width
        )
        self.elements[element_id] = ElementRecord(
            element_id=element_id,
            host_id=host_id,
            container_id=container.container_id,
            grid_row=pos.grid_row,
            grid_col=pos.grid_col,
            x=pos.x,
            y=pos.y,
            width=width,
            height=height,
            content=content,
            type=node_type,
        )
        container.members.append(element_id)
        self._dirty = True

        logger.debug(f"Created {element_id} at ({pos.x}, {pos.y}) in {container.container_id}")
        self._relayout(container, pos.grid_col, pos.grid_row)
        if container.host_id is None:
            self._connect_source(host_id)
        self.lifecycle.element_created(element_id)
        self.resolver.notify_created(element_id)
        return pos

    def update_element_content(self, element_id: str, new_content: str) -> None:
        """Replace an element's text and push the column below it if it grew."""
        self._ensure_started()
        record = self.elements.get(element_id)
        if record is None:
            raise KeyError(f"Unknown element {element_id}")
        if record.content == new_content:
            return

        record.content = new_content
        self.host.update_text(record.host_id, new_content)
        width, height = self.host.measure(new_content, record.width)
        if (width, height) != (record.width, record.height):
            record.width, record.height = width, height
            self.host.resize(record.host_id, width, height)
            container = self.containers[record.container_id]
            located = update_element_height(element_id, height, container.tracker, width=width)
            if located is not None:
                col, row = located
                self._relayout(container, col, row)

        self._dirty = True
        self.lifecycle.element_updated(element_id)

    def _upsert_node(self, node: ParsedNode) -> None:
        if node.id in self.elements:
            self.update_element_content(node.id, node.content)
            return
        self.create_element(
            node.id, node.row, node.col, node.content, node_type=node.type, container_id=node.group_id
        )

    def _submit_node(self, node: ParsedNode) -> None:
        self._previewed.discard(node.id)
        if node.group_id and node.group_id not in self.containers:
            self.resolver.submit(node.id, [node.group_id], lambda: self._upsert_node(node), payload=node)
            return
        self._upsert_node(node)

    def _preview_node(self, node: ParsedNode) -> None:
        if node.id in self.elements:
            self.update_element_content(node.id, node.content)
        elif not node.group_id or node.group_id in self.containers:
            self._upsert_node(node)
            self._previewed.add(node.id)

    def _withdraw_preview(self, element_id: str) -> None:
        """Remove an element that only ever existed as a preview of a rejected tag."""
        if element_id not in self._previewed:
            return
        self._previewed.discard(element_id)
        record = self.elements.pop(element_id)
        container = self.containers[record.container_id]
        container.members.remove(element_id)
        container.tracker.remove(element_id)
        self.host.remove(record.host_id)
        for key, edge in list(self._connected.items()):
            if element_id in (edge.from_id, edge.to_id):
                # Connector went with the item; wait for the id again
                del self._connected[key]
                del self.edges[key]
                self.create_edge(edge)
        self._dirty = True
        logger.info(f"Withdrew preview of rejected node {element_id}")

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _is_available(self, element_id: str) -> bool:
        if element_id in self.elements:
            return True
        container = self.containers.get(element_id)
        return container is not None and container.host_id is not None

    def _host_id(self, element_id: str) -> str:
        if element_id in self.elements:
            return self.elements[element_id].host_id
        return self.containers[element_id].host_id

    def create_edge(self, edge: ParsedEdge) -> bool:
        """Connect two elements now, or once both exist.

        Returns False for an edge that duplicates one already seen.
        """
        self._ensure_started()
        if edge.key in self.edges or edge.key in self.resolver.pending:
            return False
        self.resolver.submit(edge.key, [edge.from_id, edge.to_id], lambda: self._connect(edge), payload=edge)
        return True

    def _connect(self, edge: ParsedEdge) -> None:
        from_host = self._host_id(edge.from_id)
        to_host = self._host_id(edge.to_id)
        from_side, to_side = determine_edge_sides(self.host.rect_of(from_host), self.host.rect_of(to_host))
        self.edges[edge.key] = self.host.create_edge(
            from_host, to_host, from_side, to_side, label=edge.label, direction=edge.dir
        )
        self._connected[edge.key] = edge
        self._dirty = True
        self.lifecycle.edge_created(edge.key)

    def _source_rect(self) -> Optional[tuple[float, float, float, float]]:
        if self.source_id is None or self._source_connected:
            return None
        return self.host.rect_of(self.source_id)

    def _connect_source(self, target_host_id: str) -> None:
        source_rect = self._source_rect()
        if source_rect is None:
            return
        from_side, to_side = determine_edge_sides(source_rect, self.host.rect_of(target_host_id))
        self.host.create_edge(self.source_id, target_host_id, from_side, to_side)
        self._source_connected = True

    # ------------------------------------------------------------------
    # Relayout
    # ------------------------------------------------------------------

    def _move(self, updates: list[PositionUpdate]) -> None:
        for update in updates:
            record = self.elements.get(update.element_id)
            if record is None or record.y == update.new_y:
                continue
            record.y = update.new_y
            self.host.move(record.host_id, record.x, record.y)

    def _realign_columns(self, container: ContainerLayout) -> None:
        """Move elements whose column x changed (wider column, new leftmost column)."""
        for col, entry in container.tracker.entries():
            record = self.elements[entry.element_id]
            x = column_x(col, container.anchor, container.tracker, self.config)
            if x != record.x:
                record.x = x
                self.host.move(record.host_id, record.x, record.y)

    def _relayout(self, container: ContainerLayout, col: int, row: int) -> None:
        """Cascade below ``row``, fix overlaps, realign columns, grow bounds."""
        updates = calculate_repositioning(col, row, container.tracker, self.config)
        apply_position_updates(updates, container.tracker)
        self._move(updates)
        self._move(detect_overlaps(col, container.tracker, self.config, self.diagnostics))
        self._realign_columns(container)
        self._update_bounds(container)

    def _update_bounds(self, container: ContainerLayout) -> None:
        members = [self.elements[m].rect for m in container.members]
        bounds = calculate_container_bounds(container.bounds, members, container.anchor, self.config)
        if bounds != container.bounds:
            container.bounds = bounds
            if container.host_id is not None:
                self.host.resize(container.host_id, bounds.width, bounds.height)
            self._dirty = True
            self._separate_containers()


async def replay(text: str, chunk_size: int = 24) -> AsyncIterator[str]:
    """Yield ``text`` in fixed-size chunks, as a stand-in for a live stream."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    for start in range(0, len(text), chunk_size):
        yield text[start:start + chunk_size]
        await asyncio.sleep(0)
