"""Tests for the in-memory host canvas and connector side selection."""

import json

import pytest

from canvas_stream.host import HostSurface, MemoryCanvas, determine_edge_sides
from canvas_stream.models import ParsedGroup


class TestEdgeSides:
    @pytest.mark.parametrize("target,expected", [
        ((500, 0, 100, 100), ("right", "left")),
        ((-500, 0, 100, 100), ("left", "right")),
        ((0, 500, 100, 100), ("bottom", "top")),
        ((0, -500, 100, 100), ("top", "bottom")),
        ((300, 200, 100, 100), ("right", "left")),
        ((200, 300, 100, 100), ("bottom", "top")),
    ])
    def test_dominant_axis(self, target, expected):
        assert determine_edge_sides((0, 0, 100, 100), target) == expected


class TestMemoryCanvas:
    def test_is_host_surface(self, canvas):
        assert isinstance(canvas, HostSurface)

    def test_create_and_query(self, canvas):
        group = canvas.create_group(0, 0, 800, 600, "Plan", color="5")
        node = canvas.create_text_node(20, 120, 360, 200, "hello", color="2", parent_id=group)

        assert canvas.children_of(group) == [node]
        assert canvas.rect_of(node) == (20, 120, 360, 200)
        assert canvas.rect_of("missing") is None
        assert canvas.get(group).label == "Plan"

    def test_item_ids_are_unique_uuid_hex(self, canvas):
        ids = {canvas.create_text_node(0, 0, 10, 10, "x") for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 16 and set(i) <= set("0123456789abcdef") for i in ids)

    def test_mutations(self, canvas):
        node = canvas.create_text_node(0, 0, 100, 100, "a")
        canvas.update_text(node, "b")
        canvas.move(node, 10, 20)
        canvas.resize(node, 300, 400)
        item = canvas.get(node)
        assert (item.text, item.x, item.y, item.width, item.height) == ("b", 10, 20, 300, 400)

    def test_edge_requires_both_items(self, canvas):
        node = canvas.create_text_node(0, 0, 100, 100, "a")
        with pytest.raises(KeyError):
            canvas.create_edge(node, "ghost", "right", "left")

    def test_remove_group_cascades(self, canvas):
        group = canvas.create_group(0, 0, 800, 600, "G")
        inside = canvas.create_text_node(20, 120, 100, 100, "in", parent_id=group)
        outside = canvas.create_text_node(1000, 0, 100, 100, "out")
        canvas.create_edge(inside, outside, "right", "left")

        canvas.remove(group)

        assert set(canvas.items) == {outside}
        assert canvas.edges == {}
        assert set(canvas.removed) == {group, inside}
        canvas.remove(group)

    def test_measure_delegates(self, canvas):
        assert canvas.measure("one\ntwo", 360) == (360, 400)

    def test_place_container(self, canvas):
        assert canvas.place_container(ParsedGroup(id="g1")) == (0.0, 240.0)
        group = canvas.create_group(0, 240, 400, 300, "G")
        canvas.create_text_node(20, 360, 360, 100, "child", parent_id=group)
        assert canvas.place_container(ParsedGroup(id="g2")) == (600, 240)

    @pytest.mark.asyncio
    async def test_refresh_counts(self, canvas):
        await canvas.refresh()
        await canvas.refresh()
        assert canvas.refresh_count == 2


class TestJsonCanvas:
    def test_export(self, canvas):
        node = canvas.create_text_node(10.4, 20.6, 360, 200, "text node", color="1")
        group = canvas.create_group(0, 0, 800, 600, "G")
        other = canvas.create_text_node(500, 0, 360, 200, "x")
        canvas.create_edge(node, other, "right", "left", label="uses", direction="bi")
        canvas.create_edge(other, node, "left", "right", direction="none")

        data = canvas.to_json_canvas()

        assert data["nodes"][0]["id"] == group
        assert data["nodes"][0]["label"] == "G"
        text = next(n for n in data["nodes"] if n["id"] == node)
        assert (text["x"], text["y"], text["color"], text["text"]) == (10, 21, "1", "text node")
        bi, plain = data["edges"]
        assert bi["fromEnd"] == "arrow" and bi["label"] == "uses"
        assert plain["toEnd"] == "none" and "fromEnd" not in plain

    def test_load_assigns_smallest_enclosing_group(self):
        data = {
            "nodes": [
                {"id": "outer", "type": "group", "x": 0, "y": 0, "width": 2000, "height": 2000, "label": "Outer"},
                {"id": "inner", "type": "group", "x": 100, "y": 100, "width": 500, "height": 500, "label": "Inner"},
                {"id": "a", "type": "text", "x": 120, "y": 220, "width": 360, "height": 200, "text": "A"},
                {"id": "b", "type": "text", "x": 900, "y": 900, "width": 360, "height": 200, "text": "B"},
                {"id": "c", "type": "text", "x": 3000, "y": 0, "width": 360, "height": 200, "text": "C"},
            ],
            "edges": [
                {"id": "e1", "fromNode": "a", "fromSide": "right", "toNode": "b", "toSide": "left"},
                {"id": "e2", "fromNode": "b", "fromSide": "bottom", "toNode": "c", "toSide": "top",
                 "fromEnd": "arrow"},
            ],
        }
        canvas = MemoryCanvas.from_json_canvas(data)

        assert canvas.children_of("inner") == ["a"]
        assert canvas.children_of("outer") == ["b"]
        assert canvas.get("c").parent_id is None
        assert canvas.edges["e1"].direction == "forward"
        assert canvas.edges["e2"].direction == "bi"

    def test_save(self, canvas, tmp_path):
        canvas.create_text_node(0, 0, 100, 100, "saved")
        path = canvas.save(tmp_path / "out.canvas")
        assert json.loads(path.read_text())["nodes"][0]["text"] == "saved"
