"""Unit tests for the incremental tag-stream parser."""

import pytest

from canvas_stream.parser import StreamTagParser


def feed(*chunks):
    parser = StreamTagParser()
    for chunk in chunks:
        parser.append(chunk)
    return parser


class TestCompleteNodes:
    """Tests for detect_complete_nodes."""

    def test_close_tag_split_across_chunks(self):
        """A closing tag cut at '</' completes once the rest arrives."""
        parser = feed('<node id="n1" type="concept" row="0" col="0">Content text</')
        assert parser.detect_complete_nodes() == []

        parser.append("node>")
        nodes = parser.detect_complete_nodes()

        assert len(nodes) == 1
        assert nodes[0].id == "n1"
        assert nodes[0].type == "concept"
        assert nodes[0].content == "Content text"
        assert "</" not in nodes[0].content

    def test_node_emitted_once(self):
        parser = feed('<node id="n1" row="0" col="0">A</node>')
        assert len(parser.detect_complete_nodes()) == 1
        assert parser.detect_complete_nodes() == []
        assert parser.processed_length == len(parser.buffer)

    def test_attributes(self):
        parser = feed('<node title="Setup" col="2" row="-1" id="n9" type="Step">Body</node>')
        node = parser.detect_complete_nodes()[0]
        assert (node.id, node.type, node.title, node.row, node.col) == ("n9", "step", "Setup", -1, 2)
        assert node.get_label() == "Setup"

    def test_single_quoted_attributes(self):
        parser = feed("<node id='n1' row='3' col='0'>x</node>")
        node = parser.detect_complete_nodes()[0]
        assert node.id == "n1"
        assert node.row == 3

    def test_leading_integer_coordinates(self):
        parser = feed('<node id="n1" row="2px" col="1">x</node>')
        node = parser.detect_complete_nodes()[0]
        assert (node.row, node.col) == (2, 1)

    def test_body_is_dedented_and_trimmed(self):
        parser = feed(
            '<node id="n1" row="0" col="0">\n'
            "    First line\n"
            "      nested\n"
            "    Last line\n"
            "</node>"
        )
        assert parser.detect_complete_nodes()[0].content == "First line\n  nested\nLast line"

    def test_entities_unescaped(self):
        parser = feed('<node id="n1" title="A &amp; B" row="0" col="0">x &lt; y &amp;&amp; z</node>')
        node = parser.detect_complete_nodes()[0]
        assert node.title == "A & B"
        assert node.content == "x < y && z"

    def test_escaped_partial_tag_at_end_is_dropped(self):
        parser = feed('<node id="n1" row="0" col="0">a &lt;/b</node>')
        assert parser.detect_complete_nodes()[0].content == "a"

    def test_self_closing_node_has_empty_content(self):
        parser = feed('<node id="n1" row="0" col="0"/>')
        assert parser.detect_complete_nodes()[0].content == ""

    def test_unknown_type_falls_back_to_default(self):
        parser = feed('<node id="n1" type="banana" row="0" col="0">x</node>')
        node = parser.detect_complete_nodes()[0]
        assert node.type == "default"
        assert len(parser.diagnostics.of_kind("unknown_element_type")) == 1

    def test_text_between_elements_ignored(self):
        parser = feed('Sure! Here you go:\n<node id="n1" row="0" col="0">x</node>\nDone.')
        assert [n.id for n in parser.detect_complete_nodes()] == ["n1"]


class TestMalformedNodes:
    """Malformed elements are skipped with one diagnostic each."""

    def test_missing_id(self):
        parser = feed('<node row="0" col="0">x</node>')
        assert parser.detect_complete_nodes() == []
        assert len(parser.diagnostics.of_kind("missing_required_attribute")) == 1
        assert parser.processed_length == 0

    def test_diagnosed_once(self):
        parser = feed('<node id="n1" row="0">x</node>')
        parser.detect_complete_nodes()
        parser.detect_complete_nodes()
        parser.detect_complete_groups()
        assert len(parser.diagnostics) == 1

    def test_non_integer_row(self):
        parser = feed('<node id="n1" row="top" col="0">x</node>')
        assert parser.detect_complete_nodes() == []
        assert len(parser.diagnostics.of_kind("malformed_markup")) == 1

    def test_scan_continues_after_malformed(self):
        parser = feed(
            '<node row="0" col="0">bad</node>'
            '<node id="ok" row="0" col="0">good</node>'
        )
        nodes = parser.detect_complete_nodes()
        assert [n.id for n in nodes] == ["ok"]
        assert parser.processed_length == len(parser.buffer)

    def test_unclosed_node_before_next_node(self):
        parser = feed(
            '<node id="a" row="0" col="0">never closed\n'
            '<node id="b" row="1" col="0">B</node>'
        )
        nodes = parser.detect_complete_nodes()
        assert [n.id for n in nodes] == ["b"]
        assert nodes[0].content == "B"
        assert len(parser.diagnostics.of_kind("malformed_markup")) == 1

    def test_rejected_node_ids_reported_once(self):
        parser = feed(
            '<node id="a" row="0" col="0">never closed\n'
            '<node id="b" row="1" col="0">B</node>'
            '<node id="c" col="0">no row</node>'
        )
        assert parser.detect_rejected_nodes() == ["a", "c"]
        assert parser.detect_rejected_nodes() == []
        assert [n.id for n in parser.detect_complete_nodes()] == ["b"]


class TestGroups:
    """Tests for group detection and group membership."""

    def test_complete_group_with_children(self, group_markup):
        parser = feed(group_markup)
        groups = parser.detect_complete_groups()
        nodes = parser.detect_complete_nodes()

        assert len(groups) == 1
        assert groups[0].id == "g1"
        assert groups[0].title == "Technical Implementation"
        assert [c.id for c in groups[0].children] == ["s1", "s2"]
        assert [n.group_id for n in nodes] == ["g1", "g1"]
        assert nodes[1].content == "Main execution flow...\nMore detail."

    def test_group_streams_in(self):
        parser = feed(
            '<group id="g1" title="Plan" row="0" col="0">'
            '<node id="a" row="0" col="0">A</node>'
        )
        assert parser.detect_complete_groups() == []
        assert [n.id for n in parser.detect_complete_nodes()] == ["a"]

        open_groups = parser.detect_incomplete_groups()
        assert [g.id for g in open_groups] == ["g1"]
        assert [c.id for c in open_groups[0].children] == ["a"]

        parser.append('<node id="b" row="1" col="0">B</node></group>')
        groups = parser.detect_complete_groups()
        assert [c.id for c in groups[0].children] == ["a", "b"]
        assert parser.detect_incomplete_groups() == []

    def test_default_title(self):
        parser = feed('<group id="g1" row="0" col="0"></group>')
        assert parser.detect_complete_groups()[0].title == "Untitled Group"

    def test_nodes_after_group_have_no_group(self):
        parser = feed(
            '<group id="g1" title="G" row="0" col="0"><node id="a" row="0" col="0">A</node></group>'
            '<node id="b" row="0" col="1">B</node>'
        )
        nodes = parser.detect_complete_nodes()
        assert [(n.id, n.group_id) for n in nodes] == [("a", "g1"), ("b", None)]

    def test_incomplete_group_preview_before_scan(self):
        parser = feed('<group id="g1" title="Plan" row="2" col="1">')
        groups = parser.detect_incomplete_groups()
        assert [(g.id, g.row, g.col) for g in groups] == [("g1", 2, 1)]
        assert parser.processed_length == 0


class TestEdges:
    """Tests for edge detection."""

    def test_self_closing_edge(self):
        parser = feed('<edge from="a" to="b" dir="bi" label="uses"/>')
        edge = parser.detect_complete_edges()[0]
        assert (edge.from_id, edge.to_id, edge.dir, edge.label) == ("a", "b", "bi", "uses")
        assert edge.key == "a->b"

    def test_edge_with_empty_body(self):
        parser = feed('<edge from="a" to="b"></edge>')
        edge = parser.detect_complete_edges()[0]
        assert edge.dir == "forward"
        assert parser.processed_length == len(parser.buffer)

    def test_partial_close_waits(self):
        parser = feed('<edge from="a" to="b"></ed')
        assert parser.detect_complete_edges() == []
        parser.append("ge>")
        assert len(parser.detect_complete_edges()) == 1

    def test_missing_endpoint(self):
        parser = feed('<edge from="a"/>')
        assert parser.detect_complete_edges() == []
        assert len(parser.diagnostics.of_kind("missing_required_attribute")) == 1

    def test_unknown_direction(self):
        parser = feed('<edge from="a" to="b" dir="sideways"/>')
        assert parser.detect_complete_edges()[0].dir == "forward"
        assert len(parser.diagnostics.of_kind("unknown_element_type")) == 1

    @pytest.mark.parametrize("first", ["nodes", "edges", "groups"])
    def test_detection_order_loses_nothing(self, first):
        """Nodes, groups and edges are all returned whichever is asked for first."""
        parser = feed(
            '<node id="a" row="0" col="0">A</node>'
            '<edge from="a" to="b"/>'
            '<group id="g" title="G" row="0" col="1"><node id="b" row="0" col="0">B</node></group>'
        )
        calls = {
            "nodes": parser.detect_complete_nodes,
            "edges": parser.detect_complete_edges,
            "groups": parser.detect_complete_groups,
        }
        results = {first: calls[first]()}
        for name, call in calls.items():
            if name != first:
                results[name] = call()

        assert [n.id for n in results["nodes"]] == ["a", "b"]
        assert [e.key for e in results["edges"]] == ["a->b"]
        assert [g.id for g in results["groups"]] == ["g"]


class TestIncompleteNodes:
    """Tests for detect_incomplete_nodes."""

    def test_preview_strips_partial_close(self):
        parser = feed('<node id="n2" type="step" row="1" col="0">\n    Partial body</no')
        nodes = parser.detect_incomplete_nodes()
        assert len(nodes) == 1
        assert nodes[0].id == "n2"
        assert nodes[0].type == "step"
        assert nodes[0].content == "Partial body"

    def test_preview_is_read_only_and_idempotent(self):
        parser = feed('<node id="n2" row="1" col="0">Growing')
        first = parser.detect_incomplete_nodes()
        second = parser.detect_incomplete_nodes()
        assert first == second
        assert parser.processed_length == 0

    def test_closed_nodes_not_previewed(self):
        parser = feed(
            '<node id="a" row="0" col="0">done</node>'
            '<node id="b" row="1" col="0">still going'
        )
        assert [n.id for n in parser.detect_incomplete_nodes()] == ["b"]

    def test_partial_opening_tag_not_previewed(self):
        parser = feed('<node id="n3" ro')
        assert parser.detect_incomplete_nodes() == []

    def test_preview_inside_group(self):
        parser = feed('<group id="g1" title="G" row="0" col="0"><node id="a" row="0" col="0">typing')
        nodes = parser.detect_incomplete_nodes()
        assert nodes[0].group_id == "g1"

    @pytest.mark.parametrize("attrs", ['type="insight"', 'col="0"', 'row="x" col="0"'])
    def test_tag_without_coordinates_not_previewed(self, attrs):
        parser = feed(f'<node id="a" {attrs}>typing')
        assert parser.detect_incomplete_nodes() == []
        assert len(parser.diagnostics) == 0

    def test_interrupted_node_not_previewed_after_rejection(self):
        parser = feed('<node id="a" row="0" col="0">never closed')
        assert [n.id for n in parser.detect_incomplete_nodes()] == ["a"]

        parser.append('<node id="b" row="1" col="0">typing')
        assert parser.detect_complete_nodes() == []
        assert [n.id for n in parser.detect_incomplete_nodes()] == ["b"]

    def test_group_without_coordinates_not_previewed(self):
        parser = feed('<group id="g1" title="Plan">')
        assert parser.detect_incomplete_groups() == []


class TestBuffer:
    def test_append_does_not_parse(self):
        parser = StreamTagParser()
        parser.append('<node id="a" row="0" col="0">A</node>')
        assert parser.processed_length == 0
        assert parser.full_content == parser.buffer

    def test_unprocessed_content(self):
        parser = feed('<node id="a" row="0" col="0">A</node>tail')
        parser.detect_complete_nodes()
        assert parser.unprocessed_content == "tail"

    def test_cursor_never_decreases(self, simple_markup):
        parser = StreamTagParser()
        seen = []
        for i in range(0, len(simple_markup), 5):
            parser.append(simple_markup[i:i + 5])
            parser.detect_complete_nodes()
            parser.detect_complete_edges()
            seen.append(parser.processed_length)
        assert seen == sorted(seen)
        assert seen[-1] <= len(simple_markup)

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 1000])
    def test_chunking_does_not_change_result(self, simple_markup, size):
        parser = StreamTagParser()
        nodes, edges = [], []
        for i in range(0, len(simple_markup), size):
            parser.append(simple_markup[i:i + size])
            nodes.extend(parser.detect_complete_nodes())
            edges.extend(parser.detect_complete_edges())

        assert [n.id for n in nodes] == ["n1", "n2", "n3"]
        assert nodes[0].content == "The fundamental concept is **modularity**.\n- Separation of concerns"
        assert [e.key for e in edges] == ["n1->n2", "n2->n3"]
        assert len(parser.diagnostics) == 0
