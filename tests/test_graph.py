"""Unit tests for the in-memory knowledge graph."""

import pytest
from pydantic import ValidationError

from nudgeguard.knowledge.graph import GraphQuery, KnowledgeGraph
from tests.support import FakeClock


@pytest.fixture
def graph(clock: FakeClock) -> KnowledgeGraph:
    return KnowledgeGraph(clock=clock)


def _chain(graph: KnowledgeGraph) -> None:
    """tab-1 -> domain-a -> behavior-x -> pattern-p"""
    graph.add_node(graph.make_node("tab-1", "tab"))
    graph.add_node(graph.make_node("domain-a", "domain"))
    graph.add_node(graph.make_node("behavior-x", "behavior", {"kind": "scroll"}))
    graph.add_node(graph.make_node("pattern-p", "pattern", {"severity": "high"}))
    graph.add_edge(graph.make_edge("tab-1", "domain-a", "visited"))
    graph.add_edge(graph.make_edge("domain-a", "behavior-x", "exhibits"))
    graph.add_edge(graph.make_edge("behavior-x", "pattern-p", "contributesTo"))


# ---------------------------------------------------------------------------
# Insert semantics
# ---------------------------------------------------------------------------


class TestInsert:
    def test_add_node_is_first_write_wins(self, graph: KnowledgeGraph) -> None:
        assert graph.add_node(graph.make_node("domain-a", "domain", {"v": 1})) is True
        assert graph.add_node(graph.make_node("domain-a", "domain", {"v": 2})) is False

        assert graph.get_stats()["node_count"] == 1
        assert graph.get_node("domain-a").metadata == {"v": 1}  # type: ignore[union-attr]

    def test_edge_requires_both_endpoints(self, graph: KnowledgeGraph) -> None:
        graph.add_node(graph.make_node("a", "tab"))

        assert graph.add_edge(graph.make_edge("a", "b", "visited")) is False
        assert graph.get_stats()["edge_count"] == 0

        graph.add_node(graph.make_node("b", "domain"))
        assert graph.add_edge(graph.make_edge("a", "b", "visited")) is True
        assert graph.get_stats()["edge_count"] == 1

    def test_returned_nodes_are_copies(self, graph: KnowledgeGraph) -> None:
        graph.add_node(graph.make_node("a", "tab", {"url": "x"}))

        node = graph.get_node("a")
        assert node is not None
        node.metadata["url"] = "changed"

        assert graph.get_node("a").metadata["url"] == "x"  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------


class TestMutation:
    def test_remove_node_cascades_edges(self, graph: KnowledgeGraph) -> None:
        _chain(graph)

        assert graph.remove_node("domain-a") is True

        assert "domain-a" not in graph
        assert graph.get_stats()["edge_count"] == 1
        for edge in graph.get_all_edges():
            assert edge.source in graph
            assert edge.target in graph

    def test_remove_missing_node(self, graph: KnowledgeGraph) -> None:
        assert graph.remove_node("nope") is False

    def test_update_node_merges_and_bumps_updated_at(self, graph: KnowledgeGraph, clock: FakeClock) -> None:
        graph.add_node(graph.make_node("a", "tab", {"url": "x", "tab_id": "1"}))
        clock.advance(30)

        assert graph.update_node("a", {"url": "y"}) is True

        node = graph.get_node("a")
        assert node is not None
        assert node.metadata == {"url": "y", "tab_id": "1"}
        assert node.updated_at == node.created_at + 30
        assert graph.update_node("missing", {"x": 1}) is False

    def test_clear(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        graph.clear()

        assert graph.get_stats() == {"node_count": 0, "edge_count": 0, "nodes_by_type": {}, "edges_by_type": {}}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_connected_nodes_respects_depth(self, graph: KnowledgeGraph) -> None:
        _chain(graph)

        assert [n.id for n in graph.get_connected_nodes("tab-1", depth=1)] == ["domain-a"]
        assert [n.id for n in graph.get_connected_nodes("tab-1", depth=2)] == ["domain-a", "behavior-x"]
        assert [n.id for n in graph.get_connected_nodes("tab-1", depth=5)] == [
            "domain-a",
            "behavior-x",
            "pattern-p",
        ]

    def test_connected_nodes_follow_edges_both_ways(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        ids = {n.id for n in graph.get_connected_nodes("pattern-p", depth=1)}
        assert ids == {"behavior-x"}

    def test_connected_nodes_are_distinct_and_exclude_origin(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        graph.add_edge(graph.make_edge("tab-1", "behavior-x", "exhibits"))
        graph.add_edge(graph.make_edge("behavior-x", "tab-1", "exhibits"))

        ids = [n.id for n in graph.get_connected_nodes("tab-1", depth=3)]

        assert len(ids) == len(set(ids))
        assert "tab-1" not in ids

    def test_connected_nodes_of_unknown_id(self, graph: KnowledgeGraph) -> None:
        assert graph.get_connected_nodes("nope") == []

    def test_nodes_and_edges_by_type(self, graph: KnowledgeGraph) -> None:
        _chain(graph)

        assert [n.id for n in graph.get_nodes_by_type("pattern")] == ["pattern-p"]
        assert [e.target for e in graph.get_edges_by_type("exhibits")] == ["behavior-x"]
        assert len(graph.get_edges_for_node("domain-a")) == 2

    def test_query_with_predicate(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        found = graph.query_nodes(lambda n: n.metadata.get("severity") == "high")
        assert [n.id for n in found] == ["pattern-p"]

    def test_query_with_graph_query(self, graph: KnowledgeGraph, clock: FakeClock) -> None:
        graph.add_node(graph.make_node("b1", "behavior", {"kind": "scroll"}))
        clock.advance(100)
        graph.add_node(graph.make_node("b2", "behavior", {"kind": "scroll"}))
        graph.add_node(graph.make_node("b3", "behavior", {"kind": "visit"}))

        recent_scroll = graph.query_nodes(
            GraphQuery(node_type="behavior", since=clock.now - 10, metadata_equals={"kind": "scroll"})
        )
        assert [n.id for n in recent_scroll] == ["b2"]

        limited = graph.query_nodes(GraphQuery(node_type="behavior", limit=2))
        assert [n.id for n in limited] == ["b1", "b2"]

    def test_stats_by_type(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        stats = graph.get_stats()

        assert stats["nodes_by_type"] == {"tab": 1, "domain": 1, "behavior": 1, "pattern": 1}
        assert stats["edges_by_type"] == {"visited": 1, "exhibits": 1, "contributesTo": 1}


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


class TestSerialization:
    def test_export_then_import_into_fresh_graph(self, graph: KnowledgeGraph, clock: FakeClock) -> None:
        _chain(graph)
        exported = graph.export_graph()

        other = KnowledgeGraph(clock=clock)
        other.import_graph(exported)

        assert other.get_stats() == graph.get_stats()
        assert other.get_node("pattern-p").metadata == {"severity": "high"}  # type: ignore[union-attr]

    def test_import_drops_dangling_edges(self, graph: KnowledgeGraph) -> None:
        snapshot = {
            "nodes": [{"id": "a", "type": "tab", "metadata": {}, "created_at": 1.0, "updated_at": 1.0}],
            "edges": [{"source": "a", "target": "ghost", "type": "visited", "metadata": {}, "created_at": 1.0}],
        }

        graph.import_graph(snapshot)

        assert graph.get_stats()["node_count"] == 1
        assert graph.get_stats()["edge_count"] == 0

    def test_import_replaces_existing_contents(self, graph: KnowledgeGraph) -> None:
        _chain(graph)
        graph.import_graph({"nodes": [], "edges": []})
        assert len(graph) == 0

    def test_malformed_import_leaves_graph_untouched(self, graph: KnowledgeGraph) -> None:
        _chain(graph)

        with pytest.raises(ValidationError):
            graph.import_graph({"nodes": [{"id": "x", "type": "spaceship"}]})

        assert len(graph) == 4
