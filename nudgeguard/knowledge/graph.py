"""In-memory knowledge graph of tabs, domains, behaviors, and patterns.

Nodes are keyed by id and are insert-once: adding an id that already exists
keeps the first node. Edges require both endpoints to exist at insertion time
and are dropped silently otherwise. Removing a node removes every edge that
touches it, so no edge ever references a missing node.
"""

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

from nudgeguard.models import Clock
from nudgeguard.observability.metrics import GRAPH_EDGES, GRAPH_NODES

logger = logging.getLogger(__name__)

NodeType = Literal["behavior", "pattern", "domain", "tab", "session"]


class GraphNode(BaseModel):
    id: str
    type: NodeType
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float
    updated_at: float


class GraphEdge(BaseModel):
    source: str
    target: str
    type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float


class GraphQuery(BaseModel):
    """Declarative node filter. Unset fields match everything."""

    node_type: NodeType | None = None
    since: float | None = None
    until: float | None = None
    metadata_equals: dict[str, Any] = Field(default_factory=dict)
    limit: int | None = None


class KnowledgeGraph:
    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._nodes: dict[str, GraphNode] = {}
        self._edges: list[GraphEdge] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def make_node(self, node_id: str, node_type: NodeType, metadata: dict[str, Any] | None = None) -> GraphNode:
        now = self._clock()
        return GraphNode(id=node_id, type=node_type, metadata=metadata or {}, created_at=now, updated_at=now)

    def make_edge(
        self, source: str, target: str, edge_type: str, metadata: dict[str, Any] | None = None
    ) -> GraphEdge:
        return GraphEdge(source=source, target=target, type=edge_type, metadata=metadata or {}, created_at=self._clock())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> bool:
        """Insert ``node`` unless its id is already present.

        Returns:
            True if the node was inserted, False if an earlier node was kept.
        """
        if node.id in self._nodes:
            return False
        self._nodes[node.id] = node.model_copy(deep=True)
        self._update_gauges()
        return True

    def add_edge(self, edge: GraphEdge) -> bool:
        """Insert ``edge`` if both endpoints exist. Returns whether it was added."""
        if edge.source not in self._nodes or edge.target not in self._nodes:
            logger.debug("Dropping %s edge %s -> %s: missing endpoint", edge.type, edge.source, edge.target)
            return False
        self._edges.append(edge.model_copy(deep=True))
        self._update_gauges()
        return True

    def update_node(self, node_id: str, metadata: dict[str, Any]) -> bool:
        """Merge ``metadata`` into an existing node and bump ``updated_at``. Unknown ids are ignored."""
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.metadata.update(metadata)
        node.updated_at = self._clock()
        return True

    def remove_node(self, node_id: str) -> bool:
        if self._nodes.pop(node_id, None) is None:
            return False
        self._edges = [e for e in self._edges if e.source != node_id and e.target != node_id]
        self._update_gauges()
        return True

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()
        self._update_gauges()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> GraphNode | None:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def get_all_nodes(self) -> list[GraphNode]:
        return [n.model_copy(deep=True) for n in self._nodes.values()]

    def get_all_edges(self) -> list[GraphEdge]:
        return [e.model_copy(deep=True) for e in self._edges]

    def get_nodes_by_type(self, node_type: str) -> list[GraphNode]:
        """Nodes of ``node_type`` in insertion order."""
        return [n.model_copy(deep=True) for n in self._nodes.values() if n.type == node_type]

    def get_edges_for_node(self, node_id: str) -> list[GraphEdge]:
        return [e.model_copy(deep=True) for e in self._edges if node_id in (e.source, e.target)]

    def get_edges_by_type(self, edge_type: str) -> list[GraphEdge]:
        return [e.model_copy(deep=True) for e in self._edges if e.type == edge_type]

    def get_connected_nodes(self, node_id: str, depth: int = 1) -> list[GraphNode]:
        """Nodes reachable from ``node_id`` within ``depth`` hops, edges taken as undirected.

        The start node itself is not included and each node appears once, in BFS order.
        """
        if node_id not in self._nodes or depth <= 0:
            return []

        adjacency: dict[str, list[str]] = {}
        for edge in self._edges:
            adjacency.setdefault(edge.source, []).append(edge.target)
            adjacency.setdefault(edge.target, []).append(edge.source)

        seen = {node_id}
        found: list[GraphNode] = []
        queue: deque[tuple[str, int]] = deque([(node_id, 0)])
        while queue:
            current, distance = queue.popleft()
            if distance == depth:
                continue
            for neighbour in adjacency.get(current, []):
                if neighbour in seen:
                    continue
                seen.add(neighbour)
                found.append(self._nodes[neighbour].model_copy(deep=True))
                queue.append((neighbour, distance + 1))
        return found

    def query_nodes(self, query: GraphQuery | Callable[[GraphNode], bool]) -> list[GraphNode]:
        """Filter nodes with a :class:`GraphQuery` or an arbitrary predicate."""
        if not isinstance(query, GraphQuery):
            return [n.model_copy(deep=True) for n in self._nodes.values() if query(n)]

        matches: list[GraphNode] = []
        for node in self._nodes.values():
            if query.node_type is not None and node.type != query.node_type:
                continue
            if query.since is not None and node.created_at < query.since:
                continue
            if query.until is not None and node.created_at > query.until:
                continue
            if any(node.metadata.get(k) != v for k, v in query.metadata_equals.items()):
                continue
            matches.append(node.model_copy(deep=True))
            if query.limit is not None and len(matches) >= query.limit:
                break
        return matches

    def get_stats(self) -> dict[str, Any]:
        nodes_by_type: dict[str, int] = {}
        for node in self._nodes.values():
            nodes_by_type[node.type] = nodes_by_type.get(node.type, 0) + 1
        edges_by_type: dict[str, int] = {}
        for edge in self._edges:
            edges_by_type[edge.type] = edges_by_type.get(edge.type, 0) + 1
        return {
            "node_count": len(self._nodes),
            "edge_count": len(self._edges),
            "nodes_by_type": nodes_by_type,
            "edges_by_type": edges_by_type,
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def export_graph(self) -> dict[str, Any]:
        return {
            "nodes": [n.model_dump() for n in self._nodes.values()],
            "edges": [e.model_dump() for e in self._edges],
        }

    def import_graph(self, snapshot: dict[str, Any]) -> None:
        """Replace the graph contents with an exported document.

        Nodes go through the insert-once rule and edges through the endpoint
        check, so an imported document can never leave a dangling edge.

        Raises:
            pydantic.ValidationError: If a node or edge entry is malformed. The
                graph is left untouched in that case.
        """
        nodes = [GraphNode.model_validate(n) for n in snapshot.get("nodes", [])]
        edges = [GraphEdge.model_validate(e) for e in snapshot.get("edges", [])]
        self.clear()
        for node in nodes:
            self.add_node(node)
        dropped = sum(1 for edge in edges if not self.add_edge(edge))
        if dropped:
            logger.warning("Dropped %d edges with missing endpoints during import", dropped)
        logger.info("Imported graph with %d nodes and %d edges", len(self._nodes), len(self._edges))

    def _update_gauges(self) -> None:
        GRAPH_NODES.set(len(self._nodes))
        GRAPH_EDGES.set(len(self._edges))
