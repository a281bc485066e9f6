"""Read-only context retrieval over the knowledge graph.

Everything here reads the graph as of call time and never mutates it. The
semantic path is optional: without an embedder, or when the embedding call
fails, it returns an empty result instead of raising.
"""

import json
import logging
import math
import time
from typing import Any

from nudgeguard.knowledge.embeddings import CachedEmbedder, cosine_similarity
from nudgeguard.knowledge.graph import GraphEdge, GraphNode, KnowledgeGraph
from nudgeguard.models import Clock

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_WINDOW_SECONDS = 60 * 60
MAX_RECENT_ACTIVITY = 20
PROFILE_RECENT_PATTERNS = 5


def _summarize(node: GraphNode) -> dict[str, Any]:
    return {"id": node.id, "metadata": node.metadata}


def node_to_text(node: GraphNode) -> str:
    text = f"{node.type}: {node.id}"
    if node.metadata:
        text += " " + json.dumps(node.metadata, sort_keys=True, default=str)
    return text


class ContextBuilder:
    def __init__(
        self,
        graph: KnowledgeGraph,
        embedder: CachedEmbedder | None = None,
        *,
        max_context_nodes: int = 50,
        max_context_edges: int = 100,
        similarity_threshold: float = 0.7,
        time_decay_per_hour: float = 0.1,
        clock: Clock = time.time,
    ) -> None:
        self.graph = graph
        self.embedder = embedder
        self.max_context_nodes = max_context_nodes
        self.max_context_edges = max_context_edges
        self.similarity_threshold = similarity_threshold
        self.time_decay_per_hour = time_decay_per_hour
        self._clock = clock

    def retrieve_behavior_context(self, type_filter: str | None = None) -> list[GraphNode]:
        """Behavior nodes whose id or any metadata value contains ``type_filter``.

        An empty filter returns every behavior node.
        """
        behaviors = self.graph.get_nodes_by_type("behavior")
        if not type_filter:
            return behaviors
        return [
            node
            for node in behaviors
            if type_filter in node.id or any(type_filter in str(v) for v in node.metadata.values())
        ]

    def retrieve_recent_patterns(self, limit: int = 10) -> list[GraphNode]:
        """The last ``limit`` pattern nodes in insertion order, most recent last."""
        if limit <= 0:
            return []
        return self.graph.get_nodes_by_type("pattern")[-limit:]

    def generate_context_for_nudge(self, type_filter: str | None = None) -> dict[str, Any]:
        return {
            "behaviors": [_summarize(n) for n in self.retrieve_behavior_context(type_filter)],
            "patterns": [_summarize(n) for n in self.retrieve_recent_patterns()],
            "recent_activity": self._recent_activity(),
            "user_profile": self._user_profile(),
            "timestamp": self._clock(),
        }

    def get_full_graph(self) -> dict[str, Any]:
        return {
            "nodes": [n.model_dump() for n in self.graph.get_all_nodes()],
            "edges": [e.model_dump() for e in self.graph.get_all_edges()],
            "stats": self.graph.get_stats(),
        }

    async def retrieve_semantic_context(self, query: str, node_types: list[str] | None = None) -> dict[str, Any]:
        """Rank graph nodes by embedding similarity to ``query`` plus a recency bonus.

        Nodes below ``similarity_threshold`` are dropped. The bonus is
        ``exp(-decay * age_hours)``, so fresh nodes win ties.
        """
        empty: dict[str, Any] = {"nodes": [], "edges": [], "relevance_score": 0.0, "timestamp": self._clock()}
        if self.embedder is None or not query.strip():
            return empty

        nodes = self.graph.get_all_nodes()
        if node_types:
            nodes = [n for n in nodes if n.type in node_types]
        if not nodes:
            return empty

        try:
            query_vector = await self.embedder.embed(query)
            scored: list[tuple[float, float, GraphNode]] = []
            for node in nodes:
                vector = await self.embedder.embed(node_to_text(node))
                similarity = cosine_similarity(query_vector, vector)
                scored.append((similarity, self._recency_score(node.created_at), node))
        except Exception:
            logger.warning("Semantic context retrieval failed", exc_info=True)
            return empty

        relevant = sorted(
            (item for item in scored if item[0] >= self.similarity_threshold),
            key=lambda item: item[0] + item[1],
            reverse=True,
        )[: self.max_context_nodes]
        relevant_nodes = [node for _, _, node in relevant]

        return {
            "nodes": [n.model_dump() for n in relevant_nodes],
            "edges": [e.model_dump() for e in self._edges_touching(relevant_nodes)],
            "relevance_score": sum(s for s, _, _ in scored) / len(scored),
            "timestamp": self._clock(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _recency_score(self, created_at: float) -> float:
        age_hours = max(self._clock() - created_at, 0.0) / 3600
        return math.exp(-self.time_decay_per_hour * age_hours)

    def _edges_touching(self, nodes: list[GraphNode]) -> list[GraphEdge]:
        ids = {n.id for n in nodes}
        edges = [e for e in self.graph.get_all_edges() if e.source in ids or e.target in ids]
        return edges[: self.max_context_edges]

    def _recently_updated(self) -> list[GraphNode]:
        cutoff = self._clock() - RECENT_ACTIVITY_WINDOW_SECONDS
        return [n for n in self.graph.get_all_nodes() if n.updated_at > cutoff]

    def _recent_activity(self) -> list[dict[str, Any]]:
        recent = sorted(self._recently_updated(), key=lambda n: n.updated_at, reverse=True)
        return [
            {"type": n.type, "timestamp": n.updated_at, "data": _summarize(n)} for n in recent[:MAX_RECENT_ACTIVITY]
        ]

    def _user_profile(self) -> dict[str, Any]:
        stats = self.graph.get_stats()
        recent_updates = len(self._recently_updated())
        if recent_updates > 20:
            activity_level = "high"
        elif recent_updates > 10:
            activity_level = "medium"
        else:
            activity_level = "low"
        return {
            "total_nodes": stats["node_count"],
            "total_edges": stats["edge_count"],
            "node_type_distribution": stats["nodes_by_type"],
            "recent_patterns": [
                {"id": p.id, "severity": p.metadata.get("severity"), "timestamp": p.created_at}
                for p in self.retrieve_recent_patterns(PROFILE_RECENT_PATTERNS)
            ],
            "activity_level": activity_level,
        }
