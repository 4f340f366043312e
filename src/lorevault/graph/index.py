"""Directed link graph over candidate entries."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Iterable

import networkx as nx

from lorevault.pool.models import Entry

logger = logging.getLogger("lorevault.graph")

LinkResolver = Callable[[str], "int | None"]


class GraphIndex:
    """Immutable link graph snapshot for one candidate pool.

    Nodes are entry uids; an edge u -> v means entry u references entry v.
    Neighbor lookups return uids sorted ascending so every traversal built on
    top of the index is deterministic.
    """

    def __init__(self, graph: nx.DiGraph) -> None:
        self.graph = graph
        self._out: dict[int, list[int]] = {
            n: sorted(graph.successors(n)) for n in graph.nodes()
        }
        self._in: dict[int, list[int]] = {
            n: sorted(graph.predecessors(n)) for n in graph.nodes()
        }

    @classmethod
    def build(
        cls,
        entries: Iterable[Entry],
        link_resolver: LinkResolver,
    ) -> GraphIndex:
        """Build the graph from each entry's raw references.

        References that resolve to nothing, to a uid outside the pool, or to
        the entry itself are dropped silently.
        """
        entries = list(entries)
        graph = nx.DiGraph()
        for entry in entries:
            graph.add_node(entry.uid)

        dropped = 0
        for entry in entries:
            for raw in entry.links:
                target = link_resolver(raw)
                if target is None or target == entry.uid or not graph.has_node(target):
                    dropped += 1
                    continue
                graph.add_edge(entry.uid, target)

        logger.debug(
            "Built link graph with %d nodes and %d edges (%d references dropped)",
            graph.number_of_nodes(), graph.number_of_edges(), dropped,
        )
        return cls(graph)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    @property
    def uids(self) -> list[int]:
        return sorted(self.graph.nodes())

    def has(self, uid: int) -> bool:
        return self.graph.has_node(uid)

    def out_neighbors(self, uid: int) -> list[int]:
        return list(self._out.get(uid, []))

    def in_neighbors(self, uid: int) -> list[int]:
        return list(self._in.get(uid, []))

    def in_degree(self, uid: int) -> int:
        return len(self._in.get(uid, []))

    def out_degree(self, uid: int) -> int:
        return len(self._out.get(uid, []))

    def degree(self, uid: int) -> int:
        return self.in_degree(uid) + self.out_degree(uid)

    def edges(self) -> list[tuple[int, int]]:
        return sorted(self.graph.edges())

    def bfs_distances(self, root_uid: int) -> dict[int, int]:
        """Hop distance from `root_uid` along outbound edges; unreached nodes are absent."""
        if not self.has(root_uid):
            return {}

        distances = {root_uid: 0}
        queue = deque([root_uid])
        while queue:
            node = queue.popleft()
            for succ in self._out[node]:
                if succ not in distances:
                    distances[succ] = distances[node] + 1
                    queue.append(succ)
        return distances

    def get_stats(self) -> dict:
        """Get graph statistics."""
        isolated = sum(1 for n in self.graph.nodes() if self.degree(n) == 0)
        return {
            "total_nodes": self.graph.number_of_nodes(),
            "total_edges": self.graph.number_of_edges(),
            "isolated_nodes": isolated,
        }
