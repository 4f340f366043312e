"""Graph-derived entry priority (the lorebook `order` value).

Each entry gets seven factors normalized to [0, 1]:

    hierarchy     BFS depth from the root entry / max depth
    in_degree     inbound links / max inbound links
    pagerank      PageRank / max PageRank
    betweenness   betweenness centrality / max betweenness
    out_degree    outbound links / max outbound links
    total_degree  all links / max links
    file_depth    container path depth / max depth

The weighted sum is floored into an integer order (minimum 1). Entries that
end up with the same order are spread apart by uid, pushing later orders up
so every order is unique and stable across runs.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable

import networkx as nx

from lorevault.config import PriorityWeights
from lorevault.graph.index import GraphIndex
from lorevault.pool.models import Entry

logger = logging.getLogger("lorevault.graph")

FACTORS = (
    "hierarchy",
    "in_degree",
    "pagerank",
    "betweenness",
    "out_degree",
    "total_degree",
    "file_depth",
)


def resolve_root(graph: GraphIndex, root_uid: int | None, infer: bool = False) -> int | None:
    """Pick the hierarchy root.

    An explicit root is used when it is in the graph. With `infer`, fall back
    to the most referenced node (then most connected, then lowest uid).
    """
    if root_uid is not None and graph.has(root_uid):
        return root_uid
    if not infer or not graph.uids:
        return None
    return min(
        graph.uids,
        key=lambda uid: (-graph.in_degree(uid), -graph.degree(uid), uid),
    )


def _normalize(values: dict[int, float], floor: float = 0.0) -> dict[int, float]:
    peak = max(values.values(), default=0.0)
    peak = max(peak, floor)
    if peak <= 0:
        return {uid: 0.0 for uid in values}
    return {uid: value / peak for uid, value in values.items()}


class PriorityEngine:
    """Computes a composite importance `order` for every entry."""

    def __init__(
        self,
        weights: PriorityWeights | None = None,
        infer_root: bool = False,
    ) -> None:
        self.weights = weights or PriorityWeights()
        self.infer_root = infer_root

    def compute_factors(
        self,
        entries: Iterable[Entry],
        graph: GraphIndex,
        root_uid: int | None = None,
    ) -> dict[int, dict[str, float]]:
        """Normalized factor values per entry uid."""
        entries = list(entries)
        uids = [e.uid for e in entries]

        root = resolve_root(graph, root_uid, self.infer_root)
        depths = graph.bfs_distances(root) if root is not None else {}
        hierarchy = _normalize(
            {uid: float(depths.get(uid, 0)) for uid in uids}, floor=1.0
        )

        in_deg = _normalize({uid: float(graph.in_degree(uid)) for uid in uids}, 1.0)
        out_deg = _normalize({uid: float(graph.out_degree(uid)) for uid in uids}, 1.0)
        total_deg = _normalize({uid: float(graph.degree(uid)) for uid in uids}, 1.0)

        pagerank = self._pagerank(graph)
        pr = _normalize({uid: pagerank.get(uid, 0.0) for uid in uids})

        betweenness = nx.betweenness_centrality(graph.graph) if graph.uids else {}
        bc = _normalize({uid: betweenness.get(uid, 0.0) for uid in uids})

        file_depth = _normalize(
            {e.uid: float(e.container_depth) for e in entries}, floor=1.0
        )

        return {
            uid: {
                "hierarchy": hierarchy[uid],
                "in_degree": in_deg[uid],
                "pagerank": pr[uid],
                "betweenness": bc[uid],
                "out_degree": out_deg[uid],
                "total_degree": total_deg[uid],
                "file_depth": file_depth[uid],
            }
            for uid in uids
        }

    def compute_order(
        self,
        entries: Iterable[Entry],
        graph: GraphIndex,
        root_uid: int | None = None,
    ) -> dict[int, int]:
        """Map each entry uid to its integer priority order."""
        factors = self.compute_factors(entries, graph, root_uid)
        weights = self.weights.model_dump()

        order: dict[int, int] = {}
        for uid, values in factors.items():
            score = sum(weights[name] * values[name] for name in FACTORS)
            order[uid] = max(1, math.floor(score))

        return self._break_ties(order)

    def _pagerank(self, graph: GraphIndex) -> dict[int, float]:
        if not graph.uids:
            return {}
        try:
            return nx.pagerank(
                graph.graph,
                alpha=0.85,
                max_iter=100,
                tol=1e-6,
                weight=None,
            )
        except nx.PowerIterationFailedConvergence:
            logger.warning(
                "PageRank did not converge in 100 iterations; using uniform rank"
            )
            n = len(graph.uids)
            return {uid: 1.0 / n for uid in graph.uids}

    @staticmethod
    def _break_ties(order: dict[int, int]) -> dict[int, int]:
        """Make orders unique, keeping ascending (order, uid) rank.

        Tied entries move up by one and every later entry is pushed past its
        predecessor, so an offset never lands on a value already in use.
        """
        counts: dict[int, int] = {}
        for value in order.values():
            counts[value] = counts.get(value, 0) + 1

        result: dict[int, int] = {}
        previous = 0
        for uid in sorted(order, key=lambda u: (order[u], u)):
            value = order[uid] + (1 if counts[order[uid]] > 1 else 0)
            previous = max(value, previous + 1)
            result[uid] = previous
        return result
