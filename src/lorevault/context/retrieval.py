"""Retrieval scoring: keyword seeds, link-graph expansion, fallback search.

Stages:
  A. Seeds    - constant entries, plus entries whose keywords match the query
                (honoring the secondary-keyword selective logic).
  B. Expand   - BFS from every seed up to `max_graph_hops`; a node reached at
                hop d scores  seed_base * decay**d.  Best score wins, then the
                shortest hop, then the lowest seed uid.
  C. Compose  - score = seed + graph + constant + order, where the order
                component is a small normalized prior.
  D. Fallback - lexical search over documents/chunks, gated by policy and by
                the seed confidence (highest keyword seed score).
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field

from lorevault.config import ScoringWeights
from lorevault.context.lexical import LexicalSearch, is_token, tokenize
from lorevault.context.models import (
    REASON_CONSTANT,
    FallbackPolicy,
    FallbackReport,
    Query,
    ScoreBreakdown,
    ScoredDocument,
    ScoredEntry,
    SeedInfo,
)
from lorevault.graph.index import GraphIndex
from lorevault.pool.models import CandidatePool, Entry, RetrievalRoute, SelectiveLogic

logger = logging.getLogger("lorevault.retrieval")


@dataclass
class _Seed:
    uid: int
    seed_score: float
    constant_score: float
    matched: list[str]

    @property
    def base(self) -> float:
        return self.seed_score + self.constant_score


@dataclass
class _Reach:
    score: float
    hop: int
    seed_uid: int
    path: list[int]


@dataclass
class RetrievalResult:
    """Scored, explainable retrieval output for one query."""

    entries: list[ScoredEntry] = field(default_factory=list)
    documents: list[ScoredDocument] = field(default_factory=list)
    seeds: list[SeedInfo] = field(default_factory=list)
    fallback: FallbackReport | None = None


def match_keywords(entry: Entry, query_text: str, tokens: set[str]) -> list[str]:
    """Return the entry's matched keywords, or [] if its trigger logic fails.

    Single-word keywords must equal a query token; phrases must appear in the
    lowercased query. A single word that is not itself a token ("C++",
    "O'Neil", "X") matches as a substring not flanked by letters or digits.
    """
    normalized = query_text.lower()

    def _hit(k: str) -> bool:
        if " " in k:
            return k in normalized
        if k in tokens:
            return True
        if is_token(k):
            return False
        return re.search(rf"(?<![a-z0-9]){re.escape(k)}(?![a-z0-9])", normalized) is not None

    def _hits(keywords: list[str]) -> list[str]:
        return [keyword.lower() for keyword in keywords if _hit(keyword.lower())]

    primary = _hits(entry.keys)
    if not primary:
        return []

    if not entry.secondary_keys:
        return primary

    secondary = _hits(entry.secondary_keys)
    total = len(entry.secondary_keys)
    logic = entry.selective_logic
    if logic is SelectiveLogic.AND_ANY:
        passed = len(secondary) > 0
    elif logic is SelectiveLogic.AND_ALL:
        passed = len(secondary) == total
    elif logic is SelectiveLogic.NOT_ANY:
        passed = len(secondary) == 0
    else:  # NOT_ALL
        passed = len(secondary) < total

    if not passed:
        return []
    # Under NOT_* logic the secondaries are exclusions, never matches
    if logic in (SelectiveLogic.AND_ANY, SelectiveLogic.AND_ALL):
        return primary + [k for k in secondary if k not in primary]
    return primary


class RetrievalEngine:
    """Scores candidate entries and fallback documents for a query."""

    def __init__(self, weights: ScoringWeights | None = None) -> None:
        self.weights = weights or ScoringWeights()

    def retrieve(
        self,
        pool: CandidatePool,
        graph: GraphIndex,
        order: dict[int, int],
        query: Query,
    ) -> RetrievalResult:
        entries = {
            e.uid: e for e in pool.entries
            if e.route is not RetrievalRoute.NONE
        }

        seeds = self._find_seeds(entries, query.text)
        reached = self._expand(seeds, entries, graph, query)
        scored = self._compose(entries, seeds, reached, order)

        confidence = max((s.seed_score for s in seeds.values()), default=0.0)
        fallback = FallbackReport(
            policy=query.fallback_policy,
            enabled=self._fallback_enabled(query, confidence),
            seed_confidence=confidence,
            threshold=query.fallback_seed_threshold,
        )
        documents: list[ScoredDocument] = []
        if fallback.enabled:
            documents = LexicalSearch(pool.documents, pool.chunks).search(query.text)
            logger.info(
                "Fallback search ran (policy=%s, confidence=%.1f): %d matches",
                query.fallback_policy.value, confidence, len(documents),
            )

        seed_info = [
            SeedInfo(
                uid=s.uid,
                score=s.base,
                matched_keywords=s.matched,
                constant=s.constant_score > 0 or entries[s.uid].is_constant,
            )
            for s in sorted(seeds.values(), key=lambda s: (-s.base, s.uid))
        ]

        logger.debug(
            "Retrieved %d entries (%d seeds, %d graph-reached) and %d documents",
            len(scored), len(seeds), len(reached), len(documents),
        )
        return RetrievalResult(
            entries=scored, documents=documents, seeds=seed_info, fallback=fallback
        )

    # -------------------------------------------------------------------
    # Stage A: seeds
    # -------------------------------------------------------------------

    def _find_seeds(self, entries: dict[int, Entry], query_text: str) -> dict[int, _Seed]:
        tokens = set(tokenize(query_text))
        seeds: dict[int, _Seed] = {}
        for uid in sorted(entries):
            entry = entries[uid]
            matched = match_keywords(entry, query_text, tokens)
            if not matched and not entry.is_constant:
                continue
            seeds[uid] = _Seed(
                uid=uid,
                seed_score=len(matched) * self.weights.seed_keyword_score,
                constant_score=self.weights.constant_bonus if entry.is_constant else 0.0,
                matched=matched,
            )
        return seeds

    # -------------------------------------------------------------------
    # Stage B: graph expansion
    # -------------------------------------------------------------------

    def _expand(
        self,
        seeds: dict[int, _Seed],
        entries: dict[int, Entry],
        graph: GraphIndex,
        query: Query,
    ) -> dict[int, _Reach]:
        reached: dict[int, _Reach] = {}
        if query.max_graph_hops <= 0:
            return reached

        for seed in sorted(seeds.values(), key=lambda s: (-s.base, s.uid)):
            if not graph.has(seed.uid):
                continue
            paths = {seed.uid: [seed.uid]}
            queue = deque([seed.uid])
            while queue:
                node = queue.popleft()
                hop = len(paths[node]) - 1
                if hop >= query.max_graph_hops:
                    continue
                neighbors = graph.out_neighbors(node)
                if query.include_backlinks:
                    neighbors = sorted(set(neighbors) | set(graph.in_neighbors(node)))
                for nxt in neighbors:
                    if nxt in paths or nxt not in entries:
                        continue
                    paths[nxt] = paths[node] + [nxt]
                    queue.append(nxt)

                    if nxt in seeds:
                        continue
                    d = hop + 1
                    candidate = _Reach(
                        score=seed.base * query.graph_hop_decay ** d,
                        hop=d,
                        seed_uid=seed.uid,
                        path=paths[nxt],
                    )
                    if _better(candidate, reached.get(nxt)):
                        reached[nxt] = candidate
        return reached

    # -------------------------------------------------------------------
    # Stage C: composite score
    # -------------------------------------------------------------------

    def _compose(
        self,
        entries: dict[int, Entry],
        seeds: dict[int, _Seed],
        reached: dict[int, _Reach],
        order: dict[int, int],
    ) -> list[ScoredEntry]:
        effective_order = {uid: order.get(uid, entries[uid].order) for uid in entries}
        max_order = max((max(0, v) for v in effective_order.values()), default=0)

        scored: list[ScoredEntry] = []
        for uid in sorted(set(seeds) | set(reached)):
            entry = entries[uid]
            if entry.order != effective_order[uid]:
                entry = entry.model_copy(update={"order": effective_order[uid]})

            order_component = (
                self.weights.order_weight * max(0, entry.order) / max_order
                if max_order > 0 else 0.0
            )
            reasons: list[str] = []
            seed = seeds.get(uid)
            if seed is not None:
                breakdown = ScoreBreakdown(
                    seed=seed.seed_score,
                    constant=seed.constant_score,
                    order=order_component,
                )
                if seed.matched:
                    reasons.append(f"matched keywords: {', '.join(seed.matched)}")
                if entry.is_constant:
                    reasons.append(REASON_CONSTANT)
                hop, seed_uid, path = 0, uid, [uid]
                matched = seed.matched
            else:
                reach = reached[uid]
                breakdown = ScoreBreakdown(graph=reach.score, order=order_component)
                reasons.append(f"linked from {reach.seed_uid} ({reach.hop} hop{'s' if reach.hop > 1 else ''})")
                hop, seed_uid, path = reach.hop, reach.seed_uid, reach.path
                matched = []

            scored.append(
                ScoredEntry(
                    entry=entry,
                    score=breakdown.total,
                    breakdown=breakdown,
                    matched_keywords=matched,
                    hop_distance=hop,
                    seed_uid=seed_uid,
                    path_uids=path,
                    reasons=reasons,
                )
            )

        scored.sort(key=lambda s: (-s.score, -s.entry.order, s.entry.uid))
        return scored

    # -------------------------------------------------------------------
    # Stage D: fallback gate
    # -------------------------------------------------------------------

    @staticmethod
    def _fallback_enabled(query: Query, confidence: float) -> bool:
        if query.fallback_policy is FallbackPolicy.ALWAYS:
            return True
        if query.fallback_policy is FallbackPolicy.AUTO:
            return confidence < query.fallback_seed_threshold
        return False


def _better(candidate: _Reach, current: _Reach | None) -> bool:
    if current is None:
        return True
    return (
        (-candidate.score, candidate.hop, candidate.seed_uid)
        < (-current.score, current.hop, current.seed_uid)
    )
