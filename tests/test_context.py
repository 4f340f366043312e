"""Tests for per-scope context assembly."""

from __future__ import annotations

import logging

import pytest

from lorevault.config import ProjectConfig, RetrievalConfig
from lorevault.context import ScopeContextAssembler, build_query
from lorevault.context.engine import default_link_resolver, validate_query
from lorevault.context.models import (
    REASON_CONSTANT,
    ContentTier,
    Query,
    TokenEstimator,
    trim_at_word_boundary,
)
from lorevault.exceptions import InvalidQueryError, ScopeAssemblyError
from lorevault.pool.models import CandidatePool, Document, Entry, RetrievalRoute, TriggerMode


def _trap_resolver(raw: str):
    if raw == "Trap":
        raise RuntimeError("unresolvable trap")
    return None


class TestAssemble:
    def test_constant_entry_always_included(self):
        pool = CandidatePool(
            scope="world",
            entries=[Entry(uid=7, title="Rules", trigger=TriggerMode.CONSTANT, content="Magic costs.")],
        )
        context = ScopeContextAssembler().assemble(
            pool, Query(text="something else entirely", token_budget=10_000)
        )
        assert [s.uid for s in context.world_info] == [7]
        assert REASON_CONSTANT in context.world_info[0].reasons

    def test_full_pipeline(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=2048))

        uids = [s.uid for s in context.world_info]
        assert uids[0] == 1
        assert {2, 3, 5} <= set(uids)
        assert 6 not in uids
        assert context.explainability.fallback.enabled
        assert [d.document.uid for d in context.rag] == [10]
        assert context.used_tokens <= context.token_budget
        assert context.markdown == context.render()

    def test_graph_neighbors_reached_by_title(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=4096))
        mira = next(s for s in context.world_info if s.uid == 2)
        assert mira.hop_distance == 1
        assert mira.seed_uid == 1

    def test_deterministic(self, pool):
        assembler = ScopeContextAssembler()
        query = Query(text="aria harbor", token_budget=1024)
        assert (
            assembler.assemble(pool, query).model_dump_json()
            == assembler.assemble(pool, query).model_dump_json()
        )

    def test_pool_untouched(self, pool):
        before = pool.model_dump()
        ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=1024))
        assert pool.model_dump() == before

    @pytest.mark.parametrize("budget", [1, 50, 300, 1500, 8000])
    def test_budget_invariant(self, pool, budget):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=budget))
        assert context.used_tokens <= budget
        assert context.used_tokens == sum(s.token_estimate for s in context.world_info) + sum(
            d.token_estimate for d in context.rag
        )

    def test_tiny_budget(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=1))
        report = context.explainability.world_info_budget
        assert context.world_info == []
        assert context.used_tokens == 0
        assert sorted(report.dropped_by_budget_uids) == [1, 2, 3, 4, 5]

    def test_route_none_filtered(self):
        pool = CandidatePool(
            scope="x",
            entries=[Entry(uid=1, keys=["aria"], route=RetrievalRoute.NONE)],
            documents=[Document(uid=2, title="Aria", route=RetrievalRoute.NONE)],
        )
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=1024))
        assert context.is_empty

    def test_empty_pool(self):
        context = ScopeContextAssembler().assemble(
            CandidatePool(scope="empty"), Query(text="aria", token_budget=1024)
        )
        assert context.is_empty
        assert context.used_tokens == 0
        assert "_No matching world_info entries._" in context.markdown
        assert "_No matching rag documents._" in context.markdown

    def test_lifted_with_large_budget(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=10_000))
        assert all(s.content_tier is ContentTier.FULL for s in context.world_info)

    def test_explainability(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=2048))
        ex = context.explainability
        assert [s.uid for s in ex.seeds] == [1, 5]
        assert ex.candidates_considered == len(ex.world_info_budget.selected_uids) + len(
            ex.world_info_budget.dropped_uids
        )
        dumped = context.model_dump(mode="json")
        assert "dropped_by_budget" in dumped["explainability"]["world_info_budget"]


class TestErrors:
    def test_invalid_query_rejected(self, pool):
        with pytest.raises(InvalidQueryError, match="token_budget"):
            ScopeContextAssembler().assemble(pool, {"text": "aria", "token_budget": 0})

    def test_invalid_query_checked_before_work(self, pool):
        calls = []

        def _resolver(raw):
            calls.append(raw)
            return None

        with pytest.raises(InvalidQueryError):
            ScopeContextAssembler(link_resolver=_resolver).assemble(
                pool, {"text": "aria", "token_budget": 100, "graph_hop_decay": 0.1}
            )
        assert calls == []

    def test_stage_failure_is_scope_qualified(self, pool):
        def _boom(raw):
            raise RuntimeError("boom")

        with pytest.raises(ScopeAssemblyError) as exc_info:
            ScopeContextAssembler(link_resolver=_boom).assemble(
                pool, Query(text="aria", token_budget=100)
            )
        err = exc_info.value
        assert err.scope == "world"
        assert err.stage == "retrieving"
        assert isinstance(err.cause, RuntimeError)
        assert str(err) == "Scope 'world' failed during retrieving: boom"


class TestBatch:
    @pytest.fixture
    def pools(self) -> list[CandidatePool]:
        return [
            CandidatePool(scope="zeta", entries=[Entry(uid=1, title="Z", keys=["aria"])]),
            CandidatePool(
                scope="beta", entries=[Entry(uid=1, title="B", keys=["aria"], links=["Trap"])]
            ),
            CandidatePool(scope="alpha", entries=[Entry(uid=2, title="A", keys=["aria"])]),
        ]

    @pytest.mark.parametrize("workers", [None, 2])
    def test_failure_isolated(self, pools, workers, caplog):
        assembler = ScopeContextAssembler(link_resolver=_trap_resolver)
        with caplog.at_level(logging.WARNING, logger="lorevault.context"):
            result = assembler.assemble_batch(
                pools, Query(text="aria", token_budget=512), max_workers=workers
            )

        assert [o.scope for o in result.outcomes] == ["alpha", "beta", "zeta"]
        assert sorted(result.contexts) == ["alpha", "zeta"]
        assert list(result.errors) == ["beta"]
        assert "failed during retrieving" in result.errors["beta"]
        assert not result.ok
        assert "1 of 3 scopes failed" in caplog.text

    def test_all_ok(self, pools):
        result = ScopeContextAssembler().assemble_batch(
            [pools[0], pools[2]], Query(text="aria", token_budget=512)
        )
        assert result.ok
        assert result.contexts["alpha"].world_info[0].uid == 2

    def test_invalid_query_fails_whole_batch(self, pools):
        with pytest.raises(InvalidQueryError):
            ScopeContextAssembler().assemble_batch(pools, {"text": "x", "token_budget": -5})


class TestRendering:
    def test_render_sections(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=4096))
        text = context.render()
        assert text.startswith("## LoreVault Context\nScope: `world`\nQuery: aria")
        assert "### Aria\nKeys: aria\nMatched: aria" in text
        assert "### World Rules\nKeys: \nMatched: (constant)" in text
        assert "### Queen Mira\nKeys: mira, queen\nMatched: (graph)" in text
        assert "Source: `history/aria.md`" in text

    def test_unscoped_label(self):
        context = ScopeContextAssembler().assemble(
            CandidatePool(), Query(text="", token_budget=100)
        )
        assert "Scope: `(all)`" in context.render()
        assert "Query: (empty)" in context.render()

    def test_summary(self, pool):
        context = ScopeContextAssembler().assemble(pool, Query(text="aria", token_budget=4096))
        summary = context.summary()
        assert "Scope: world" in summary
        assert f"Tokens: {context.used_tokens:,} / 4,096" in summary
        assert "Included entries:" in summary
        assert "path: 1 -> 3 -> 4" in summary


class TestQueryHelpers:
    def test_build_query_defaults(self):
        query = build_query("aria", 512)
        assert query.max_graph_hops == 2
        assert query.graph_hop_decay == 0.55
        assert query.token_budget == 512

    def test_build_query_ignores_none_overrides(self):
        query = build_query("aria", 512, max_graph_hops=None, graph_hop_decay=0.5)
        assert query.max_graph_hops == 2
        assert query.graph_hop_decay == 0.5

    def test_build_query_uses_config(self):
        config = ProjectConfig(retrieval=RetrievalConfig(max_entries=3))
        assert build_query("aria", 512, config).max_entries == 3

    def test_build_query_invalid(self):
        with pytest.raises(InvalidQueryError):
            build_query("aria", 512, max_graph_hops=9)

    def test_validate_query_passthrough(self):
        query = Query(text="aria", token_budget=10)
        assert validate_query(query) == query

    def test_default_resolver(self, pool):
        index = default_link_resolver(pool)
        assert index("Queen Mira") == 2
        assert index("world/places/Harbor District") == 3


class TestTextHelpers:
    def test_trim_short_text(self):
        assert trim_at_word_boundary("  hello  ", 20) == "hello"

    def test_trim_at_space(self):
        assert trim_at_word_boundary("hello world foo", 11) == "hello world\n..."

    def test_trim_without_space(self):
        assert trim_at_word_boundary("abcdefghij", 5) == "abcde\n..."

    def test_token_estimate(self):
        assert TokenEstimator.estimate("") == 1
        assert TokenEstimator.estimate("abcd") == 1
        assert TokenEstimator.estimate("abcde") == 2
        assert TokenEstimator.chars_for(10) == 40
