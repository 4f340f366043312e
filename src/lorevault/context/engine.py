"""Per-scope context assembly.

Pipeline for one scope:

  FILTERING   drop route=none entries/documents, resolve link targets
  RETRIEVING  link graph -> priority order -> seeds, hop expansion, fallback
  ALLOCATING  greedy budget packing and tier lift
  RENDERED    injectable markdown plus explainability

Any stage failure aborts that scope with a ScopeAssemblyError; batch runs
keep going with the remaining scopes.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from lorevault.config import ProjectConfig
from lorevault.context.budget import Allocation, BudgetAllocator
from lorevault.context.models import AssembledContext, Explainability, Query
from lorevault.context.retrieval import RetrievalEngine, RetrievalResult
from lorevault.exceptions import InvalidQueryError, ScopeAssemblyError
from lorevault.graph.index import GraphIndex, LinkResolver
from lorevault.graph.links import LinkTargetIndex
from lorevault.graph.priority import PriorityEngine
from lorevault.pool.models import CandidatePool, RetrievalRoute

logger = logging.getLogger("lorevault.context")


class AssemblyStage(str, Enum):
    IDLE = "idle"
    FILTERING = "filtering"
    RETRIEVING = "retrieving"
    ALLOCATING = "allocating"
    RENDERED = "rendered"


def build_query(
    text: str,
    token_budget: int,
    config: ProjectConfig | None = None,
    **overrides: Any,
) -> Query:
    """Build a validated Query from config defaults plus explicit overrides.

    Overrides set to None are ignored so CLI options can pass through as-is.
    """
    defaults = (config or ProjectConfig()).retrieval.query_defaults()
    defaults.update({k: v for k, v in overrides.items() if v is not None})
    return validate_query({"text": text, "token_budget": token_budget, **defaults})


def validate_query(query: Query | Mapping[str, Any]) -> Query:
    """Validate a query before any retrieval work starts."""
    data = query.model_dump() if isinstance(query, Query) else dict(query)
    try:
        return Query.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidQueryError(f"Invalid query: {problems}") from e


def default_link_resolver(pool: CandidatePool) -> LinkTargetIndex:
    """Resolve references against entry titles and `group/title` paths."""
    index = LinkTargetIndex()
    for entry in sorted(pool.entries, key=lambda e: e.uid):
        path = f"{entry.group.strip('/')}/{entry.title}" if entry.group and entry.title else ""
        index.register(entry.uid, path=path, title=entry.title)
    return index


@dataclass
class ScopeOutcome:
    """Result of one scope in a batch: a context or a scope-qualified error."""

    scope: str
    context: AssembledContext | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    outcomes: list[ScopeOutcome] = field(default_factory=list)

    @property
    def contexts(self) -> dict[str, AssembledContext]:
        return {o.scope: o.context for o in self.outcomes if o.context is not None}

    @property
    def errors(self) -> dict[str, str]:
        return {o.scope: o.error for o in self.outcomes if o.error is not None}

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)


class ScopeContextAssembler:
    """Runs the retrieval and budget pipeline for candidate pools.

    Usage:
        assembler = ScopeContextAssembler(config)
        context = assembler.assemble(pool, Query(text="aria", token_budget=1024))
        print(context.render())
    """

    def __init__(
        self,
        config: ProjectConfig | None = None,
        link_resolver: LinkResolver | None = None,
    ) -> None:
        self.config = config or ProjectConfig()
        self.link_resolver = link_resolver
        self.priority = PriorityEngine(
            self.config.priority.weights, infer_root=self.config.priority.infer_root
        )
        self.retrieval = RetrievalEngine(self.config.retrieval.scoring)
        self.allocator = BudgetAllocator(self.config.tiers)

    def assemble(self, pool: CandidatePool, query: Query | Mapping[str, Any]) -> AssembledContext:
        """Assemble the budgeted context for one scope.

        Raises InvalidQueryError before any work for a malformed query, and
        ScopeAssemblyError when a later stage fails.
        """
        query = validate_query(query)
        scope = pool.scope
        stage = AssemblyStage.IDLE

        try:
            stage = self._enter(scope, AssemblyStage.FILTERING)
            pool = self._filter(pool)
            resolver = self.link_resolver or default_link_resolver(pool)

            stage = self._enter(scope, AssemblyStage.RETRIEVING)
            graph = GraphIndex.build(pool.entries, resolver)
            order = self.priority.compute_order(
                pool.entries, graph, self.config.priority.root_uid
            )
            result = self.retrieval.retrieve(pool, graph, order, query)

            stage = self._enter(scope, AssemblyStage.ALLOCATING)
            allocation = self.allocator.allocate(result.entries, result.documents, query)

            context = self._render(scope, query, result, allocation)
            self._enter(scope, AssemblyStage.RENDERED)
            return context
        except ScopeAssemblyError:
            raise
        except Exception as e:
            logger.debug("Scope %r failed during %s", scope, stage.value, exc_info=True)
            raise ScopeAssemblyError(scope, stage.value, e) from e

    def assemble_batch(
        self,
        pools: Iterable[CandidatePool],
        query: Query | Mapping[str, Any],
        max_workers: int | None = None,
    ) -> BatchResult:
        """Assemble every scope independently; one failure never affects another.

        With `max_workers` > 1 scopes run on a thread pool. Outcomes are
        ordered by scope label.
        """
        pools = list(pools)
        query = validate_query(query)

        if max_workers and max_workers > 1 and len(pools) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                outcomes = list(executor.map(lambda p: self._run_scope(p, query), pools))
        else:
            outcomes = [self._run_scope(p, query) for p in pools]

        outcomes.sort(key=lambda o: o.scope)
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning("%d of %d scopes failed", failed, len(outcomes))
        return BatchResult(outcomes=outcomes)

    # -------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------

    def _run_scope(self, pool: CandidatePool, query: Query) -> ScopeOutcome:
        try:
            return ScopeOutcome(scope=pool.scope, context=self.assemble(pool, query))
        except ScopeAssemblyError as e:
            return ScopeOutcome(scope=pool.scope, error=str(e))

    @staticmethod
    def _enter(scope: str, stage: AssemblyStage) -> AssemblyStage:
        logger.debug("Scope %r -> %s", scope, stage.value)
        return stage

    @staticmethod
    def _filter(pool: CandidatePool) -> CandidatePool:
        entries = [e for e in pool.entries if e.route is not RetrievalRoute.NONE]
        documents = [d for d in pool.documents if d.route is not RetrievalRoute.NONE]
        doc_uids = {d.uid for d in documents}
        chunks = [c for c in pool.chunks if c.doc_uid in doc_uids]
        return CandidatePool(
            scope=pool.scope, entries=entries, documents=documents, chunks=chunks
        )

    @staticmethod
    def _render(
        scope: str,
        query: Query,
        result: RetrievalResult,
        allocation: Allocation,
    ) -> AssembledContext:
        context = AssembledContext(
            scope=scope,
            query_text=query.text,
            token_budget=query.token_budget,
            used_tokens=allocation.used_tokens,
            world_info=allocation.world_info,
            rag=allocation.rag,
            explainability=Explainability(
                fallback=result.fallback,
                seeds=result.seeds,
                candidates_considered=len(result.entries),
                world_info_budget=allocation.entry_report,
                rag_budget=allocation.document_report,
            ),
        )
        context.markdown = context.render()
        return context
