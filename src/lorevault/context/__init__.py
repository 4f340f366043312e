"""Scoped context assembly.

Retrieves keyword-seeded, graph-expanded lore entries (plus fallback
documents) for a query and packs them into a token budget.

Usage:
    from lorevault.context import ScopeContextAssembler, Query

    assembler = ScopeContextAssembler(config)
    context = assembler.assemble(pool, Query(text="who rules aria", token_budget=2048))
    print(context.render())
"""

from lorevault.context.budget import Allocation, BudgetAllocator
from lorevault.context.engine import (
    AssemblyStage,
    BatchResult,
    ScopeContextAssembler,
    build_query,
)
from lorevault.context.models import AssembledContext, ContentTier, Query
from lorevault.context.retrieval import RetrievalEngine, RetrievalResult

__all__ = [
    "AssembledContext",
    "AssemblyStage",
    "Allocation",
    "BatchResult",
    "BudgetAllocator",
    "ContentTier",
    "Query",
    "RetrievalEngine",
    "RetrievalResult",
    "ScopeContextAssembler",
    "build_query",
]
