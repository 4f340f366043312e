"""Data models for scored retrieval and budgeted context assembly."""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from lorevault.config import FallbackPolicy
from lorevault.pool.models import Chunk, Document, Entry

REASON_CONSTANT = "constant entry"


class ContentTier(str, Enum):
    """Detail level of an included entry's content."""

    SHORT = "short"
    MEDIUM = "medium"
    FULL = "full"
    FULL_BODY = "full_body"


class Query(BaseModel):
    """A retrieval request with a hard token budget."""

    text: str = ""
    token_budget: int = Field(gt=0)
    max_graph_hops: int = Field(default=2, ge=0, le=3)
    graph_hop_decay: float = Field(default=0.55, ge=0.2, le=0.9)
    fallback_policy: FallbackPolicy = FallbackPolicy.AUTO
    fallback_seed_threshold: float = Field(default=120, ge=0)
    max_entries: int = Field(default=8, ge=1)
    max_documents: int = Field(default=6, ge=0)
    entry_budget_ratio: float = Field(default=0.7, ge=0.1, le=0.95)
    include_backlinks: bool = False


class ScoreBreakdown(BaseModel):
    """Additive components of an entry's retrieval score."""

    seed: float = 0.0
    graph: float = 0.0
    constant: float = 0.0
    order: float = 0.0

    @property
    def total(self) -> float:
        return self.seed + self.graph + self.constant + self.order


class ScoredEntry(BaseModel):
    """An entry that survived retrieval, with its score provenance."""

    entry: Entry
    score: float
    breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    matched_keywords: list[str] = Field(default_factory=list)
    hop_distance: int = 0
    seed_uid: int | None = None
    path_uids: list[int] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    @property
    def uid(self) -> int:
        return self.entry.uid


class ScoredDocument(BaseModel):
    """A fallback document (or one of its chunks) matched by the query."""

    document: Document
    chunk: Chunk | None = None
    score: float
    matched_terms: list[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        """Stable identifier: the chunk id, or the document uid."""
        return self.chunk.chunk_id if self.chunk else str(self.document.uid)

    @property
    def title(self) -> str:
        if self.chunk and self.chunk.heading:
            return f"{self.document.title} / {self.chunk.heading}"
        return self.document.title

    @property
    def text(self) -> str:
        return self.chunk.text if self.chunk else self.document.content


class SelectedEntry(ScoredEntry):
    """An entry included in the assembled context."""

    content_tier: ContentTier = ContentTier.SHORT
    included_content: str = ""
    token_estimate: int = 0


class SelectedDocument(ScoredDocument):
    """A fallback document included in the assembled context."""

    included_content: str = ""
    token_estimate: int = 0


class SeedInfo(BaseModel):
    uid: int
    score: float
    matched_keywords: list[str] = Field(default_factory=list)
    constant: bool = False


class FallbackReport(BaseModel):
    """Why the fallback search did or did not run."""

    policy: FallbackPolicy
    enabled: bool
    seed_confidence: float
    threshold: float


class EntryBudgetReport(BaseModel):
    """world_info budget accounting: every candidate uid lands in one bucket."""

    budget: int = 0
    used: int = 0
    selected_uids: list[int] = Field(default_factory=list)
    dropped_by_budget_uids: list[int] = Field(default_factory=list)
    dropped_by_limit_uids: list[int] = Field(default_factory=list)
    lifted_uids: list[int] = Field(default_factory=list)
    body_lifted_uids: list[int] = Field(default_factory=list)
    body_lift_max_entries: int = 0
    body_lift_token_cap: int = 0

    @computed_field
    @property
    def dropped_by_budget(self) -> int:
        return len(self.dropped_by_budget_uids)

    @computed_field
    @property
    def dropped_by_limit(self) -> int:
        return len(self.dropped_by_limit_uids)

    @property
    def dropped_uids(self) -> list[int]:
        return self.dropped_by_budget_uids + self.dropped_by_limit_uids


class DocumentBudgetReport(BaseModel):
    """rag budget accounting, keyed by document uid or chunk id."""

    budget: int = 0
    used: int = 0
    selected_keys: list[str] = Field(default_factory=list)
    dropped_by_budget_keys: list[str] = Field(default_factory=list)
    dropped_by_limit_keys: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def dropped_by_budget(self) -> int:
        return len(self.dropped_by_budget_keys)

    @computed_field
    @property
    def dropped_by_limit(self) -> int:
        return len(self.dropped_by_limit_keys)


class Explainability(BaseModel):
    """Full trace of the inclusion and exclusion decisions for one scope."""

    fallback: FallbackReport
    seeds: list[SeedInfo] = Field(default_factory=list)
    candidates_considered: int = 0
    world_info_budget: EntryBudgetReport = Field(default_factory=EntryBudgetReport)
    rag_budget: DocumentBudgetReport = Field(default_factory=DocumentBudgetReport)


class AssembledContext(BaseModel):
    """The final, budgeted context for one scope."""

    scope: str
    query_text: str
    token_budget: int
    used_tokens: int = 0
    world_info: list[SelectedEntry] = Field(default_factory=list)
    rag: list[SelectedDocument] = Field(default_factory=list)
    markdown: str = ""
    explainability: Explainability

    @property
    def is_empty(self) -> bool:
        return not self.world_info and not self.rag

    def render(self) -> str:
        """Render the injectable context block."""
        entry_sections = [
            render_entry_section(item.entry, item.matched_keywords, item.included_content)
            for item in self.world_info
        ]
        doc_sections = [
            render_document_section(item, item.included_content) for item in self.rag
        ]
        scope_label = self.scope or "(all)"
        return "\n".join([
            "## LoreVault Context",
            f"Scope: `{scope_label}`",
            f"Query: {self.query_text.strip() or '(empty)'}",
            "",
            "### world_info",
            "\n\n---\n\n".join(entry_sections) if entry_sections
            else "_No matching world_info entries._",
            "",
            "### rag",
            "\n\n---\n\n".join(doc_sections) if doc_sections
            else "_No matching rag documents._",
        ])

    def summary(self) -> str:
        """Human-readable explainability report."""
        ex = self.explainability
        wi = ex.world_info_budget
        fb = ex.fallback
        lines = [
            f"Scope: {self.scope or '(all)'}",
            f"Tokens: {self.used_tokens:,} / {self.token_budget:,}",
            f"world_info: {len(self.world_info)} selected, "
            f"{wi.dropped_by_budget} dropped by budget, "
            f"{wi.dropped_by_limit} dropped by limit",
            f"rag: {len(self.rag)} selected "
            f"(policy {fb.policy.value}, {'enabled' if fb.enabled else 'disabled'}, "
            f"seed confidence {fb.seed_confidence:.2f} / threshold {fb.threshold:g})",
        ]
        if wi.lifted_uids:
            lines.append(
                f"Lifted: {', '.join(map(str, wi.lifted_uids))}"
                + (
                    f" (full body: {', '.join(map(str, wi.body_lifted_uids))})"
                    if wi.body_lifted_uids else ""
                )
            )
        lines.append("")
        lines.append("Included entries:")
        for item in self.world_info:
            marker = ">" if item.hop_distance == 0 else " " * item.hop_distance + "·"
            lines.append(
                f"  {marker} [{item.uid}] {item.entry.title} "
                f"score={item.score:.2f} order={item.entry.order} "
                f"tier={item.content_tier.value} ~{item.token_estimate}tok"
            )
            if item.path_uids and len(item.path_uids) > 1:
                lines.append(f"    path: {' -> '.join(map(str, item.path_uids))}")
            if item.reasons:
                lines.append(f"    reason: {'; '.join(item.reasons)}")
        if self.rag:
            lines.append("")
            lines.append("Included documents:")
            for doc in self.rag:
                lines.append(
                    f"  · {doc.title} [{doc.document.path}] "
                    f"score={doc.score:.2f} ~{doc.token_estimate}tok"
                )
        return "\n".join(lines)


class TokenEstimator:
    """Estimate token counts for prose."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string, rounding up."""
        return max(1, math.ceil(len(text) / cls.CHARS_PER_TOKEN))

    @classmethod
    def chars_for(cls, tokens: int) -> int:
        """Character allowance for a token count."""
        return int(tokens * cls.CHARS_PER_TOKEN)


def trim_at_word_boundary(text: str, max_chars: int) -> str:
    """Trim to `max_chars`, preferring the last space past 60% of the limit."""
    cleaned = text.strip()
    if len(cleaned) <= max_chars:
        return cleaned
    boundary = cleaned[: max_chars + 1].rfind(" ")
    cut = boundary if boundary >= math.floor(max_chars * 0.6) else max_chars
    return f"{cleaned[:cut].rstrip()}\n..."


def render_entry_section(entry: Entry, matched_keywords: list[str], content: str) -> str:
    matched = (
        f"Matched: {', '.join(matched_keywords)}"
        if matched_keywords
        else "Matched: (constant)" if entry.is_constant else "Matched: (graph)"
    )
    return "\n".join([
        f"### {entry.title}",
        f"Keys: {', '.join(entry.keys)}",
        matched,
        "",
        content.strip(),
    ])


def render_document_section(doc: ScoredDocument, content: str) -> str:
    matched = (
        f"Matched terms: {', '.join(doc.matched_terms)}"
        if doc.matched_terms
        else "Matched terms: -"
    )
    return "\n".join([
        f"### {doc.title}",
        f"Source: `{doc.document.path}`",
        matched,
        "",
        content,
    ])
