"""Token-budgeted selection and content tiering."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from lorevault.config import TierConfig
from lorevault.context.models import (
    ContentTier,
    DocumentBudgetReport,
    EntryBudgetReport,
    Query,
    ScoredDocument,
    ScoredEntry,
    SelectedDocument,
    SelectedEntry,
    TokenEstimator,
    render_document_section,
    render_entry_section,
    trim_at_word_boundary,
)

logger = logging.getLogger("lorevault.budget")

_TIER_RANK = {
    ContentTier.SHORT: 0,
    ContentTier.MEDIUM: 1,
    ContentTier.FULL: 2,
    ContentTier.FULL_BODY: 3,
}

# Provenance carried over when a scored candidate becomes a selection
_SCORED_ENTRY_FIELDS = set(ScoredEntry.model_fields) - {"entry"}
_SCORED_DOCUMENT_FIELDS = set(ScoredDocument.model_fields) - {"document", "chunk"}


@dataclass
class Allocation:
    """Selected entries and documents plus their budget accounting."""

    world_info: list[SelectedEntry] = field(default_factory=list)
    rag: list[SelectedDocument] = field(default_factory=list)
    entry_report: EntryBudgetReport = field(default_factory=EntryBudgetReport)
    document_report: DocumentBudgetReport = field(default_factory=DocumentBudgetReport)

    @property
    def used_tokens(self) -> int:
        return self.entry_report.used + self.document_report.used


class BudgetAllocator:
    """Greedy, deterministic packing of scored candidates into a token budget.

    Entries are packed at the short tier first, then lifted to richer tiers
    while the entry sub-budget has headroom. Every candidate ends up in
    exactly one of selected / dropped-by-budget / dropped-by-limit.
    """

    def __init__(self, tiers: TierConfig | None = None) -> None:
        self.tiers = tiers or TierConfig()

    def allocate(
        self,
        entries: list[ScoredEntry],
        documents: list[ScoredDocument],
        query: Query,
    ) -> Allocation:
        entry_budget = math.floor(query.token_budget * query.entry_budget_ratio)
        document_budget = query.token_budget - entry_budget

        world_info, entry_report = self._select_entries(entries, entry_budget, query.max_entries)
        self._lift(world_info, entry_report)
        rag, document_report = self._select_documents(
            documents, document_budget, query.max_documents
        )

        allocation = Allocation(
            world_info=world_info,
            rag=rag,
            entry_report=entry_report,
            document_report=document_report,
        )
        logger.debug(
            "Allocated %d/%d tokens: %d entries (%d lifted), %d documents",
            allocation.used_tokens, query.token_budget, len(world_info),
            len(entry_report.lifted_uids), len(rag),
        )
        return allocation

    # -------------------------------------------------------------------
    # Tier rendering
    # -------------------------------------------------------------------

    def tier_content(self, entry: ScoredEntry, tier: ContentTier) -> str | None:
        """Content of `entry` at `tier`, or None if the tier does not apply."""
        content = entry.entry.content
        if tier is ContentTier.SHORT:
            return trim_at_word_boundary(content, self.tiers.short_chars)
        if tier is ContentTier.MEDIUM:
            return trim_at_word_boundary(content, self.tiers.medium_chars)
        if tier is ContentTier.FULL:
            return content.strip()
        body = entry.entry.source_body
        if body.strip() == content.strip():
            return None
        lifted = trim_at_word_boundary(
            body, TokenEstimator.chars_for(self.tiers.body_lift_token_cap)
        )
        # The body tier has to add text over the full content
        if len(lifted) <= len(content.strip()):
            return None
        return lifted

    @staticmethod
    def entry_cost(entry: ScoredEntry, content: str) -> int:
        return TokenEstimator.estimate(
            render_entry_section(entry.entry, entry.matched_keywords, content)
        )

    # -------------------------------------------------------------------
    # Greedy walks
    # -------------------------------------------------------------------

    def _select_entries(
        self,
        entries: list[ScoredEntry],
        budget: int,
        max_entries: int,
    ) -> tuple[list[SelectedEntry], EntryBudgetReport]:
        report = EntryBudgetReport(
            budget=budget,
            body_lift_max_entries=self.tiers.body_lift_max_entries,
            body_lift_token_cap=self.tiers.body_lift_token_cap,
        )
        selected: list[SelectedEntry] = []

        for item in entries:
            if len(selected) >= max_entries:
                report.dropped_by_limit_uids.append(item.uid)
                continue
            content = self.tier_content(item, ContentTier.SHORT)
            cost = self.entry_cost(item, content)
            if report.used + cost > budget:
                report.dropped_by_budget_uids.append(item.uid)
                continue
            selected.append(
                SelectedEntry(
                    **item.model_dump(include=_SCORED_ENTRY_FIELDS),
                    entry=item.entry,
                    content_tier=ContentTier.SHORT,
                    included_content=content,
                    token_estimate=cost,
                )
            )
            report.selected_uids.append(item.uid)
            report.used += cost

        return selected, report

    def _select_documents(
        self,
        documents: list[ScoredDocument],
        budget: int,
        max_documents: int,
    ) -> tuple[list[SelectedDocument], DocumentBudgetReport]:
        report = DocumentBudgetReport(budget=budget)
        selected: list[SelectedDocument] = []

        for item in documents:
            if len(selected) >= max_documents:
                report.dropped_by_limit_keys.append(item.key)
                continue
            content = trim_at_word_boundary(item.text, self.tiers.document_chars)
            cost = TokenEstimator.estimate(render_document_section(item, content))
            if report.used + cost > budget:
                report.dropped_by_budget_keys.append(item.key)
                continue
            selected.append(
                SelectedDocument(
                    **item.model_dump(include=_SCORED_DOCUMENT_FIELDS),
                    document=item.document,
                    chunk=item.chunk,
                    included_content=content,
                    token_estimate=cost,
                )
            )
            report.selected_keys.append(item.key)
            report.used += cost

        return selected, report

    # -------------------------------------------------------------------
    # Lift
    # -------------------------------------------------------------------

    def _lift(self, selected: list[SelectedEntry], report: EntryBudgetReport) -> None:
        """Upgrade selected entries, highest score first, while headroom remains.

        Rounds run medium, then full, then full_body (at most
        `body_lift_max_entries` entries). An upgrade that would not change the
        included text only moves the tier label.
        """
        for tier in (ContentTier.MEDIUM, ContentTier.FULL):
            for item in selected:
                if _TIER_RANK[item.content_tier] < _TIER_RANK[tier]:
                    self._try_upgrade(item, tier, report)

        body_lifts = 0
        for item in selected:
            if body_lifts >= self.tiers.body_lift_max_entries:
                break
            if item.content_tier is not ContentTier.FULL:
                continue
            if self._try_upgrade(item, ContentTier.FULL_BODY, report):
                body_lifts += 1
                report.body_lifted_uids.append(item.uid)

    def _try_upgrade(
        self,
        item: SelectedEntry,
        tier: ContentTier,
        report: EntryBudgetReport,
    ) -> bool:
        content = self.tier_content(item, tier)
        if content is None:
            return False
        if content == item.included_content:
            item.content_tier = tier
            return False

        cost = self.entry_cost(item, content)
        delta = cost - item.token_estimate
        if report.used + delta > report.budget:
            return False

        item.content_tier = tier
        item.included_content = content
        item.token_estimate = cost
        report.used += delta
        if item.uid not in report.lifted_uids:
            report.lifted_uids.append(item.uid)
        return True
