"""
Adaptive Context Selector

Decides how many document and web items go into the context, from query
complexity, a document/web preference and the token budget. After
retrieval, one refinement pass re-checks real token counts and adjusts
the counts once.
"""

import logging
import math
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from ..common.config import SelectorConfig
from ..common.schemas import (
    ContextBudget,
    ContextSelection,
    IntentComplexity,
    QueryProfile,
    QueryType,
    ScoredResult,
    SourcePreference,
)

logger = logging.getLogger("contextfusion.retriever.context_selector")


class AdaptiveContextSelector:
    """Per-source item counts under a token budget"""

    INTENT_MULTIPLIERS = {
        IntentComplexity.SIMPLE: 0.6,
        IntentComplexity.MODERATE: 1.0,
        IntentComplexity.COMPLEX: 1.5,
    }

    TYPE_ADJUSTMENTS = {
        QueryType.CONCEPTUAL: 2,
        QueryType.PROCEDURAL: 1,
        QueryType.EXPLORATORY: 3,
        QueryType.ANALYTICAL: 2,
        QueryType.COMPARATIVE: 2,
    }

    # (max query length, multiplier)
    LENGTH_MULTIPLIERS = ((20, 0.7), (100, 1.0))
    LONG_QUERY_MULTIPLIER = 1.3

    PREFER_BOOST = 1.3
    PREFER_CUT = 0.7

    def __init__(self, config: Optional[SelectorConfig] = None):
        self.config = config or SelectorConfig()

    def select(
        self,
        profile: QueryProfile,
        budget: ContextBudget,
        prefer: SourcePreference = SourcePreference.BALANCED,
        documents_enabled: bool = True,
        web_enabled: bool = True,
    ) -> ContextSelection:
        """Initial counts before retrieval"""
        cfg = self.config
        reasoning: List[str] = []

        docs = cfg.default_documents * self.INTENT_MULTIPLIERS[profile.intent_complexity]
        docs *= self._length_multiplier(len(profile.original_query))
        docs += self.TYPE_ADJUSTMENTS.get(profile.query_type, 0)
        docs += round((profile.complexity_score - 0.5) * 4)
        reasoning.append(
            f"{profile.intent_complexity.value} {profile.query_type.value} query "
            f"(complexity {profile.complexity_score:.2f}) -> {docs:.1f} documents"
        )

        web = math.floor(docs * cfg.web_ratio)
        if prefer == SourcePreference.DOCUMENTS:
            docs, web = docs * self.PREFER_BOOST, web * self.PREFER_CUT
            reasoning.append("prefer documents")
        elif prefer == SourcePreference.WEB:
            docs, web = docs * self.PREFER_CUT, web * self.PREFER_BOOST
            reasoning.append("prefer web")

        doc_count = self._clamp(round(docs), cfg.min_documents, cfg.max_documents) if documents_enabled else 0
        web_count = self._clamp(round(web), cfg.min_web, cfg.max_web) if web_enabled else 0

        available = budget.available_tokens
        estimate = self._estimate(doc_count, web_count, budget)

        if estimate > available and estimate > 0:
            scale = available / estimate
            doc_count = max(1, math.floor(doc_count * scale)) if doc_count else 0
            web_count = max(1, math.floor(web_count * scale)) if web_count else 0
            reasoning.append(f"scaled down x{scale:.2f} to fit {available} tokens")
        elif available > estimate + cfg.extra_item_tokens:
            extra = (available - estimate) // cfg.extra_item_tokens
            if doc_count and web_count:
                extra_docs = round(extra * 0.6)
                extra_web = extra - extra_docs
            elif doc_count:
                extra_docs, extra_web = extra, 0
            else:
                extra_docs, extra_web = 0, extra
            new_docs = min(cfg.max_documents, doc_count + extra_docs) if doc_count else 0
            new_web = min(cfg.max_web, web_count + extra_web) if web_count else 0
            if (new_docs, new_web) != (doc_count, web_count):
                reasoning.append(
                    f"budget headroom: +{new_docs - doc_count} documents, +{new_web - web_count} web"
                )
            doc_count, web_count = new_docs, new_web

        selection = ContextSelection(
            document_count=doc_count,
            web_count=web_count,
            estimated_tokens=self._estimate(doc_count, web_count, budget),
            reasoning=reasoning,
        )
        logger.info(
            "Context selection: %d documents, %d web (~%d tokens of %d)",
            selection.document_count, selection.web_count, selection.estimated_tokens, available,
        )
        return selection

    def refine(
        self,
        selection: ContextSelection,
        ranked: Sequence[ScoredResult],
        count_tokens: Callable[[str], int],
        budget: ContextBudget,
    ) -> ContextSelection:
        """One adjustment from real token counts. A refined selection is returned unchanged."""
        if selection.refined:
            return selection

        cfg = self.config
        chosen = self.apply(selection, ranked)
        actual = sum(count_tokens(item.content) for item in chosen)
        available = budget.available_tokens
        docs, web = selection.document_count, selection.web_count
        note = f"actual {actual} tokens for {len(chosen)} items"

        if actual > available and actual > 0:
            excess_ratio = (actual - available) / actual
            reduce = math.ceil(len(chosen) * excess_ratio * 0.5)
            if reduce:
                web_cut = min(web, math.floor(reduce * web / max(1, docs + web)))
                doc_cut = min(max(0, docs - 1), reduce - web_cut)
                docs, web = docs - doc_cut, web - web_cut
                note += f", over budget: -{doc_cut} documents, -{web_cut} web"
        elif actual < available * 0.5:
            extra = (available - actual) // cfg.refine_item_tokens
            if extra:
                extra_docs = round(extra * 0.6) if web else extra
                extra_web = extra - extra_docs if web else 0
                docs = min(cfg.max_documents, docs + extra_docs) if selection.document_count else 0
                web = min(cfg.max_web, web + extra_web) if selection.web_count else 0
                note += f", under half the budget: up to {docs} documents, {web} web"

        refined = replace(
            selection,
            document_count=docs,
            web_count=web,
            estimated_tokens=actual,
            reasoning=selection.reasoning + [note],
            refined=True,
        )
        logger.debug("Refined selection: %s", note)
        return refined

    @staticmethod
    def apply(selection: ContextSelection, ranked: Sequence[ScoredResult]) -> List[ScoredResult]:
        """Take the first N document-side and web items, keeping ranked order"""
        docs_left, web_left = selection.document_count, selection.web_count
        chosen = []
        for item in ranked:
            if item.is_web:
                if web_left > 0:
                    chosen.append(item)
                    web_left -= 1
            elif docs_left > 0:
                chosen.append(item)
                docs_left -= 1
        return chosen

    def _length_multiplier(self, length: int) -> float:
        for limit, multiplier in self.LENGTH_MULTIPLIERS:
            if length < limit:
                return multiplier
        return self.LONG_QUERY_MULTIPLIER

    def _estimate(self, docs: int, web: int, budget: ContextBudget) -> int:
        return docs * budget.per_item_estimate + web * self.config.tokens_per_web

    @staticmethod
    def _clamp(value: int, low: int, high: int) -> int:
        return min(high, max(low, value))
