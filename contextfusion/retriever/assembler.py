"""
Context Assembler

Final ordering, prompt formatting and citation map construction.

Each item gets a global index ``[N]`` plus a per-type marker
(``[Document N]`` / ``[Web Source N]``); both map to the item's source id.
Markers in the rendered text that do not resolve are reported as dangling.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.config import AssemblyConfig
from ..common.errors import DegradationNotice, DegradationReason
from ..common.schemas import AssembledContext, OrderingStrategy, QueryProfile, ScoredResult
from .citations import CitationLinker, document_citation_id, web_citation_id

logger = logging.getLogger("contextfusion.retriever.assembler")

HYBRID_SCORE_WEIGHT = 0.7
HYBRID_FRESHNESS_WEIGHT = 0.3

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _published(item: ScoredResult) -> datetime:
    published = item.result.published_at
    if published is None:
        return _OLDEST
    if published.tzinfo is None:
        return published.replace(tzinfo=timezone.utc)
    return published


class ContextAssembler:
    """Orders items, renders the context string and builds citations"""

    def __init__(self, config: Optional[AssemblyConfig] = None):
        self.config = config or AssemblyConfig()

    def resolve_ordering(
        self,
        ordering: Optional[OrderingStrategy],
        profile: Optional[QueryProfile],
    ) -> OrderingStrategy:
        ordering = ordering or OrderingStrategy(self.config.ordering)
        if ordering != OrderingStrategy.AUTO:
            return ordering
        if profile is not None and profile.time_sensitive:
            return OrderingStrategy.HYBRID
        return OrderingStrategy.RELEVANCE

    def order(self, items: Sequence[ScoredResult], ordering: OrderingStrategy) -> List[ScoredResult]:
        """Stable ordering; ties keep the incoming order"""
        if ordering == OrderingStrategy.CHRONOLOGICAL:
            # Newest first, undated last, then by score
            return sorted(items, key=lambda i: (_published(i), i.score), reverse=True)
        if ordering == OrderingStrategy.HYBRID:
            return sorted(
                items,
                key=lambda i: HYBRID_SCORE_WEIGHT * i.score
                + HYBRID_FRESHNESS_WEIGHT * (i.freshness_score or 0.0),
                reverse=True,
            )
        return sorted(items, key=lambda i: i.score, reverse=True)

    def citation_ids(self, items: Sequence[ScoredResult]) -> List[Tuple[str, str]]:
        """(global id, per-type id) for each item in order"""
        ids = []
        doc_n = web_n = 0
        for index, item in enumerate(items, start=1):
            if item.is_web:
                web_n += 1
                ids.append((str(index), web_citation_id(web_n)))
            else:
                doc_n += 1
                ids.append((str(index), document_citation_id(doc_n)))
        return ids

    def render_header(self, item: ScoredResult, global_id: str, typed_id: str) -> str:
        """Marker line plus metadata for one item"""
        title = item.title or item.source_id
        if item.is_web and item.url:
            lines = [f"[{global_id}] [{typed_id}]({item.url}) {title}"]
        else:
            lines = [f"[{global_id}] [{typed_id}] {title}"]

        if self.config.include_metadata:
            meta = [f"Type: {item.source_type.value}", f"Relevance Score: {item.score:.2f}"]
            if item.result.author:
                meta.append(f"Author: {item.result.author}")
            if item.result.published_at:
                meta.append(f"Published: {item.result.published_at.date().isoformat()}")
            lines.append(" | ".join(meta))
            if item.is_web and item.url:
                lines.append(f"URL: {item.url}")
        lines.append("Content:")
        return "\n".join(lines) + "\n"

    def header_tokens(self, items: Sequence[ScoredResult], count_tokens) -> int:
        """Tokens used by everything except item content, with one token of slack per item"""
        if not items:
            return 0
        total = 0
        for item, (global_id, typed_id) in zip(items, self.citation_ids(items)):
            total += count_tokens(self.render_header(item, global_id, typed_id)) + 1
        total += (len(items) - 1) * count_tokens("\n\n")
        return total + count_tokens(self._preamble(items))

    def _preamble(self, items: Sequence[ScoredResult]) -> str:
        has_docs = any(not i.is_web for i in items)
        has_web = any(i.is_web for i in items)
        if has_docs and has_web:
            return "Relevant Document Excerpts and Web Search Results:\n\n"
        if has_web:
            return "Web Search Results:\n\n"
        return "Relevant Document Excerpts:\n\n"

    def assemble(
        self,
        items: Sequence[ScoredResult],
        profile: Optional[QueryProfile] = None,
        ordering: Optional[OrderingStrategy] = None,
        notices: Optional[List[DegradationNotice]] = None,
    ) -> AssembledContext:
        """Build the AssembledContext for already-selected (and compressed) items"""
        notices = list(notices or [])
        strategy = self.resolve_ordering(ordering, profile)
        ordered = self.order(items, strategy)

        citations: Dict[str, str] = {}
        blocks = []
        for item, (global_id, typed_id) in zip(ordered, self.citation_ids(ordered)):
            citations[global_id] = item.source_id
            citations[typed_id] = item.source_id
            blocks.append(self.render_header(item, global_id, typed_id) + item.content.strip())

        context_text = ""
        if blocks:
            context_text = self._preamble(ordered) + "\n\n".join(blocks)

        linker = CitationLinker(citations, ordered)
        dangling = linker.dangling(context_text)
        if dangling:
            logger.warning("Context has %d dangling citation markers: %s", len(dangling), dangling[:5])
            notices.append(DegradationNotice(
                reason=DegradationReason.DANGLING_CITATION,
                detail=", ".join(dangling[:10]),
            ))

        logger.info(
            "Assembled %d items (%s ordering), %d citations",
            len(ordered), strategy.value, len(citations),
        )
        return AssembledContext(
            items=ordered,
            context_text=context_text,
            citations=citations,
            dangling_citations=dangling,
            notices=notices,
            query_profile=profile,
        )
