"""
Context Compressor

Shrinks selected items to fit a token budget under a wall-clock limit.

Strategies:
- truncation: sentence-boundary cut, no LLM call
- extraction: key-point bullets from the generation provider
- summarization: paraphrase keeping facts, numbers, dates, title and URL
- hybrid: summarization, falling back to truncation on failure, timeout
  or no gain

Every strategy is (items, budget) -> items with the LLM call as its single
async boundary. Whatever the strategy returns, a final fit step guarantees
the total stays within budget, hard-truncating at the token level if
needed. Citation markers found in an item are kept verbatim.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..common.config import CompressionConfig
from ..common.errors import (
    BudgetExceededUnrecoverable,
    CompressionTimeout,
    DegradationNotice,
    DegradationReason,
)
from ..common.llm_utils import parse_llm_list
from ..common.providers import call_collaborator
from ..common.schemas import CompressionStats, CompressionStrategy, ScoredResult
from .citations import find_markers

logger = logging.getLogger("contextfusion.retriever.compressor")

ELLIPSIS = "..."
_SENTENCE = re.compile(r"[^.!?]+[.!?]+(?:\s+|$)|[^.!?]+$")


@dataclass
class CompressionOutcome:
    """Compressed items plus what happened"""
    items: List[ScoredResult]
    stats: CompressionStats
    notices: List[DegradationNotice] = field(default_factory=list)


def allocate_budget(counts: Sequence[int], budget: int) -> List[int]:
    """
    Water-filling allocation: items under the fair share keep their size,
    the surplus is shared among the larger ones. sum(result) <= budget.
    """
    targets = [0] * len(counts)
    pending = sorted(range(len(counts)), key=lambda i: (counts[i], i))
    remaining = budget
    while pending:
        share = remaining // len(pending)
        idx = pending[0]
        if counts[idx] <= share:
            targets[idx] = counts[idx]
            remaining -= counts[idx]
            pending.pop(0)
            continue
        # Everyone left is larger than the fair share
        extra = remaining - share * len(pending)
        for position, i in enumerate(sorted(pending)):
            targets[i] = share + (1 if position < extra else 0)
        break
    return targets


class ContextCompressor:
    """Budget-bound compression of selected context items"""

    SUMMARY_PROMPT = """Summarize the source below in at most {words} words so it can answer the question.
Keep every fact, number, date and name that matters. Keep citation markers such as [1] exactly as written.
Mention the source as "{title}"{url_clause}.

Question: {query}

Source:
{content}

Summary:"""

    EXTRACTION_PROMPT = """List up to {count} key points from the source below that help answer the question.
One point per line, each starting with "- ". Keep exact numbers, dates and names.

Question: {query}

Source ("{title}"):
{content}

Key points:"""

    def __init__(
        self,
        generation=None,
        token_counter=None,
        config: Optional[CompressionConfig] = None,
    ):
        """
        Args:
            generation: GenerationProvider for extraction/summarization
            token_counter: Object with count(text) and truncate(text, n)
            config: CompressionConfig
        """
        self._generation = generation
        self._counter = token_counter
        self.config = config or CompressionConfig()

    @property
    def llm_available(self) -> bool:
        return self._generation is not None and getattr(self._generation, "is_available", True)

    def count(self, text: str) -> int:
        return self._counter.count(text)

    async def compress(
        self,
        items: Sequence[ScoredResult],
        budget: int,
        query: str = "",
        strategy: Optional[CompressionStrategy] = None,
        time_budget: Optional[float] = None,
    ) -> CompressionOutcome:
        """
        Fit ``items`` (best first) into ``budget`` content tokens.

        Args:
            items: Selected items, best first
            budget: Token budget for item content
            query: User query, quoted in prompts
            strategy: Overrides the configured strategy
            time_budget: Seconds allowed for generation calls (default from config)

        Returns:
            CompressionOutcome whose items' content totals <= budget
        """
        strategy = strategy or CompressionStrategy(self.config.strategy)
        start = time.perf_counter()
        items = list(items)
        counts = [self.count(item.content) for item in items]
        total = sum(counts)
        stats = CompressionStats(
            strategy="none",
            original_tokens=total,
            compressed_tokens=total,
            budget_tokens=budget,
        )
        notices: List[DegradationNotice] = []

        if total <= budget:
            return CompressionOutcome(items=items, stats=stats)

        stats.strategy = strategy.value

        # Too many items for a useful share each: drop from the bottom
        min_tokens = self.config.min_item_tokens
        keep = len(items)
        while keep and keep * min_tokens > budget:
            keep -= 1
        stats.dropped_ids = [item.source_id for item in items[keep:]]
        items, counts = items[:keep], counts[:keep]
        if stats.dropped_ids:
            logger.warning("Dropped %d lowest-ranked items to fit %d tokens", len(stats.dropped_ids), budget)
            notices.append(DegradationNotice(
                reason=DegradationReason.BUDGET_EXCEEDED,
                detail=f"dropped {len(stats.dropped_ids)} items to fit {budget} tokens",
            ))

        targets = allocate_budget(counts, budget)

        if strategy == CompressionStrategy.TRUNCATION:
            texts = [
                self.truncate(item.content, target) if count > target else item.content
                for item, count, target in zip(items, counts, targets)
            ]
            methods = ["truncated" if c > t else "kept" for c, t in zip(counts, targets)]
        else:
            texts, methods = await self._compress_with_llm(
                items, counts, targets, query, strategy, notices, time_budget
            )

        lost: List[str] = []
        texts = [self._keep_citations(item.content, text, target, lost)
                 for item, text, target in zip(items, texts, targets)]
        if lost:
            logger.warning("No room to keep citation markers %s", " ".join(lost))
            notices.append(DegradationNotice(
                reason=DegradationReason.BUDGET_EXCEEDED,
                detail=f"dropped citation markers {' '.join(lost)}",
            ))

        try:
            texts = self._fit(texts, targets, budget)
        except BudgetExceededUnrecoverable as e:
            logger.warning("%s; hard-truncating at token level", e)
            texts = [self._counter.truncate(text, target) for text, target in zip(texts, targets)]

        out = []
        for item, text, method in zip(items, texts, methods):
            if method == "kept" and text == item.content:
                out.append(item)
            else:
                out.append(item.with_compressed(text, method))
            stats.methods[item.source_id] = method

        stats.compressed_tokens = sum(self.count(item.content) for item in out)
        stats.elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Compressed %d -> %d tokens (budget %d, %s, %.0fms)",
            stats.original_tokens, stats.compressed_tokens, budget, strategy.value, stats.elapsed_ms,
        )
        return CompressionOutcome(items=out, stats=stats, notices=notices)

    # ------------------------------------------------------------------
    # Truncation
    # ------------------------------------------------------------------

    def truncate(self, text: str, max_tokens: int) -> str:
        """Keep whole leading sentences within ``max_tokens``, then add an ellipsis"""
        if self.count(text) <= max_tokens:
            return text
        ellipsis_tokens = self.count(ELLIPSIS)
        if max_tokens <= ellipsis_tokens:
            return self._counter.truncate(text, max_tokens)

        kept = ""
        for sentence in _SENTENCE.findall(text):
            candidate = kept + sentence
            if self.count(candidate.rstrip() + ELLIPSIS) > max_tokens:
                break
            kept = candidate

        if not kept.strip():
            # First sentence alone is too long
            kept = self._counter.truncate(text, max_tokens - ellipsis_tokens)

        result = kept.rstrip() + ELLIPSIS
        if self.count(result) > max_tokens:
            result = self._counter.truncate(result, max_tokens)
        return result

    # ------------------------------------------------------------------
    # LLM strategies
    # ------------------------------------------------------------------

    async def _compress_with_llm(
        self,
        items: List[ScoredResult],
        counts: List[int],
        targets: List[int],
        query: str,
        strategy: CompressionStrategy,
        notices: List[DegradationNotice],
        time_budget: Optional[float] = None,
    ):
        texts = [item.content for item in items]
        methods = ["kept"] * len(items)

        if not self.llm_available:
            logger.warning("No generation provider for %s compression, truncating", strategy.value)
            notices.append(DegradationNotice(
                reason=DegradationReason.COMPRESSION_FAILED,
                detail=f"{strategy.value} unavailable, truncated instead",
            ))
            for i, (count, target) in enumerate(zip(counts, targets)):
                if count > target:
                    texts[i] = self.truncate(items[i].content, target)
                    methods[i] = "truncated"
            return texts, methods

        loop = asyncio.get_running_loop()
        if time_budget is None:
            time_budget = self.config.time_budget_seconds
        deadline = loop.time() + time_budget
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        timed_out: List[str] = []
        failed: List[str] = []

        async def run(i: int) -> None:
            item, target = items[i], targets[i]
            async with semaphore:
                try:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise CompressionTimeout("compression time budget exhausted")
                    text, method = await self._llm_compress(item, target, query, strategy, remaining)
                except CompressionTimeout:
                    timed_out.append(item.source_id)
                    text, method = self.truncate(item.content, target), "truncated"
                except Exception as e:
                    logger.warning("Compression of %s failed: %s", item.source_id, e)
                    failed.append(item.source_id)
                    text, method = self.truncate(item.content, target), "truncated"
            texts[i], methods[i] = text, method

        await asyncio.gather(*(run(i) for i in range(len(items)) if counts[i] > targets[i]))

        if timed_out:
            logger.warning("Compression time budget expired; truncated %d items", len(timed_out))
            notices.append(DegradationNotice(
                reason=DegradationReason.COMPRESSION_TIMEOUT,
                detail=f"truncated {len(timed_out)} items after {time_budget:.1f}s",
            ))
        if failed:
            notices.append(DegradationNotice(
                reason=DegradationReason.COMPRESSION_FAILED,
                detail=f"truncated {len(failed)} items after generation errors",
            ))
        return texts, methods

    async def _llm_compress(
        self,
        item: ScoredResult,
        target: int,
        query: str,
        strategy: CompressionStrategy,
        remaining: float,
    ):
        """Single async boundary: one generation call with the remaining time budget"""
        extraction = strategy == CompressionStrategy.EXTRACTION
        prompt = self._prompt(item, target, query, extraction)
        max_tokens = max(32, min(self.config.summary_max_tokens, target))

        try:
            raw = await asyncio.wait_for(
                call_collaborator(self._generation.complete, prompt, max_tokens),
                timeout=remaining,
            )
        except asyncio.TimeoutError as e:
            raise CompressionTimeout(f"generation exceeded {remaining:.2f}s") from e

        if extraction:
            points = parse_llm_list(raw, limit=self.config.max_key_points)
            text = "\n".join(f"- {p}" for p in points)
            method = "extracted"
        else:
            text = (raw or "").strip()
            method = "summarized"

        if not text:
            raise ValueError("generation returned empty output")

        original = self.count(item.content)
        produced = self.count(text)
        if produced >= original * self.config.no_gain_ratio:
            if strategy == CompressionStrategy.HYBRID:
                logger.debug("Summary of %s saved too little, truncating", item.source_id)
                return self.truncate(item.content, target), "truncated"
        if produced > target:
            text = self.truncate(text, target)
        return text, method

    def _prompt(self, item: ScoredResult, target: int, query: str, extraction: bool) -> str:
        title = item.title or item.source_id
        if extraction:
            return self.EXTRACTION_PROMPT.format(
                count=self.config.max_key_points,
                query=query,
                title=title,
                content=item.result.content,
            )
        url_clause = f" ({item.url})" if item.url else ""
        return self.SUMMARY_PROMPT.format(
            words=max(10, int(target * 0.75)),
            title=title,
            url_clause=url_clause,
            query=query,
            content=item.result.content,
        )

    # ------------------------------------------------------------------
    # Budget guarantees
    # ------------------------------------------------------------------

    def _keep_citations(self, original: str, text: str, target: int, lost: List[str]) -> str:
        """
        Re-attach citation markers the compressed text lost. Markers that
        cannot fit in ``target`` are appended to ``lost``.
        """
        missing = [m for m in dict.fromkeys(find_markers(original)) if m not in text]
        if not missing:
            return text
        suffix = "\nSources: " + " ".join(missing)
        suffix_tokens = self.count(suffix)
        if suffix_tokens >= target:
            lost.extend(missing)
            return text
        body = text
        if self.count(body) + suffix_tokens > target:
            body = self.truncate(body, target - suffix_tokens)
        return body + suffix

    def _fit(self, texts: List[str], targets: List[int], budget: int) -> List[str]:
        fitted = []
        for text, target in zip(texts, targets):
            if self.count(text) > target:
                text = self.truncate(text, target)
            fitted.append(text)
        total = sum(self.count(t) for t in fitted)
        if total > budget:
            raise BudgetExceededUnrecoverable(total, budget)
        return fitted
