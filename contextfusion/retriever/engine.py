"""
Context Engine

Single entry point: ``retrieve_context(query, options) -> AssembledContext``.

Query -> analyze -> expand -> parallel fan-out -> fuse/dedup -> score ->
adaptive threshold -> re-rank -> diversity -> context sizing -> compress
-> assemble.

Only configuration errors raise, and they raise before any collaborator
call. Every other failure is recorded as a DegradationNotice on the
returned context.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..common.config import EngineConfig, validate_config
from ..common.errors import ConfigurationError, DegradationNotice, DegradationReason
from ..common.expansion_cache import ExpansionCache
from ..common.llm_client import LLMClient
from ..common.schemas import (
    AssembledContext,
    CompressionStrategy,
    ContextBudget,
    ExpansionStrategy,
    QueryProfile,
    RetrievalOptions,
)
from ..common.token_counter import TokenCounter
from .assembler import ContextAssembler
from .compressor import ContextCompressor
from .context_selector import AdaptiveContextSelector
from .domain_authority import DomainAuthorityTable
from .fusion import Deduplicator, fuse
from .query_expander import ExpandedQuery, QueryExpander
from .query_processor import QueryAnalyzer
from .reranker import DiversityFilter, Reranker
from .scoring import AuthorityScorer, FreshnessScorer, QualityScorer, ResultScorer
from .searcher import (
    KeywordSearchAdapter,
    RetrievalSource,
    Searcher,
    SemanticSearchAdapter,
    WebSearchAdapter,
)
from .threshold import ThresholdOptimizer

logger = logging.getLogger("contextfusion.retriever.engine")


class ContextEngine:
    """
    Retrieval fusion and context assembly for one question at a time.

    Holds no per-request state. The expansion cache and domain authority
    table are the only objects shared across requests.
    """

    def __init__(
        self,
        searcher: Searcher,
        generation=None,
        token_counter=None,
        config: Optional[EngineConfig] = None,
        expansion_cache: Optional[ExpansionCache] = None,
        domain_table: Optional[DomainAuthorityTable] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            searcher: Searcher wrapping the configured source adapters
            generation: GenerationProvider for expansion and compression
            token_counter: Exact tokenizer (count/truncate); TokenCounter by default
            config: EngineConfig (load_config() result or defaults)
            expansion_cache: Shared expansion cache
            domain_table: Shared domain authority table
            clock: Returns "now" for freshness scoring
        """
        self.config = config or EngineConfig()
        validate_config(self.config)

        cfg = self.config
        self._searcher = searcher
        self._generation = generation
        self._counter = token_counter or TokenCounter(
            model=cfg.tokens.model,
            encoding_name=cfg.tokens.encoding or None,
            cache_size=cfg.tokens.cache_size,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        if expansion_cache is None:
            expansion_cache = ExpansionCache(
                ttl_seconds=cfg.expansion.cache_ttl_seconds,
                max_entries=cfg.expansion.cache_max_entries,
            )
        if domain_table is None:
            if cfg.authority.table_path:
                domain_table = DomainAuthorityTable.from_file(
                    cfg.authority.table_path,
                    custom_scores=cfg.authority.custom_scores,
                    default_score=cfg.authority.default_authority,
                )
            else:
                domain_table = DomainAuthorityTable(
                    custom_scores=cfg.authority.custom_scores,
                    default_score=cfg.authority.default_authority,
                )

        self.analyzer = QueryAnalyzer()
        self.expander = QueryExpander(
            generation=generation,
            cache=expansion_cache,
            max_terms=cfg.expansion.max_terms,
            timeout=cfg.expansion.timeout_seconds,
            llm_max_tokens=cfg.expansion.llm_max_tokens,
        )
        self.deduplicator = Deduplicator(cfg.dedup)
        self.scorer = ResultScorer(
            quality=QualityScorer(cfg.quality),
            authority=AuthorityScorer(domain_table, cfg.authority),
            freshness=FreshnessScorer(cfg.freshness),
        )
        self.threshold = ThresholdOptimizer(cfg.threshold)
        self.reranker = Reranker(cfg.rerank)
        self.diversity = DiversityFilter(cfg.diversity)
        self.selector = AdaptiveContextSelector(cfg.selector)
        self.compressor = ContextCompressor(generation, self._counter, cfg.compression)
        self.assembler = ContextAssembler(cfg.assembly)

    @classmethod
    def from_collaborators(
        cls,
        embedding_provider=None,
        vector_index=None,
        keyword_index=None,
        web_search=None,
        generation=None,
        config: Optional[EngineConfig] = None,
        **kwargs,
    ) -> "ContextEngine":
        """Wire adapters for whichever collaborators are given.

        Without an explicit ``generation`` provider an LLMClient is built
        from ``config.llm``; it reports unavailable when no key is set.
        """
        config = config or EngineConfig()
        adapters = []
        if embedding_provider is not None and vector_index is not None:
            adapters.append(SemanticSearchAdapter(
                embedding_provider, vector_index, model=config.fanout.embedding_model or None
            ))
        if keyword_index is not None:
            adapters.append(KeywordSearchAdapter(keyword_index))
        if web_search is not None:
            adapters.append(WebSearchAdapter(web_search))

        if generation is None:
            generation = LLMClient.from_config(config.llm)

        searcher = Searcher(adapters, source_timeout=config.fanout.source_timeout_seconds)
        return cls(searcher, generation=generation, config=config, **kwargs)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def retrieve_context(
        self,
        query: str,
        options: Optional[RetrievalOptions] = None,
    ) -> AssembledContext:
        """
        Retrieve, fuse, rank and assemble context for ``query``.

        Args:
            query: User question
            options: Per-request options (defaults from config)

        Returns:
            AssembledContext; empty with notices when nothing usable was found

        Raises:
            ConfigurationError: contradictory options, before any collaborator call
        """
        options = options or RetrievalOptions()
        enabled = self._validate(query, options)
        cfg = self.config
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        deadline = loop.time() + options.timeout_seconds if options.timeout_seconds else None

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return max(0.0, deadline - loop.time())

        notices: List[DegradationNotice] = []

        # 1. Analyze and expand
        profile = self.analyzer.analyze(query)
        expansion = await self._expand(query, options, remaining())
        if expansion.failed and not expansion.skipped:
            notices.append(DegradationNotice(
                reason=DegradationReason.EXPANSION_FAILED,
                detail="; ".join(expansion.errors),
            ))
        profile = replace(
            profile,
            expanded_terms=expansion.terms,
            expansion_strategy=expansion.strategy,
            expansion_confidence=expansion.confidence,
        )

        # 2. Budget and initial sizing
        budget = ContextBudget(
            max_total_tokens=options.max_total_tokens or cfg.compression.max_context_tokens,
            reserved_for_history=options.reserved_for_history,
            reserved_for_system_prompt=options.reserved_for_system_prompt,
            per_item_estimate=cfg.selector.tokens_per_document,
        )
        documents_enabled = RetrievalSource.SEMANTIC in enabled or RetrievalSource.KEYWORD in enabled
        selection = self.selector.select(
            profile,
            budget,
            prefer=options.prefer,
            documents_enabled=documents_enabled,
            web_enabled=RetrievalSource.WEB in enabled,
        )

        # 3. Fan-out
        requests = self._searcher.build_requests(
            profile,
            enabled,
            self._top_k(selection.document_count, selection.web_count),
            topic=options.topic,
            topic_weight=options.topic_weight,
            options={"vector_filter": options.vector_filter, "web_options": options.web_options},
        )
        fanout = await self._searcher.fan_out(requests, deadline=remaining())
        notices.extend(fanout.notices)

        fused = fuse(fanout)
        if not fused:
            detail = "all sources failed" if fanout.all_failed else "no source returned results"
            logger.warning("No results for query %r: %s", query, detail)
            notices.append(DegradationNotice(reason=DegradationReason.NO_RESULTS, detail=detail))
            return self._empty(profile, notices, selection=selection)

        # 4. Dedup, score, threshold, rank, diversify
        deduped, dedup_report = self.deduplicator.deduplicate(fused)
        scored = self.reranker.score(self.scorer.score(deduped, now=self._clock()), profile)

        decision = self.threshold.compute(
            [item.score for item in scored],
            profile.query_type,
            min_results=options.min_results,
            max_results=options.max_results,
            min_threshold=options.min_threshold,
            max_threshold=options.max_threshold,
            override=options.threshold_override,
        )
        survivors = self.threshold.apply(scored, decision)
        if not survivors:
            notices.append(DegradationNotice(
                reason=DegradationReason.NO_RESULTS,
                detail=f"no result reached threshold {decision.threshold:.3f}",
            ))
            return self._empty(profile, notices, selection=selection, threshold=decision, dedup=dedup_report)

        ranked = self.reranker.rank(survivors)
        diverse = self.diversity.select(
            ranked,
            target=len(ranked),
            enabled=options.diversity_enabled,
            lambda_=options.diversity_lambda,
            max_per_domain=options.max_per_domain,
        )

        # 5. Size against real token counts (one refinement)
        selection = self.selector.refine(selection, diverse, self._counter.count, budget)
        chosen = self.selector.apply(selection, diverse)

        # 6. Compress to the content budget left after headers
        ordering = self.assembler.resolve_ordering(options.ordering, profile)
        header_tokens = self.assembler.header_tokens(
            self.assembler.order(chosen, ordering), self._counter.count
        )
        content_budget = max(0, budget.available_tokens - header_tokens)

        strategy = options.compression_strategy or CompressionStrategy(cfg.compression.strategy)
        time_budget = cfg.compression.time_budget_seconds
        left = remaining()
        if left is not None:
            time_budget = min(time_budget, left)
            if left <= 0:
                strategy = CompressionStrategy.TRUNCATION
                notices.append(DegradationNotice(
                    reason=DegradationReason.REQUEST_TIMEOUT,
                    detail="request deadline reached before compression, truncating",
                ))

        compression = await self.compressor.compress(
            self.reranker.rank(chosen),
            content_budget,
            query=query,
            strategy=strategy,
            time_budget=time_budget,
        )
        notices.extend(compression.notices)

        # 7. Assemble
        context = self.assembler.assemble(
            compression.items, profile=profile, ordering=ordering, notices=notices
        )
        context.threshold = decision
        context.selection = selection
        context.dedup = dedup_report
        context.compression = compression.stats
        context.total_tokens = self._counter.count(context.context_text)

        logger.info(
            "Context ready: %d items, %d tokens, degraded=%s in %.1fms",
            len(context.items), context.total_tokens, context.degraded,
            (time.perf_counter() - started) * 1000,
        )
        return context

    def retrieve_context_sync(
        self,
        query: str,
        options: Optional[RetrievalOptions] = None,
    ) -> AssembledContext:
        """
        Blocking wrapper for callers without an event loop.

        Unlike asyncio.run(), closing the loop does not join the default
        executor, so a sync collaborator still blocked in a worker thread
        after its source timeout cannot hold the caller past the deadline.
        """
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self.retrieve_context(query, options))
        finally:
            try:
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                # close() shuts the default executor down without waiting
                loop.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, query: str, options: RetrievalOptions) -> List[RetrievalSource]:
        """Check request options; returns the enabled sources"""
        problems = []
        if not query or not query.strip():
            problems.append("query must not be empty")

        th = self.config.threshold
        min_threshold = th.min_threshold if options.min_threshold is None else options.min_threshold
        max_threshold = th.max_threshold if options.max_threshold is None else options.max_threshold
        if min_threshold > max_threshold:
            problems.append(f"min_threshold ({min_threshold}) > max_threshold ({max_threshold})")

        min_results = th.min_results if options.min_results is None else options.min_results
        max_results = th.max_results if options.max_results is None else options.max_results
        if min_results > max_results:
            problems.append(f"min_results ({min_results}) > max_results ({max_results})")

        max_tokens = options.max_total_tokens or self.config.compression.max_context_tokens
        reserved = options.reserved_for_history + options.reserved_for_system_prompt
        if reserved >= max_tokens:
            problems.append(f"reserved tokens ({reserved}) leave no room in budget of {max_tokens}")

        fanout = self.config.fanout
        toggles = {
            RetrievalSource.SEMANTIC: fanout.semantic_enabled if options.use_semantic is None else options.use_semantic,
            RetrievalSource.KEYWORD: fanout.keyword_enabled if options.use_keyword is None else options.use_keyword,
            RetrievalSource.WEB: fanout.web_enabled if options.use_web is None else options.use_web,
        }
        enabled = [source for source in RetrievalSource if toggles[source]]
        if not enabled:
            problems.append("at least one retrieval source must be enabled")

        if problems:
            for problem in problems:
                logger.error("Invalid retrieval options: %s", problem)
            raise ConfigurationError("; ".join(problems))
        return enabled

    async def _expand(
        self,
        query: str,
        options: RetrievalOptions,
        remaining: Optional[float],
    ) -> ExpandedQuery:
        strategy = options.expansion_strategy or ExpansionStrategy(self.config.expansion.strategy)
        if remaining is None:
            return await self.expander.expand(query, strategy)
        try:
            return await asyncio.wait_for(self.expander.expand(query, strategy), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning("Query expansion hit the request deadline")
            return ExpandedQuery(
                original=query,
                strategy=strategy,
                failed=True,
                errors=("request deadline reached during expansion",),
            )

    def _top_k(self, documents: int, web: int) -> Dict[RetrievalSource, int]:
        fanout = self.config.fanout

        def scaled(count: int) -> int:
            wanted = int(round(count * fanout.oversample_factor))
            return min(fanout.max_top_k, max(fanout.min_top_k, wanted))

        return {
            RetrievalSource.SEMANTIC: scaled(documents),
            RetrievalSource.KEYWORD: scaled(documents),
            RetrievalSource.WEB: scaled(web),
        }

    def _empty(self, profile: QueryProfile, notices: List[DegradationNotice], **details) -> AssembledContext:
        context = AssembledContext(query_profile=profile, notices=list(notices))
        for name, value in details.items():
            setattr(context, name, value)
        return context
