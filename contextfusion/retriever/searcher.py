"""
Searcher

Parallel retrieval fan-out over semantic, keyword and web sources.

Each source runs as its own task with a bounded timeout and reports an
explicit SourceOutcome: either results or a degradation reason. A slow or
failing source never blocks the others, and nothing here raises for a
source failure.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..common.errors import DegradationNotice, DegradationReason, SourceUnavailable
from ..common.providers import call_collaborator
from ..common.schemas import QueryProfile, RetrievalResult, SourceType
from .topic_scoping import ScopedQuery, scope_query

logger = logging.getLogger("contextfusion.retriever.searcher")


class RetrievalSource(str, Enum):
    """Fan-out sources, declared in tie-break priority order"""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    WEB = "web"

    @property
    def priority(self) -> int:
        """Lower is preferred when scores tie"""
        return list(RetrievalSource).index(self)

    @property
    def source_type(self) -> SourceType:
        return {
            RetrievalSource.SEMANTIC: SourceType.DOCUMENT,
            RetrievalSource.KEYWORD: SourceType.KEYWORD,
            RetrievalSource.WEB: SourceType.WEB,
        }[self]


SOURCE_PRIORITY = {
    SourceType.DOCUMENT: 0,
    SourceType.KEYWORD: 1,
    SourceType.WEB: 2,
}


@dataclass
class SourceRequest:
    """What one adapter is asked for"""
    query: str
    top_k: int
    options: Dict[str, Any] = field(default_factory=dict)
    scoping: Optional[ScopedQuery] = None


@dataclass
class SourceOutcome:
    """Per-source result: results, or a degradation reason"""
    source: RetrievalSource
    results: List[RetrievalResult] = field(default_factory=list)
    reason: Optional[DegradationReason] = None
    detail: str = ""
    elapsed_ms: float = 0.0
    query: str = ""

    @property
    def degraded(self) -> bool:
        return self.reason is not None

    def notice(self) -> Optional[DegradationNotice]:
        if self.reason is None:
            return None
        return DegradationNotice(reason=self.reason, source=self.source.value, detail=self.detail)


@dataclass
class FanoutResult:
    """Outcomes of one fan-out, in source priority order"""
    outcomes: List[SourceOutcome] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def results(self) -> List[RetrievalResult]:
        """All results in fusion order: source priority, then adapter order"""
        merged = []
        for outcome in sorted(self.outcomes, key=lambda o: o.source.priority):
            merged.extend(outcome.results)
        return merged

    @property
    def notices(self) -> List[DegradationNotice]:
        return [o.notice() for o in self.outcomes if o.degraded]

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and all(o.degraded for o in self.outcomes)


# ============================================================================
# Adapters
# ============================================================================

def _raise_if_degraded(collaborator, source: RetrievalSource) -> None:
    """Honor a collaborator-reported degraded state (e.g. circuit open)"""
    flag = getattr(collaborator, "is_degraded", False)
    if callable(flag):
        flag = flag()
    if flag is True:
        raise SourceUnavailable(
            source.value, f"{source.value} collaborator reports degraded", DegradationReason.CIRCUIT_OPEN
        )


def coerce_results(items: Iterable[Any], source_type: SourceType) -> List[RetrievalResult]:
    """Validate collaborator output and tag it with ``source_type``"""
    results = []
    for item in items or []:
        try:
            if isinstance(item, RetrievalResult):
                result = item
            else:
                result = RetrievalResult.model_validate(dict(item, source_type=source_type))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Dropping malformed %s result: %s", source_type.value, e)
            continue
        if result.source_type != source_type:
            result = result.model_copy(update={"source_type": source_type})
        results.append(result)
    return results


class SourceAdapter(ABC):
    """One retrieval source behind the fan-out"""

    source: RetrievalSource

    @abstractmethod
    async def search(self, request: SourceRequest) -> List[RetrievalResult]:
        """Return results with raw_score in [0, 1]. May raise SourceUnavailable."""
        pass


class SemanticSearchAdapter(SourceAdapter):
    """Embedding + vector index lookup"""

    source = RetrievalSource.SEMANTIC

    def __init__(self, embedding_provider, vector_index, model: Optional[str] = None):
        self._embedding = embedding_provider
        self._index = vector_index
        self._model = model or None

    async def search(self, request: SourceRequest) -> List[RetrievalResult]:
        _raise_if_degraded(self._embedding, self.source)
        _raise_if_degraded(self._index, self.source)

        vector = await call_collaborator(self._embedding.embed, request.query, self._model)
        if vector is None or len(vector) == 0:
            raise SourceUnavailable(self.source.value, "embedding provider returned no vector")

        filter_ = request.options.get("vector_filter") or None
        raw = await call_collaborator(self._index.query, vector, request.top_k, filter_)
        return coerce_results(raw, SourceType.DOCUMENT)[:request.top_k]


class KeywordSearchAdapter(SourceAdapter):
    """
    Lexical index lookup.

    BM25 scores are unbounded, so each batch is rescaled by its maximum.
    The unscaled value is read from ``metadata["bm25"]`` (or a ``bm25`` /
    ``score`` key on dict results) and kept in metadata.
    """

    source = RetrievalSource.KEYWORD

    def __init__(self, keyword_index):
        self._index = keyword_index

    async def search(self, request: SourceRequest) -> List[RetrievalResult]:
        _raise_if_degraded(self._index, self.source)

        raw = await call_collaborator(self._index.search, request.query, request.top_k)

        prepared = []
        for item in raw or []:
            if isinstance(item, RetrievalResult):
                bm25 = float(item.metadata.get("bm25", item.raw_score))
                prepared.append((item, bm25))
                continue
            data = dict(item)
            bm25 = float(data.pop("bm25", data.pop("score", data.get("raw_score", 0.0))) or 0.0)
            data["raw_score"] = 0.0
            data["metadata"] = dict(data.get("metadata") or {}, bm25=bm25)
            prepared.append((data, bm25))

        if not prepared:
            return []

        top = max(bm25 for _, bm25 in prepared)
        items = []
        for item, bm25 in prepared:
            score = bm25 / top if top > 0 else 0.0
            score = min(1.0, max(0.0, score))
            if isinstance(item, RetrievalResult):
                metadata = dict(item.metadata, bm25=bm25)
                items.append(item.model_copy(update={"raw_score": score, "metadata": metadata}))
            else:
                items.append(dict(item, raw_score=score))

        return coerce_results(items, SourceType.KEYWORD)[:request.top_k]


class WebSearchAdapter(SourceAdapter):
    """Web search collaborator"""

    source = RetrievalSource.WEB

    def __init__(self, web_search, default_options: Optional[Dict[str, Any]] = None):
        self._web = web_search
        self._default_options = dict(default_options or {})

    async def search(self, request: SourceRequest) -> List[RetrievalResult]:
        _raise_if_degraded(self._web, self.source)

        options = dict(self._default_options)
        options.update(request.options.get("web_options") or {})
        options.setdefault("max_results", request.top_k)

        raw = await call_collaborator(self._web.search, request.query, options)
        return coerce_results(raw, SourceType.WEB)[:request.top_k]


# ============================================================================
# Fan-out
# ============================================================================

class Searcher:
    """
    Runs enabled adapters concurrently.

    Features:
    - Topic scoping per source (multi-word topics quoted for keyword search)
    - Expansion terms appended to the keyword query
    - Per-source timeout, all-complete-or-degrade join
    - Optional request deadline; unfinished sources are cancelled
    """

    def __init__(self, adapters: Iterable[SourceAdapter], source_timeout: float = 5.0):
        """
        Initialize searcher.

        Args:
            adapters: Source adapters, at most one per RetrievalSource
            source_timeout: Seconds allowed for each source
        """
        self._adapters: Dict[RetrievalSource, SourceAdapter] = {}
        for adapter in adapters:
            self._adapters[adapter.source] = adapter
        self._timeout = source_timeout

    @property
    def sources(self) -> List[RetrievalSource]:
        return sorted(self._adapters, key=lambda s: s.priority)

    def build_requests(
        self,
        profile: QueryProfile,
        enabled: Iterable[RetrievalSource],
        top_k: Dict[RetrievalSource, int],
        topic: Optional[str] = None,
        topic_weight: float = 0.5,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[RetrievalSource, SourceRequest]:
        """Per-source query text and limits"""
        options = options or {}
        requests = {}
        for source in enabled:
            if source not in self._adapters:
                logger.debug("No adapter configured for %s, skipping", source.value)
                continue

            scoped = scope_query(
                profile.original_query,
                topic,
                profile.query_type,
                topic_weight,
                quote_phrases=(source == RetrievalSource.KEYWORD),
            )
            text = scoped.text
            if source == RetrievalSource.KEYWORD and profile.expanded_terms:
                text = " ".join([text, *profile.expanded_terms])

            requests[source] = SourceRequest(
                query=text,
                top_k=top_k.get(source, 10),
                options=options,
                scoping=scoped,
            )
        return requests

    async def fan_out(
        self,
        requests: Dict[RetrievalSource, SourceRequest],
        deadline: Optional[float] = None,
    ) -> FanoutResult:
        """
        Query all requested sources concurrently.

        Args:
            requests: Per-source requests from build_requests
            deadline: Seconds left for the whole request, or None

        Returns:
            FanoutResult with one outcome per requested source
        """
        start = time.perf_counter()
        ordered = sorted(requests.items(), key=lambda kv: kv[0].priority)
        tasks = {
            source: asyncio.create_task(self._run_source(source, request))
            for source, request in ordered
        }

        if not tasks:
            return FanoutResult()

        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes = []
        for source, task in tasks.items():
            if task in done:
                outcomes.append(task.result())
            else:
                logger.warning("%s source cancelled at request deadline", source.value)
                outcomes.append(SourceOutcome(
                    source=source,
                    reason=DegradationReason.REQUEST_TIMEOUT,
                    detail=f"cancelled after request deadline of {deadline}s",
                    query=requests[source].query,
                ))

        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            "Fan-out finished in %.1fms: %s",
            elapsed,
            ", ".join(
                f"{o.source.value}={'degraded' if o.degraded else len(o.results)}"
                for o in outcomes
            ),
        )
        return FanoutResult(outcomes=outcomes, elapsed_ms=elapsed)

    async def _run_source(self, source: RetrievalSource, request: SourceRequest) -> SourceOutcome:
        """Run one adapter; every failure becomes a degraded outcome"""
        adapter = self._adapters[source]
        start = time.perf_counter()

        def _elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            results = await asyncio.wait_for(adapter.search(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s source timed out after %.1fs", source.value, self._timeout)
            return SourceOutcome(
                source=source,
                reason=DegradationReason.SOURCE_TIMEOUT,
                detail=f"no response within {self._timeout}s",
                elapsed_ms=_elapsed(),
                query=request.query,
            )
        except SourceUnavailable as e:
            logger.warning("%s source unavailable: %s", source.value, e)
            return SourceOutcome(
                source=source, reason=e.reason, detail=str(e), elapsed_ms=_elapsed(), query=request.query
            )
        except Exception as e:
            logger.warning("%s source failed: %s", source.value, e, exc_info=True)
            return SourceOutcome(
                source=source,
                reason=DegradationReason.SOURCE_UNAVAILABLE,
                detail=f"{type(e).__name__}: {e}",
                elapsed_ms=_elapsed(),
                query=request.query,
            )

        return SourceOutcome(source=source, results=results, elapsed_ms=_elapsed(), query=request.query)
