"""
Query Expander

Produces related search terms through pluggable strategies:
- llm: generation provider lists related terms (confidence 0.8)
- synonym-table: static lookup, no I/O (confidence 0.6)
- hybrid: both concurrently, union of terms, mean confidence
- none: passthrough

Expansion never blocks retrieval: any failure yields the unexpanded query
with ``failed`` set. When there was nothing to run (no provider, no table
entries) ``skipped`` is set as well and the caller should not report it.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..common.errors import ExpansionFailed, ExpansionUnavailable
from ..common.expansion_cache import CachedExpansion, ExpansionCache
from ..common.llm_utils import parse_llm_list
from ..common.providers import call_collaborator
from ..common.schemas import ExpansionStrategy
from ..common.similarity import normalize_text

logger = logging.getLogger("contextfusion.retriever.query_expander")

LLM_CONFIDENCE = 0.8
SYNONYM_CONFIDENCE = 0.6


SYNONYM_TABLE: Dict[str, List[str]] = {
    "ai": ["artificial intelligence", "machine learning", "neural networks"],
    "ml": ["machine learning", "statistical learning", "predictive models"],
    "llm": ["large language model", "language model", "generative model"],
    "nlp": ["natural language processing", "text analysis", "computational linguistics"],
    "db": ["database", "data store"],
    "database": ["data store", "dbms", "storage engine"],
    "api": ["interface", "endpoint", "web service"],
    "auth": ["authentication", "authorization", "login"],
    "authentication": ["login", "sign-in", "identity verification"],
    "error": ["exception", "failure", "fault"],
    "bug": ["defect", "issue", "error"],
    "performance": ["speed", "latency", "throughput"],
    "security": ["protection", "vulnerability", "threat"],
    "cost": ["price", "expense", "pricing"],
    "learn": ["study", "understand", "master"],
    "help": ["assist", "support", "guide"],
    "create": ["make", "build", "generate"],
    "find": ["search", "locate", "discover"],
    "explain": ["describe", "clarify", "elaborate"],
    "fix": ["repair", "resolve", "troubleshoot"],
    "install": ["setup", "configure", "deploy"],
    "benefits": ["advantages", "pros", "value"],
    "risks": ["drawbacks", "dangers", "downsides"],
    "health": ["wellness", "medical", "wellbeing"],
    "climate": ["weather", "global warming", "environment"],
    "energy": ["power", "electricity", "fuel"],
    "photosynthesis": ["chlorophyll", "light reactions", "calvin cycle"],
}


@dataclass(frozen=True)
class ExpandedQuery:
    """Expansion outcome for one query"""
    original: str
    terms: Tuple[str, ...] = ()
    confidence: float = 1.0
    strategy: ExpansionStrategy = ExpansionStrategy.NONE
    cached: bool = False
    failed: bool = False
    skipped: bool = False
    errors: Tuple[str, ...] = field(default_factory=tuple)


class QueryExpander:
    """Strategy-based query expansion with a shared TTL cache"""

    EXPANSION_PROMPT = """Generate up to {count} search terms closely related to the query below.
Return only the terms as a single comma-separated line. Do not repeat words from the query.

Query: {query}

Terms:"""

    def __init__(
        self,
        generation=None,
        cache: Optional[ExpansionCache] = None,
        max_terms: int = 5,
        timeout: float = 3.0,
        llm_max_tokens: int = 100,
        synonyms: Optional[Dict[str, List[str]]] = None,
    ):
        """
        Args:
            generation: GenerationProvider, or None to disable the llm strategy
            cache: Shared ExpansionCache, or None for no caching
            max_terms: Maximum expansion terms returned
            timeout: Seconds allowed for one LLM expansion call
            llm_max_tokens: Generation budget for the term list
            synonyms: Replacement synonym table
        """
        self._generation = generation
        self._cache = cache
        self._max_terms = max_terms
        self._timeout = timeout
        self._llm_max_tokens = llm_max_tokens
        self._synonyms = synonyms if synonyms is not None else SYNONYM_TABLE

    async def expand(
        self,
        query: str,
        strategy: ExpansionStrategy = ExpansionStrategy.HYBRID,
    ) -> ExpandedQuery:
        """Expand ``query``. Never raises; failures return the bare query."""
        if strategy == ExpansionStrategy.NONE:
            return ExpandedQuery(original=query)

        key = ExpansionCache.make_key(query, strategy.value)
        if self._cache is not None:
            hit = self._cache.get(key)
            if hit is not None:
                logger.debug("Expansion cache hit for %r", query)
                return ExpandedQuery(
                    original=query,
                    terms=hit.terms,
                    confidence=hit.confidence,
                    strategy=strategy,
                    cached=True,
                )

        try:
            if strategy == ExpansionStrategy.LLM:
                terms, confidence = await self._expand_llm(query)
            elif strategy == ExpansionStrategy.SYNONYM_TABLE:
                terms, confidence = self._expand_synonyms(query)
            else:
                terms, confidence = await self._expand_hybrid(query)
        except ExpansionUnavailable as e:
            logger.debug("Query expansion (%s) skipped: %s", strategy.value, e)
            return ExpandedQuery(
                original=query,
                strategy=strategy,
                failed=True,
                skipped=True,
                errors=(str(e),),
            )
        except ExpansionFailed as e:
            logger.warning("Query expansion (%s) failed, using original query: %s", strategy.value, e)
            return ExpandedQuery(
                original=query,
                strategy=strategy,
                failed=True,
                errors=(str(e),),
            )

        terms = tuple(terms[:self._max_terms])
        if self._cache is not None:
            self._cache.put(key, CachedExpansion(terms=terms, confidence=confidence, strategy=strategy.value))

        logger.info("Expanded query with %d terms via %s", len(terms), strategy.value)
        return ExpandedQuery(original=query, terms=terms, confidence=confidence, strategy=strategy)

    async def _expand_llm(self, query: str) -> Tuple[List[str], float]:
        if self._generation is None or not getattr(self._generation, "is_available", True):
            raise ExpansionUnavailable("no generation provider available")

        prompt = self.EXPANSION_PROMPT.format(count=self._max_terms, query=query)
        try:
            raw = await asyncio.wait_for(
                call_collaborator(self._generation.complete, prompt, self._llm_max_tokens),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExpansionFailed(f"llm expansion timed out after {self._timeout}s") from e
        except Exception as e:
            raise ExpansionFailed(f"llm expansion error: {e}") from e

        terms = self._filter_terms(query, parse_llm_list(raw))
        if not terms:
            raise ExpansionFailed("llm returned no usable terms")
        return terms, LLM_CONFIDENCE

    def _expand_synonyms(self, query: str) -> Tuple[List[str], float]:
        normalized = normalize_text(query)
        words = re.findall(r"\b\w+\b", normalized)

        candidates: List[str] = []
        # Multi-word table keys match as phrases
        for key, synonyms in self._synonyms.items():
            if " " in key and key in normalized:
                candidates.extend(synonyms)
        for word in words:
            candidates.extend(self._synonyms.get(word, []))

        terms = self._filter_terms(query, candidates)
        if not terms:
            raise ExpansionUnavailable("no synonym table entries for query")
        return terms, SYNONYM_CONFIDENCE

    async def _expand_hybrid(self, query: str) -> Tuple[List[str], float]:
        async def synonyms():
            return self._expand_synonyms(query)

        outcomes = await asyncio.gather(
            self._expand_llm(query), synonyms(), return_exceptions=True
        )

        terms: List[str] = []
        confidences: List[float] = []
        errors: List[ExpansionFailed] = []
        for outcome in outcomes:
            if isinstance(outcome, ExpansionFailed):
                errors.append(outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            found, confidence = outcome
            terms.extend(found)
            confidences.append(confidence)

        if not confidences:
            message = "; ".join(str(e) for e in errors)
            if all(isinstance(e, ExpansionUnavailable) for e in errors):
                raise ExpansionUnavailable(message)
            raise ExpansionFailed(message)

        merged = list(dict.fromkeys(terms))
        return merged, sum(confidences) / len(confidences)

    def _filter_terms(self, query: str, candidates: List[str]) -> List[str]:
        """Drop terms already contained in the query, repeats and blanks"""
        normalized = normalize_text(query)
        query_words = set(re.findall(r"\b\w+\b", normalized))
        seen = set()
        terms = []
        for candidate in candidates:
            term = normalize_text(candidate)
            if not term or term in seen:
                continue
            if term in normalized or term in query_words:
                continue
            seen.add(term)
            terms.append(term)
            if len(terms) >= self._max_terms:
                break
        return terms
