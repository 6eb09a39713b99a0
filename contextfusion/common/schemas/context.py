"""
Request-scoped decision records and the assembled context.

Everything here lives for one request only. QueryProfile and
ThresholdDecision are frozen once created.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..errors import DegradationNotice, DegradationReason
from .retrieval import ExpansionStrategy, QueryType, ScoredResult


class IntentComplexity(str, Enum):
    """Coarse query complexity bucket"""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class TimeScope(str, Enum):
    """Time scope for queries"""
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    LAST_QUARTER = "last_quarter"
    LAST_YEAR = "last_year"
    ALL_TIME = "all_time"


class ThresholdStrategy(str, Enum):
    """How the score cutoff was chosen"""
    DISTRIBUTION = "distribution"
    QUERY_TYPE = "query-type"
    FALLBACK = "fallback"
    OVERRIDE = "override"


@dataclass(frozen=True)
class QueryProfile:
    """Analyzed query, one per request"""
    original_query: str
    normalized_query: str
    query_type: QueryType
    complexity_score: float
    intent_complexity: IntentComplexity
    keywords: Tuple[str, ...] = ()
    expanded_terms: Tuple[str, ...] = ()
    time_scope: TimeScope = TimeScope.ALL_TIME
    expansion_strategy: ExpansionStrategy = ExpansionStrategy.NONE
    expansion_confidence: float = 1.0

    @property
    def time_sensitive(self) -> bool:
        return self.time_scope != TimeScope.ALL_TIME

    @property
    def search_terms(self) -> Tuple[str, ...]:
        """Keywords followed by expansion terms, without repeats"""
        return tuple(dict.fromkeys(self.keywords + self.expanded_terms))


@dataclass(frozen=True)
class ScoreDistribution:
    """Summary statistics of a score list"""
    count: int
    mean: float
    median: float
    std_dev: float
    minimum: float
    maximum: float
    percentiles: Dict[int, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdDecision:
    """Chosen score cutoff with reasoning, one per request"""
    threshold: float
    strategy: ThresholdStrategy
    reasoning: str
    query_type: QueryType = QueryType.UNKNOWN
    distribution: Optional[ScoreDistribution] = None
    adjustments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextBudget:
    """Token budget for assembled context"""
    max_total_tokens: int
    reserved_for_history: int = 0
    reserved_for_system_prompt: int = 0
    per_item_estimate: int = 300

    @property
    def available_tokens(self) -> int:
        return max(
            0,
            self.max_total_tokens - self.reserved_for_history - self.reserved_for_system_prompt,
        )


@dataclass
class ContextSelection:
    """Per-source item counts chosen by the adaptive selector"""
    document_count: int
    web_count: int
    estimated_tokens: int
    reasoning: List[str] = field(default_factory=list)
    refined: bool = False

    @property
    def total(self) -> int:
        return self.document_count + self.web_count


@dataclass
class DedupGroup:
    """Cluster of duplicates collapsed into one survivor"""
    survivor_id: str
    member_ids: List[str]
    tier: str
    similarity: float


@dataclass
class DedupReport:
    """Outcome of the three dedup tiers"""
    input_count: int = 0
    output_count: int = 0
    exact_removed: int = 0
    near_removed: int = 0
    similar_removed: int = 0
    groups: List[DedupGroup] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def removed(self) -> int:
        return self.exact_removed + self.near_removed + self.similar_removed


@dataclass
class CompressionStats:
    """What compression did to the selected items"""
    strategy: str = "none"
    original_tokens: int = 0
    compressed_tokens: int = 0
    budget_tokens: int = 0
    methods: Dict[str, str] = field(default_factory=dict)
    dropped_ids: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def ratio(self) -> float:
        if self.original_tokens == 0:
            return 1.0
        return self.compressed_tokens / self.original_tokens


@dataclass
class CitationLink:
    """One in-text citation marker and the source it resolves to"""
    marker: str
    citation_id: str
    source_id: Optional[str] = None

    @property
    def dangling(self) -> bool:
        return self.source_id is None


@dataclass
class AssembledContext:
    """Terminal output of the engine"""
    items: List[ScoredResult] = field(default_factory=list)
    context_text: str = ""
    citations: Dict[str, str] = field(default_factory=dict)
    dangling_citations: List[str] = field(default_factory=list)
    notices: List[DegradationNotice] = field(default_factory=list)
    query_profile: Optional[QueryProfile] = None
    threshold: Optional[ThresholdDecision] = None
    selection: Optional[ContextSelection] = None
    dedup: Optional[DedupReport] = None
    compression: Optional[CompressionStats] = None
    total_tokens: int = 0

    @property
    def degraded(self) -> bool:
        return any(n.reason != DegradationReason.DANGLING_CITATION for n in self.notices)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def warnings(self) -> List[str]:
        """Human-readable partial-result warnings"""
        messages = []
        for notice in self.notices:
            prefix = f"{notice.source}: " if notice.source else ""
            messages.append(f"{prefix}{notice.reason.value} {notice.detail}".strip())
        return messages

    def to_dict(self) -> dict:
        return {
            "context": self.context_text,
            "citations": dict(self.citations),
            "dangling_citations": list(self.dangling_citations),
            "degraded": self.degraded,
            "notices": [n.to_dict() for n in self.notices],
            "total_tokens": self.total_tokens,
            "items": [
                {
                    "source_id": item.source_id,
                    "source_type": item.source_type.value,
                    "title": item.title,
                    "url": item.url,
                    "combined_score": item.combined_score,
                    "compression": item.compression_method,
                }
                for item in self.items
            ],
            "threshold": (
                {
                    "value": self.threshold.threshold,
                    "strategy": self.threshold.strategy.value,
                    "reasoning": self.threshold.reasoning,
                }
                if self.threshold else None
            ),
        }
