"""
Context Fusion Schemas

Retrieval results, request options and request-scoped decision records.
"""

from .retrieval import (
    SourceType,
    QueryType,
    ExpansionStrategy,
    CompressionStrategy,
    OrderingStrategy,
    SourcePreference,
    RetrievalResult,
    ScoredResult,
    RetrievalOptions,
    domain_of,
)
from .context import (
    IntentComplexity,
    TimeScope,
    ThresholdStrategy,
    QueryProfile,
    ScoreDistribution,
    ThresholdDecision,
    ContextBudget,
    ContextSelection,
    DedupGroup,
    DedupReport,
    CompressionStats,
    CitationLink,
    AssembledContext,
)

__all__ = [
    "SourceType",
    "QueryType",
    "ExpansionStrategy",
    "CompressionStrategy",
    "OrderingStrategy",
    "SourcePreference",
    "RetrievalResult",
    "ScoredResult",
    "RetrievalOptions",
    "domain_of",
    "IntentComplexity",
    "TimeScope",
    "ThresholdStrategy",
    "QueryProfile",
    "ScoreDistribution",
    "ThresholdDecision",
    "ContextBudget",
    "ContextSelection",
    "DedupGroup",
    "DedupReport",
    "CompressionStats",
    "CitationLink",
    "AssembledContext",
]
