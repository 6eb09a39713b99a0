"""
Retriever - Retrieval Fusion and Context Assembly

Turns a user question into a ranked, deduplicated, token-bounded context
block with resolvable citations.

Key Components:
- QueryAnalyzer / QueryExpander: Query type, keywords, expansion terms
- Searcher: Parallel fan-out over semantic, keyword and web sources
- Deduplicator: Three-tier duplicate removal
- ResultScorer / ThresholdOptimizer / Reranker / DiversityFilter: Ranking
- AdaptiveContextSelector: Item counts under the token budget
- ContextCompressor: Truncation, extraction and summarization
- ContextAssembler: Ordering, formatting and citations

Pipeline:
1. Analyze and expand the query
2. Fan out to every enabled source with per-source timeouts
3. Fuse, deduplicate and score results
4. Cut at an adaptive threshold, re-rank, diversify
5. Size and compress to the budget
6. Assemble the context text and citation map
"""

from .assembler import ContextAssembler
from .citations import CitationLinker
from .compressor import ContextCompressor
from .context_selector import AdaptiveContextSelector
from .domain_authority import DomainAuthorityTable
from .engine import ContextEngine
from .fusion import Deduplicator
from .query_expander import ExpandedQuery, QueryExpander
from .query_processor import QueryAnalyzer
from .reranker import DiversityFilter, Reranker
from .scoring import ResultScorer
from .searcher import (
    KeywordSearchAdapter,
    RetrievalSource,
    Searcher,
    SemanticSearchAdapter,
    SourceAdapter,
    WebSearchAdapter,
)
from .threshold import ThresholdOptimizer

__all__ = [
    "ContextEngine",
    "QueryAnalyzer",
    "QueryExpander",
    "ExpandedQuery",
    "Searcher",
    "SourceAdapter",
    "SemanticSearchAdapter",
    "KeywordSearchAdapter",
    "WebSearchAdapter",
    "RetrievalSource",
    "Deduplicator",
    "ResultScorer",
    "DomainAuthorityTable",
    "ThresholdOptimizer",
    "Reranker",
    "DiversityFilter",
    "AdaptiveContextSelector",
    "ContextCompressor",
    "ContextAssembler",
    "CitationLinker",
]
