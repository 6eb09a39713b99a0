"""
Context Fusion

Retrieval fusion and context assembly for document/web question answering.

Pipeline:
- Query analysis and expansion
- Parallel semantic / keyword / web fan-out with per-source degradation
- Exact, near-duplicate and similarity-based deduplication
- Quality, authority and freshness scoring
- Adaptive score threshold, multi-factor re-ranking, MMR diversity
- Token-budgeted context sizing, compression and citation assembly

Usage:
    from contextfusion.common import load_config, TokenCounter
    from contextfusion.common.schemas import RetrievalResult, RetrievalOptions
    from contextfusion.retriever import ContextEngine
"""

__version__ = "0.1.0"
