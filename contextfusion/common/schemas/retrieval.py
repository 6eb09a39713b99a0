"""
Retrieval Schemas

Tagged result records shared by every pipeline stage, plus per-request options.

RetrievalResult is frozen: stages never rewrite it. Scores are attached as
separately named annotations on ScoredResult, and compression stores its
rewritten text beside the original instead of replacing it.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class SourceType(str, Enum):
    """Result source discriminant"""
    DOCUMENT = "document"
    KEYWORD = "keyword"
    WEB = "web"


class QueryType(str, Enum):
    """Query classification used for thresholds, sizing and topic scoping"""
    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    PROCEDURAL = "procedural"
    EXPLORATORY = "exploratory"
    ANALYTICAL = "analytical"
    COMPARATIVE = "comparative"
    UNKNOWN = "unknown"


class ExpansionStrategy(str, Enum):
    """How related query terms are produced"""
    LLM = "llm"
    SYNONYM_TABLE = "synonym-table"
    HYBRID = "hybrid"
    NONE = "none"


class CompressionStrategy(str, Enum):
    """How oversized context is shrunk"""
    TRUNCATION = "truncation"
    EXTRACTION = "extraction"
    SUMMARIZATION = "summarization"
    HYBRID = "hybrid"


class OrderingStrategy(str, Enum):
    """Final ordering of assembled items"""
    RELEVANCE = "relevance"
    CHRONOLOGICAL = "chronological"
    HYBRID = "hybrid"
    AUTO = "auto"


class SourcePreference(str, Enum):
    """Document/web balance preference for context sizing"""
    DOCUMENTS = "documents"
    WEB = "web"
    BALANCED = "balanced"


# ============================================================================
# Results
# ============================================================================

def domain_of(url: Optional[str]) -> Optional[str]:
    """Lowercased host without a leading ``www.``"""
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


class RetrievalResult(BaseModel):
    """One result from a retrieval source"""
    model_config = ConfigDict(frozen=True)

    source_id: str
    source_type: SourceType
    raw_score: float = Field(ge=0.0, le=1.0)
    content: str
    title: str = ""
    url: Optional[str] = None
    document_id: Optional[str] = None
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def domain(self) -> Optional[str]:
        return domain_of(self.url)

    @property
    def diversity_key(self) -> str:
        """Grouping key for per-domain / per-source caps"""
        domain = self.domain
        if domain:
            return domain
        if self.document_id:
            return f"document:{self.document_id}"
        return f"{self.source_type.value}:{self.source_id}"


SCORE_FIELDS = (
    "quality_score",
    "authority_score",
    "freshness_score",
    "relevance_score",
    "combined_score",
)


class ScoredResult(BaseModel):
    """A RetrievalResult with append-only score annotations"""
    model_config = ConfigDict(frozen=True)

    result: RetrievalResult
    quality_score: Optional[float] = None
    authority_score: Optional[float] = None
    freshness_score: Optional[float] = None
    relevance_score: Optional[float] = None
    combined_score: Optional[float] = None
    compressed_content: Optional[str] = None
    compression_method: Optional[str] = None

    def annotate(self, **scores: float) -> "ScoredResult":
        """Return a copy with new score annotations. Existing scores are never overwritten."""
        for name, value in scores.items():
            if name not in SCORE_FIELDS:
                raise ValueError(f"Unknown score annotation: {name}")
            if getattr(self, name) is not None:
                raise ValueError(f"{name} already set for {self.result.source_id}")
        return self.model_copy(update=scores)

    def with_compressed(self, text: str, method: str) -> "ScoredResult":
        return self.model_copy(update={"compressed_content": text, "compression_method": method})

    @property
    def content(self) -> str:
        """Compressed text when present, otherwise the original content"""
        if self.compressed_content is not None:
            return self.compressed_content
        return self.result.content

    @property
    def source_id(self) -> str:
        return self.result.source_id

    @property
    def source_type(self) -> SourceType:
        return self.result.source_type

    @property
    def raw_score(self) -> float:
        return self.result.raw_score

    @property
    def title(self) -> str:
        return self.result.title

    @property
    def url(self) -> Optional[str]:
        return self.result.url

    @property
    def is_web(self) -> bool:
        return self.result.source_type == SourceType.WEB

    @property
    def score(self) -> float:
        """Best available ranking score"""
        if self.combined_score is not None:
            return self.combined_score
        return self.result.raw_score


# ============================================================================
# Request options
# ============================================================================

class RetrievalOptions(BaseModel):
    """Per-request options for ContextEngine.retrieve_context"""
    # Sources (None falls back to config)
    use_semantic: Optional[bool] = None
    use_keyword: Optional[bool] = None
    use_web: Optional[bool] = None
    vector_filter: Dict[str, Any] = Field(default_factory=dict)
    web_options: Dict[str, Any] = Field(default_factory=dict)

    # Topic scoping
    topic: Optional[str] = None
    topic_weight: float = Field(ge=0.0, le=1.0, default=0.5)

    # Token budget
    max_total_tokens: Optional[int] = Field(default=None, gt=0)
    reserved_for_history: int = Field(ge=0, default=0)
    reserved_for_system_prompt: int = Field(ge=0, default=0)

    # Ranking
    diversity_enabled: Optional[bool] = None
    diversity_lambda: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_per_domain: Optional[int] = Field(default=None, ge=1)
    ordering: OrderingStrategy = OrderingStrategy.AUTO
    prefer: SourcePreference = SourcePreference.BALANCED

    # Strategies
    expansion_strategy: Optional[ExpansionStrategy] = None
    compression_strategy: Optional[CompressionStrategy] = None

    # Threshold and result counts
    min_results: Optional[int] = Field(default=None, ge=0)
    max_results: Optional[int] = Field(default=None, ge=1)
    threshold_override: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    min_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    # Deadline for the whole request
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
