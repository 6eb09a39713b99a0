"""
Quality, Authority and Freshness Scoring

Independent per-result sub-scores in [0, 1], attached as annotations on
ScoredResult. Each is O(1) or O(content length).
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..common.config import AuthorityConfig, FreshnessConfig, QualityConfig
from ..common.schemas import RetrievalResult, ScoredResult
from .domain_authority import DomainAuthorityTable

logger = logging.getLogger("contextfusion.retriever.scoring")

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_FORMAT_MARKERS = ("\n-", "\n*", "\n1.", "<h", "#", "\n•")


@dataclass(frozen=True)
class QualityBreakdown:
    """Quality sub-scores"""
    length: float
    readability: float
    structure: float
    completeness: float
    overall: float


class QualityScorer:
    """Content quality from length fit, readability, structure and completeness"""

    def __init__(self, config: Optional[QualityConfig] = None):
        self.config = config or QualityConfig()

    def score(self, result: RetrievalResult) -> QualityBreakdown:
        cfg = self.config
        content = result.content or ""
        words = content.split()
        sentences = [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]
        paragraphs = [p for p in _PARAGRAPH_SPLIT.split(content) if p.strip()]

        length = self.length_score(len(content))
        readability = self._readability(len(words), len(sentences))
        structure = self._structure(result.title, content, len(paragraphs))
        completeness = 0.6 * length + 0.4 * self._word_score(len(words))

        overall = (
            cfg.length_weight * length
            + cfg.readability_weight * readability
            + cfg.structure_weight * structure
            + cfg.completeness_weight * completeness
        )
        return QualityBreakdown(
            length=length,
            readability=readability,
            structure=structure,
            completeness=completeness,
            overall=min(1.0, max(0.0, overall)),
        )

    def length_score(self, length: int) -> float:
        """1.0 between min and optimal length, decaying on both sides"""
        cfg = self.config
        if length <= 0:
            return 0.0
        if length < cfg.min_length:
            return length / cfg.min_length
        if length <= cfg.optimal_length:
            return 1.0
        if length <= cfg.max_length:
            excess = length - cfg.optimal_length
            return 1.0 - min(0.3, excess / (cfg.max_length - cfg.optimal_length))
        excess = length - cfg.max_length
        return max(0.3, 1.0 - min(0.5, excess / cfg.max_length))

    def _readability(self, word_count: int, sentence_count: int) -> float:
        cfg = self.config
        if word_count == 0 or sentence_count == 0:
            return 0.0

        avg = word_count / sentence_count
        if avg < cfg.min_words_per_sentence:
            sentence_length = avg / cfg.min_words_per_sentence
        elif avg <= cfg.max_words_per_sentence:
            sentence_length = 1.0
        else:
            over = avg - cfg.max_words_per_sentence
            sentence_length = max(0.0, 1.0 - over / cfg.max_words_per_sentence)

        sentence_count_score = min(1.0, sentence_count / cfg.min_sentences)
        return 0.6 * sentence_length + 0.4 * sentence_count_score

    def _structure(self, title: str, content: str, paragraph_count: int) -> float:
        score = 0.0
        if title and title.strip() and title.strip().lower() != "untitled":
            score += 0.3
        score += 0.4 * min(1.0, paragraph_count / 2)
        if any(marker in content for marker in _FORMAT_MARKERS):
            score += 0.3
        elif paragraph_count > 1:
            score += 0.15
        return min(1.0, score)

    def _word_score(self, word_count: int) -> float:
        cfg = self.config
        if word_count < cfg.min_word_count:
            return 0.5 * word_count / cfg.min_word_count
        return min(1.0, word_count / cfg.optimal_word_count)


class AuthorityScorer:
    """Domain authority with high-trust boost and low-authority penalty"""

    def __init__(
        self,
        table: Optional[DomainAuthorityTable] = None,
        config: Optional[AuthorityConfig] = None,
    ):
        self.config = config or AuthorityConfig()
        self.table = table or DomainAuthorityTable(
            custom_scores=self.config.custom_scores,
            default_score=self.config.default_authority,
        )

    def score(self, result: RetrievalResult) -> float:
        if not result.url:
            return self.config.document_authority

        found = self.table.lookup(result.url)
        value = found.score
        cfg = self.config
        # Unknown domains keep the neutral default
        if found.is_match and value >= cfg.min_authority_score:
            value *= cfg.high_authority_boost
        elif value < cfg.low_authority_score:
            value *= cfg.low_authority_penalty
        return min(1.0, max(0.0, value))


class FreshnessScorer:
    """Age-based freshness: stepped within a year, geometric decay after"""

    STEPS = ((7, 1.0), (30, 0.9), (90, 0.8), (365, 0.7))

    def __init__(self, config: Optional[FreshnessConfig] = None):
        self.config = config or FreshnessConfig()

    def score(self, published_at: Optional[datetime], now: Optional[datetime] = None) -> float:
        cfg = self.config
        if published_at is None:
            return cfg.undated_score

        now = now or datetime.now(timezone.utc)
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        age_days = (now - published_at).total_seconds() / 86400
        if age_days < 0:
            # Future dates are suspect metadata
            return cfg.undated_score

        for limit, value in self.STEPS:
            if age_days <= limit:
                return value

        years_past = (age_days - 365) / 365
        return max(cfg.floor, self.STEPS[-1][1] * math.pow(cfg.yearly_decay, years_past))


class ResultScorer:
    """Attaches quality, authority and freshness annotations"""

    def __init__(
        self,
        quality: Optional[QualityScorer] = None,
        authority: Optional[AuthorityScorer] = None,
        freshness: Optional[FreshnessScorer] = None,
    ):
        self.quality = quality or QualityScorer()
        self.authority = authority or AuthorityScorer()
        self.freshness = freshness or FreshnessScorer()

    def score(
        self,
        results: Sequence[RetrievalResult],
        now: Optional[datetime] = None,
    ) -> List[ScoredResult]:
        now = now or datetime.now(timezone.utc)
        scored = []
        for result in results:
            quality = self.quality.score(result)
            item = ScoredResult(result=result).annotate(
                quality_score=round(quality.overall, 6),
                authority_score=round(self.authority.score(result), 6),
                freshness_score=round(self.freshness.score(result.published_at, now), 6),
            )
            logger.debug(
                "%s quality=%.3f authority=%.3f freshness=%.3f",
                result.source_id, item.quality_score, item.authority_score, item.freshness_score,
            )
            scored.append(item)
        return scored
