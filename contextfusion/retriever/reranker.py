"""
Re-ranker & Diversity Filter

combined = (w_r * relevance + w_a * authority + w_f * freshness
            + w_q * quality + w_o * raw_score) / sum(w)

Relevance is query-keyword overlap weighted toward title matches, with a
boost for exact phrase matches. Ranking is a stable descending sort, so
ties keep fusion order.

The diversity filter is MMR: each pick maximizes
lambda * combined - (1 - lambda) * max similarity to already-picked items,
subject to a per-domain cap.
"""

import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..common.config import DiversityConfig, RerankConfig
from ..common.schemas import QueryProfile, ScoredResult
from ..common.similarity import TextFingerprint, normalize_text

logger = logging.getLogger("contextfusion.retriever.reranker")

TITLE_WEIGHT = 0.6
CONTENT_WEIGHT = 0.4
PHRASE_BOOST = 0.2
EXPANSION_WEIGHT = 0.1


def _words(text: str) -> set:
    return set(re.findall(r"\b\w+\b", text.lower()))


class Reranker:
    """Relevance + combined score annotation and stable ranking"""

    def __init__(self, config: Optional[RerankConfig] = None):
        self.config = config or RerankConfig()

    def relevance(self, item: ScoredResult, profile: QueryProfile) -> float:
        """Keyword overlap in [0, 1], title-weighted, phrase-boosted"""
        keywords = [k for k in profile.keywords if len(k) >= 3]
        if not keywords:
            return 0.5

        title = item.title.lower()
        content = item.result.content.lower()
        title_words = _words(title)
        content_words = _words(content)

        title_hits = sum(1 for k in keywords if k in title_words)
        content_hits = sum(1 for k in keywords if k in content_words)
        score = (
            TITLE_WEIGHT * title_hits / len(keywords)
            + CONTENT_WEIGHT * content_hits / len(keywords)
        )

        phrase = " ".join(keywords)
        query_phrase = normalize_text(re.sub(r"[?!.]+$", "", profile.original_query))
        if len(keywords) > 1 and (phrase in title or phrase in content):
            score += PHRASE_BOOST
        elif query_phrase and len(query_phrase.split()) > 1 and query_phrase in normalize_text(content):
            score += PHRASE_BOOST

        if profile.expanded_terms:
            expansion_hits = sum(1 for t in profile.expanded_terms if t in content)
            score += (
                EXPANSION_WEIGHT
                * profile.expansion_confidence
                * expansion_hits / len(profile.expanded_terms)
            )

        return min(1.0, score)

    def combined(self, item: ScoredResult, relevance: float) -> float:
        cfg = self.config
        weights = (
            (cfg.relevance_weight, relevance),
            (cfg.authority_weight, item.authority_score or 0.0),
            (cfg.freshness_weight, item.freshness_score or 0.0),
            (cfg.quality_weight, item.quality_score or 0.0),
            (cfg.original_weight, item.raw_score),
        )
        total = sum(w for w, _ in weights)
        if total <= 0:
            return item.raw_score
        return sum(w * v for w, v in weights) / total

    def score(self, items: Sequence[ScoredResult], profile: QueryProfile) -> List[ScoredResult]:
        """Annotate relevance and combined scores, order unchanged"""
        scored = []
        for item in items:
            relevance = self.relevance(item, profile)
            combined = self.combined(item, relevance)
            scored.append(item.annotate(
                relevance_score=round(relevance, 6),
                combined_score=round(combined, 6),
            ))
        return scored

    @staticmethod
    def rank(items: Sequence[ScoredResult]) -> List[ScoredResult]:
        """Stable descending sort by combined score"""
        return sorted(items, key=lambda item: item.score, reverse=True)


class DiversityFilter:
    """MMR selection with per-domain caps"""

    def __init__(self, config: Optional[DiversityConfig] = None):
        self.config = config or DiversityConfig()

    def select(
        self,
        ranked: Sequence[ScoredResult],
        target: int,
        enabled: Optional[bool] = None,
        lambda_: Optional[float] = None,
        max_per_domain: Optional[int] = None,
    ) -> List[ScoredResult]:
        """
        Pick up to ``target`` items from ``ranked``.

        Args:
            ranked: Items sorted by combined score
            target: Number of items wanted
            enabled: Run MMR; False returns plain top-K
            lambda_: Relevance/diversity trade-off in [0, 1]
            max_per_domain: Cap per domain (or per document / source type)

        Returns:
            Selected items in pick order
        """
        enabled = self.config.enabled if enabled is None else enabled
        lam = self.config.lambda_ if lambda_ is None else lambda_
        cap = self.config.max_per_domain if max_per_domain is None else max_per_domain

        if target <= 0 or not ranked:
            return []
        if not enabled:
            return list(ranked[:target])

        fingerprints = [TextFingerprint(item.content) for item in ranked]
        remaining = list(range(len(ranked)))
        selected: List[int] = []
        per_domain: Counter = Counter()
        max_sim: Dict[int, float] = {i: 0.0 for i in remaining}

        while remaining and len(selected) < target:
            best, best_value = None, None
            for idx in remaining:
                if per_domain[ranked[idx].result.diversity_key] >= cap:
                    continue
                value = lam * ranked[idx].score - (1 - lam) * max_sim[idx]
                if best_value is None or value > best_value:
                    best, best_value = idx, value

            if best is None:
                logger.debug("Diversity pool exhausted by domain caps at %d items", len(selected))
                break

            selected.append(best)
            remaining.remove(best)
            per_domain[ranked[best].result.diversity_key] += 1
            for idx in remaining:
                sim = fingerprints[idx].jaccard(fingerprints[best])
                if sim > max_sim[idx]:
                    max_sim[idx] = sim

        logger.info(
            "Diversity filter kept %d of %d (lambda=%.2f, max_per_domain=%d)",
            len(selected), len(ranked), lam, cap,
        )
        return [ranked[i] for i in selected]
