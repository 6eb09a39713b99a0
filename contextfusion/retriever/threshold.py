"""
Adaptive Threshold Optimizer

Chooses the minimum combined score a result needs to survive.

1. Distribution: with enough initial scores, start from the configured
   percentile (p75), shifted by the query type's offset from the default
   threshold so stricter query types stay stricter.
2. Query type: otherwise use the per-type default table.
3. Fallback: too few survivors lowers the threshold in steps of 0.1,
   too many raises it in steps of 0.05, within [min, max].
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from ..common.config import ThresholdConfig
from ..common.schemas import (
    QueryType,
    ScoreDistribution,
    ScoredResult,
    ThresholdDecision,
    ThresholdStrategy,
)

logger = logging.getLogger("contextfusion.retriever.threshold")

PERCENTILES = (25, 50, 75, 90, 95)

# Standard deviation below which scores count as tightly clustered
TIGHT_STD = 0.1


def analyze_distribution(scores: Sequence[float]) -> Optional[ScoreDistribution]:
    """Mean, median, population stddev, extremes and p25-p95"""
    if len(scores) == 0:
        return None

    values = np.asarray(scores, dtype=float)
    percentiles = {
        p: float(np.percentile(values, p, method="lower")) for p in PERCENTILES
    }
    return ScoreDistribution(
        count=int(values.size),
        mean=float(values.mean()),
        median=float(np.median(values)),
        std_dev=float(values.std()),
        minimum=float(values.min()),
        maximum=float(values.max()),
        percentiles=percentiles,
    )


def count_survivors(scores: Sequence[float], threshold: float) -> int:
    return int(np.count_nonzero(np.asarray(scores, dtype=float) >= threshold))


class ThresholdOptimizer:
    """Per-request score cutoff"""

    def __init__(self, config: Optional[ThresholdConfig] = None):
        self.config = config or ThresholdConfig()

    def type_threshold(self, query_type: QueryType) -> float:
        table = self.config.type_thresholds
        return table.get(query_type.value, table.get("unknown", self.config.default_threshold))

    def compute(
        self,
        scores: Sequence[float],
        query_type: QueryType = QueryType.UNKNOWN,
        min_results: Optional[int] = None,
        max_results: Optional[int] = None,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        override: Optional[float] = None,
    ) -> ThresholdDecision:
        """
        Decide the cutoff for ``scores``.

        Args:
            scores: Combined scores of the initial result set
            query_type: Analyzed query type
            min_results / max_results: Survivor count targets
            min_threshold / max_threshold: Clamp bounds
            override: Fixed threshold, bypasses all computation

        Returns:
            ThresholdDecision with reasoning
        """
        cfg = self.config
        floor = cfg.min_threshold if min_threshold is None else min_threshold
        ceiling = cfg.max_threshold if max_threshold is None else max_threshold
        min_results = cfg.min_results if min_results is None else min_results
        max_results = cfg.max_results if max_results is None else max_results

        if override is not None:
            return ThresholdDecision(
                threshold=override,
                strategy=ThresholdStrategy.OVERRIDE,
                reasoning=f"fixed threshold {override:.3f} requested",
                query_type=query_type,
                distribution=analyze_distribution(scores),
            )

        type_default = self.type_threshold(query_type)
        distribution = None

        if cfg.use_distribution and len(scores) >= cfg.min_distribution_size:
            distribution = analyze_distribution(scores)
            base = float(np.percentile(np.asarray(scores, dtype=float), cfg.percentile * 100, method="lower"))
            offset = type_default - cfg.default_threshold
            threshold = base + offset
            reasoning = (
                f"p{int(round(cfg.percentile * 100))} of {distribution.count} scores = {base:.3f}, "
                f"{query_type.value} offset {offset:+.3f}"
            )
            if distribution.std_dev < TIGHT_STD and distribution.mean > 0.5:
                tight = distribution.mean - TIGHT_STD
                if tight > threshold:
                    threshold = tight
                    reasoning += f"; tight distribution, raised to mean-0.1 = {tight:.3f}"
            strategy = ThresholdStrategy.DISTRIBUTION
        else:
            threshold = type_default
            reasoning = f"{query_type.value} default {type_default:.3f}"
            strategy = ThresholdStrategy.QUERY_TYPE

        threshold = self._clamp(threshold, floor, ceiling)
        decision = ThresholdDecision(
            threshold=threshold,
            strategy=strategy,
            reasoning=reasoning,
            query_type=query_type,
            distribution=distribution,
        )

        if scores:
            decision = self._adjust(decision, scores, min_results, max_results, floor, ceiling)

        logger.info(
            "Threshold %.3f (%s): %s",
            decision.threshold, decision.strategy.value, decision.reasoning,
        )
        return decision

    def _adjust(
        self,
        decision: ThresholdDecision,
        scores: Sequence[float],
        min_results: int,
        max_results: int,
        floor: float,
        ceiling: float,
    ) -> ThresholdDecision:
        """Step toward the survivor-count targets, bounded by floor/ceiling"""
        cfg = self.config
        threshold = decision.threshold
        survivors = count_survivors(scores, threshold)
        steps: List[str] = []

        if survivors < min_results:
            while survivors < min_results and threshold > floor:
                threshold = self._clamp(round(threshold - cfg.step_down, 6), floor, ceiling)
                survivors = count_survivors(scores, threshold)
                steps.append(f"lowered to {threshold:.3f} ({survivors} survivors)")
        elif survivors > max_results:
            while survivors > max_results and threshold < ceiling:
                threshold = self._clamp(round(threshold + cfg.step_up, 6), floor, ceiling)
                survivors = count_survivors(scores, threshold)
                steps.append(f"raised to {threshold:.3f} ({survivors} survivors)")

        if not steps:
            return decision

        return replace(
            decision,
            threshold=threshold,
            strategy=ThresholdStrategy.FALLBACK,
            reasoning=f"{decision.reasoning}; fallback {steps[-1]}",
            adjustments=tuple(steps),
        )

    @staticmethod
    def _clamp(value: float, floor: float, ceiling: float) -> float:
        return min(ceiling, max(floor, value))

    @staticmethod
    def apply(items: Sequence[ScoredResult], decision: ThresholdDecision) -> List[ScoredResult]:
        """Keep items whose combined score reaches the threshold, order preserved"""
        return [item for item in items if item.score >= decision.threshold]
