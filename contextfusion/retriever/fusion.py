"""
Fusion & Deduplication

Merges fan-out results and removes duplicates in three tiers:
1. Exact: same content hash, confirmed by char similarity >= 0.98
2. Near-duplicate: 0.6 * charSim(LCS) + 0.4 * Jaccard >= 0.95
3. Similarity: same metric >= configured threshold (default 0.85)

The survivor of every duplicate pair is the higher-ranked result:
highest raw_score, then source priority (document > keyword > web), then
fusion order. Comparison is pairwise against survivors, so chains where
A~B and B~C but not A~C can keep both A and C.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.config import DedupConfig
from ..common.schemas import DedupGroup, DedupReport, RetrievalResult
from ..common.similarity import TextFingerprint
from .searcher import SOURCE_PRIORITY, FanoutResult

logger = logging.getLogger("contextfusion.retriever.fusion")


def fuse(fanout: FanoutResult) -> List[RetrievalResult]:
    """Merge per-source outcomes into one list in fusion order"""
    return fanout.results


def rank_key(result: RetrievalResult, fusion_index: int) -> Tuple[float, int, int]:
    """Sort key: best first"""
    return (-result.raw_score, SOURCE_PRIORITY[result.source_type], fusion_index)


class Deduplicator:
    """Three-tier duplicate removal over fused results"""

    def __init__(self, config: Optional[DedupConfig] = None):
        self.config = config or DedupConfig()

    def deduplicate(self, results: Sequence[RetrievalResult]) -> Tuple[List[RetrievalResult], DedupReport]:
        """
        Remove duplicates.

        Args:
            results: Results in fusion order

        Returns:
            (survivors in fusion order, DedupReport)
        """
        start = time.perf_counter()
        report = DedupReport(input_count=len(results))
        if not results:
            return [], report

        fingerprints = [TextFingerprint(r.content) for r in results]
        order = sorted(range(len(results)), key=lambda i: rank_key(results[i], i))
        pair_cache: Dict[Tuple[int, int], Tuple[float, bool]] = {}

        def similarity(i: int, j: int, floor: float) -> float:
            key = (i, j) if i < j else (j, i)
            cached = pair_cache.get(key)
            if cached is not None:
                value, exact = cached
                if exact or value < floor:
                    return value
            value, exact = fingerprints[i].combined_bounded(fingerprints[j], floor)
            pair_cache[key] = (value, exact)
            return value

        # Tier 1: exact (hash groups, confirmed by char similarity)
        survivors = self._exact_pass(order, results, fingerprints, report)
        report.exact_removed = len(order) - len(survivors)

        # Tier 2: near-duplicates
        near = self._similarity_pass(
            survivors, results, similarity, self.config.near_threshold, "near", report
        )
        report.near_removed = len(survivors) - len(near)

        # Tier 3: configurable similarity (skipped when not looser than tier 2)
        final = near
        if self.config.similarity_threshold < self.config.near_threshold:
            final = self._similarity_pass(
                near, results, similarity, self.config.similarity_threshold, "similar", report
            )
        report.similar_removed = len(near) - len(final)

        kept = [results[i] for i in sorted(final)]
        report.output_count = len(kept)
        report.elapsed_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "Dedup %d -> %d (exact=%d near=%d similar=%d) in %.1fms",
            report.input_count, report.output_count,
            report.exact_removed, report.near_removed, report.similar_removed,
            report.elapsed_ms,
        )
        return kept, report

    def _exact_pass(
        self,
        order: List[int],
        results: Sequence[RetrievalResult],
        fingerprints: List[TextFingerprint],
        report: DedupReport,
    ) -> List[int]:
        """Collapse hash-identical content; returns survivor indices in rank order"""
        kept: List[int] = []
        by_digest: Dict[str, List[int]] = {}
        groups: Dict[int, DedupGroup] = {}

        for idx in order:
            fp = fingerprints[idx]
            match = None
            for rep in by_digest.get(fp.digest, []):
                if fp.char_similarity(fingerprints[rep]) >= self.config.exact_threshold:
                    match = rep
                    break

            if match is None:
                by_digest.setdefault(fp.digest, []).append(idx)
                kept.append(idx)
                continue

            group = groups.get(match)
            if group is None:
                group = DedupGroup(
                    survivor_id=results[match].source_id,
                    member_ids=[results[match].source_id],
                    tier="exact",
                    similarity=1.0,
                )
                groups[match] = group
                report.groups.append(group)
            group.member_ids.append(results[idx].source_id)

        return kept

    def _similarity_pass(
        self,
        ranked: List[int],
        results: Sequence[RetrievalResult],
        similarity,
        threshold: float,
        tier: str,
        report: DedupReport,
    ) -> List[int]:
        """Greedy pass in rank order: drop anything too similar to a kept result"""
        kept: List[int] = []
        groups: Dict[int, DedupGroup] = {}

        for idx in ranked:
            best_rep, best_sim = None, 0.0
            for rep in kept:
                sim = similarity(idx, rep, threshold)
                if sim >= threshold and sim > best_sim:
                    best_rep, best_sim = rep, sim

            if best_rep is None:
                kept.append(idx)
                continue

            group = groups.get(best_rep)
            if group is None:
                group = DedupGroup(
                    survivor_id=results[best_rep].source_id,
                    member_ids=[results[best_rep].source_id],
                    tier=tier,
                    similarity=best_sim,
                )
                groups[best_rep] = group
                report.groups.append(group)
            group.member_ids.append(results[idx].source_id)
            group.similarity = min(group.similarity, best_sim)

            logger.debug(
                "Dropped %s as %s duplicate of %s (%.3f)",
                results[idx].source_id, tier, results[best_rep].source_id, best_sim,
            )

        return kept
