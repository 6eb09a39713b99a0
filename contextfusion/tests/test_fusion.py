"""Tests for fusion and three-tier deduplication."""

import pytest

from contextfusion.common.config import DedupConfig
from contextfusion.common.schemas import SourceType
from contextfusion.retriever.fusion import Deduplicator, fuse
from contextfusion.retriever.searcher import FanoutResult, RetrievalSource, SourceOutcome


@pytest.fixture
def dedup():
    return Deduplicator(DedupConfig())


BASE_WORDS = " ".join(f"word{i}" for i in range(40))


class TestDeduplicator:
    def test_casing_variants_collapse_to_best(self, dedup, make_result):
        variants = [
            "Solar Energy Is Renewable.",
            "solar energy is renewable.",
            "SOLAR ENERGY IS RENEWABLE.",
            "Solar  energy   is renewable.",
            "solar Energy is Renewable.",
            "  solar energy is renewable.  ",
            "Solar energy is renewable.",
            "solar ENERGY is renewable.",
            "Solar energy IS renewable.",
            "solar energy is RENEWABLE.",
        ]
        scores = [0.5, 0.6, 0.7, 0.9, 0.4, 0.3, 0.8, 0.2, 0.1, 0.55]
        results = [make_result(f"r{i}", text, score) for i, (text, score) in enumerate(zip(variants, scores))]

        kept, report = dedup.deduplicate(results)

        assert len(kept) == 1
        assert kept[0].raw_score == 0.9
        assert report.exact_removed == 9
        assert report.groups[0].survivor_id == "r3"
        assert len(report.groups[0].member_ids) == 10

    def test_tie_prefers_document_over_keyword(self, dedup, make_result):
        results = [
            make_result("k1", "Identical body text", 0.8, source_type=SourceType.KEYWORD),
            make_result("d1", "Identical body text", 0.8, source_type=SourceType.DOCUMENT),
        ]

        kept, _ = dedup.deduplicate(results)

        assert [r.source_id for r in kept] == ["d1"]

    def test_near_duplicate_tier(self, dedup, make_result):
        variant = BASE_WORDS.replace("word7 ", "wordx ")
        results = [make_result("a", BASE_WORDS, 0.7), make_result("b", variant, 0.9)]

        kept, report = dedup.deduplicate(results)

        assert [r.source_id for r in kept] == ["b"]
        assert report.near_removed == 1
        assert report.groups[0].tier == "near"

    def test_similarity_tier(self, dedup, make_result):
        results = [
            make_result("a", "The quick brown fox jumps over the lazy dog.", 0.9),
            make_result("b", "The quick brown fox jumps over the lazy dog!", 0.8),
        ]

        kept, report = dedup.deduplicate(results)

        assert [r.source_id for r in kept] == ["a"]
        assert report.similar_removed == 1

    def test_similarity_tier_respects_threshold(self, make_result):
        strict = Deduplicator(DedupConfig(similarity_threshold=0.95))
        results = [
            make_result("a", "The quick brown fox jumps over the lazy dog.", 0.9),
            make_result("b", "The quick brown fox jumps over the lazy dog!", 0.8),
        ]

        kept, _ = strict.deduplicate(results)

        assert len(kept) == 2

    def test_distinct_results_kept_in_fusion_order(self, dedup, make_result):
        results = [
            make_result("low", "Photosynthesis converts light into chemical energy.", 0.3),
            make_result("high", "Tectonic plates move a few centimeters per year.", 0.95),
        ]

        kept, report = dedup.deduplicate(results)

        assert [r.source_id for r in kept] == ["low", "high"]
        assert report.removed == 0
        assert report.output_count == 2

    def test_empty_input(self, dedup):
        kept, report = dedup.deduplicate([])
        assert kept == []
        assert report.input_count == 0


def test_fuse_orders_by_source_priority(make_result):
    fanout = FanoutResult(outcomes=[
        SourceOutcome(RetrievalSource.WEB, [make_result("w", "web", source_type=SourceType.WEB)]),
        SourceOutcome(RetrievalSource.KEYWORD, [make_result("k", "kw", source_type=SourceType.KEYWORD)]),
        SourceOutcome(RetrievalSource.SEMANTIC, [make_result("d", "doc")]),
    ])

    assert [r.source_id for r in fuse(fanout)] == ["d", "k", "w"]
