"""
Tests for ContextCompressor

Uses a whitespace tokenizer so budgets are exact word counts.
"""

import asyncio
from unittest.mock import Mock

import pytest

from contextfusion.common.config import CompressionConfig
from contextfusion.common.errors import DegradationReason
from contextfusion.common.schemas import CompressionStrategy
from contextfusion.retriever.compressor import ContextCompressor, allocate_budget


def long_text(sentences, tag="item"):
    return " ".join(f"Sentence {i} of {tag} describes one more fact here." for i in range(sentences))


def total_tokens(items, counter):
    return sum(counter.count(item.content) for item in items)


class TestAllocateBudget:
    def test_small_items_keep_size(self):
        assert allocate_budget([10, 100, 100], 60) == [10, 25, 25]

    def test_remainder_spread(self):
        targets = allocate_budget([7, 7, 7], 10)
        assert sum(targets) == 10
        assert max(targets) - min(targets) <= 1

    def test_everything_fits(self):
        assert allocate_budget([3, 4], 100) == [3, 4]


class TestTruncation:
    @pytest.fixture
    def compressor(self, word_counter):
        return ContextCompressor(token_counter=word_counter)

    def test_keeps_whole_sentences(self, compressor):
        text = "First sentence is here. Second sentence here. Third one is long enough."
        assert compressor.truncate(text, 8) == "First sentence is here. Second sentence here...."

    def test_within_budget_unchanged(self, compressor):
        assert compressor.truncate("short text", 5) == "short text"

    @pytest.mark.asyncio
    async def test_twenty_items_into_budget(self, compressor, make_scored, word_counter):
        items = [make_scored(f"d{i}", long_text(90, f"doc{i}"), 0.9 - i / 100) for i in range(20)]
        assert total_tokens(items, word_counter) > 15000

        outcome = await compressor.compress(items, 8000, strategy=CompressionStrategy.TRUNCATION)

        assert total_tokens(outcome.items, word_counter) <= 8000
        assert len(outcome.items) == 20
        assert outcome.stats.compressed_tokens <= 8000
        assert set(outcome.stats.methods.values()) == {"truncated"}
        assert all(i.compressed_content is not None for i in outcome.items)
        # originals untouched
        assert all(i.result.content.startswith("Sentence 0") for i in outcome.items)

    @pytest.mark.asyncio
    async def test_under_budget_passthrough(self, compressor, make_scored):
        items = [make_scored("a", "tiny content")]
        outcome = await compressor.compress(items, 100)

        assert outcome.items == items
        assert outcome.stats.strategy == "none"
        assert outcome.notices == []

    @pytest.mark.asyncio
    async def test_drops_lowest_ranked_when_budget_too_small(self, compressor, make_scored, word_counter):
        items = [make_scored(f"d{i}", long_text(5), 0.9 - i / 100) for i in range(10)]

        outcome = await compressor.compress(items, 50, strategy=CompressionStrategy.TRUNCATION)

        assert [i.source_id for i in outcome.items] == ["d0", "d1", "d2"]
        assert outcome.stats.dropped_ids == [f"d{i}" for i in range(3, 10)]
        assert outcome.notices[0].reason == DegradationReason.BUDGET_EXCEEDED
        assert total_tokens(outcome.items, word_counter) <= 50

    @pytest.mark.asyncio
    async def test_citation_markers_survive(self, word_counter, make_scored):
        compressor = ContextCompressor(
            token_counter=word_counter, config=CompressionConfig(min_item_tokens=1)
        )
        text = "First sentence is here. Second sentence here. Third cites [Document 2] here."
        outcome = await compressor.compress(
            [make_scored("a", text)], 8, strategy=CompressionStrategy.TRUNCATION
        )

        content = outcome.items[0].content
        assert "[Document 2]" in content
        assert word_counter.count(content) <= 8

    @pytest.mark.asyncio
    async def test_marker_without_room_is_reported(self, word_counter, make_scored, caplog):
        compressor = ContextCompressor(
            token_counter=word_counter, config=CompressionConfig(min_item_tokens=1)
        )
        text = "First sentence is here. Second cites [Document 2] here."

        with caplog.at_level("WARNING", logger="contextfusion.retriever.compressor"):
            outcome = await compressor.compress(
                [make_scored("a", text)], 3, strategy=CompressionStrategy.TRUNCATION
            )

        assert "[Document 2]" not in outcome.items[0].content
        lost = [n for n in outcome.notices if "citation markers" in n.detail]
        assert len(lost) == 1
        assert lost[0].reason == DegradationReason.BUDGET_EXCEEDED
        assert "[Document 2]" in lost[0].detail
        assert "No room to keep citation markers" in caplog.text


class TestLLMStrategies:
    def _generation(self, reply):
        generation = Mock()
        generation.is_available = True
        generation.complete.return_value = reply
        return generation

    @pytest.mark.asyncio
    async def test_summarization(self, word_counter, make_scored):
        generation = self._generation("Solar output depends on irradiance.")
        compressor = ContextCompressor(generation, word_counter)
        items = [make_scored("a", long_text(30)), make_scored("b", long_text(30))]

        outcome = await compressor.compress(items, 100, query="solar", strategy=CompressionStrategy.SUMMARIZATION)

        assert outcome.stats.methods == {"a": "summarized", "b": "summarized"}
        assert outcome.items[0].content == "Solar output depends on irradiance."
        assert generation.complete.call_count == 2

    @pytest.mark.asyncio
    async def test_extraction_formats_bullets(self, word_counter, make_scored):
        generation = self._generation("- panels convert light\n- inverters lose 3%")
        compressor = ContextCompressor(generation, word_counter)

        outcome = await compressor.compress(
            [make_scored("a", long_text(30))], 40, strategy=CompressionStrategy.EXTRACTION
        )

        assert outcome.items[0].content == "- panels convert light\n- inverters lose 3%"
        assert outcome.items[0].compression_method == "extracted"

    @pytest.mark.asyncio
    async def test_hybrid_no_gain_falls_back_to_truncation(self, word_counter, make_scored):
        original = long_text(30)
        compressor = ContextCompressor(self._generation(original), word_counter)

        outcome = await compressor.compress(
            [make_scored("a", original)], 50, strategy=CompressionStrategy.HYBRID
        )

        assert outcome.stats.methods["a"] == "truncated"
        assert word_counter.count(outcome.items[0].content) <= 50

    @pytest.mark.asyncio
    async def test_without_provider_truncates_with_notice(self, word_counter, make_scored):
        compressor = ContextCompressor(None, word_counter)

        outcome = await compressor.compress(
            [make_scored("a", long_text(30))], 50, strategy=CompressionStrategy.HYBRID
        )

        assert outcome.notices[0].reason == DegradationReason.COMPRESSION_FAILED
        assert word_counter.count(outcome.items[0].content) <= 50

    @pytest.mark.asyncio
    async def test_generation_error_truncates(self, word_counter, make_scored):
        generation = self._generation("")
        generation.complete.side_effect = RuntimeError("overloaded")
        compressor = ContextCompressor(generation, word_counter)

        outcome = await compressor.compress(
            [make_scored("a", long_text(30))], 50, strategy=CompressionStrategy.SUMMARIZATION
        )

        assert outcome.stats.methods["a"] == "truncated"
        assert any(n.reason == DegradationReason.COMPRESSION_FAILED for n in outcome.notices)

    @pytest.mark.asyncio
    async def test_time_budget_expiry_truncates(self, word_counter, make_scored):
        class SlowGeneration:
            is_available = True

            async def complete(self, prompt, max_tokens=512):
                await asyncio.sleep(1.0)
                return "too late"

        compressor = ContextCompressor(SlowGeneration(), word_counter)
        items = [make_scored(f"d{i}", long_text(30)) for i in range(3)]

        outcome = await compressor.compress(
            items, 90, strategy=CompressionStrategy.SUMMARIZATION, time_budget=0.05
        )

        assert any(n.reason == DegradationReason.COMPRESSION_TIMEOUT for n in outcome.notices)
        assert set(outcome.stats.methods.values()) == {"truncated"}
        assert total_tokens(outcome.items, word_counter) <= 90
