"""
Tests for Searcher

Tests source adapters, request building and the parallel fan-out.
"""

import asyncio
from dataclasses import replace
from unittest.mock import Mock

import pytest

from contextfusion.common.errors import DegradationReason
from contextfusion.common.schemas import SourceType
from contextfusion.retriever.searcher import (
    KeywordSearchAdapter,
    RetrievalSource,
    Searcher,
    SemanticSearchAdapter,
    SourceAdapter,
    SourceRequest,
    WebSearchAdapter,
)


class StaticAdapter(SourceAdapter):
    """Adapter returning canned results after an optional delay"""

    def __init__(self, source, results=(), delay=0.0, error=None):
        self.source = source
        self.results = list(results)
        self.delay = delay
        self.error = error
        self.requests = []

    async def search(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.results


class TestSemanticAdapter:
    @pytest.mark.asyncio
    async def test_embeds_then_queries(self):
        embedding = Mock(spec=["embed"])
        embedding.embed.return_value = [0.1, 0.2]
        index = Mock(spec=["query"])
        index.query.return_value = [
            {"source_id": "d1", "raw_score": 0.9, "content": "Solar energy basics"},
        ]

        adapter = SemanticSearchAdapter(embedding, index, model="embed-small")
        results = await adapter.search(SourceRequest(query="solar", top_k=5))

        embedding.embed.assert_called_once_with("solar", "embed-small")
        index.query.assert_called_once_with([0.1, 0.2], 5, None)
        assert results[0].source_type == SourceType.DOCUMENT
        assert results[0].source_id == "d1"

    @pytest.mark.asyncio
    async def test_empty_embedding_is_unavailable(self):
        from contextfusion.common.errors import SourceUnavailable

        embedding = Mock(spec=["embed"])
        embedding.embed.return_value = []
        adapter = SemanticSearchAdapter(embedding, Mock(spec=["query"]))

        with pytest.raises(SourceUnavailable):
            await adapter.search(SourceRequest(query="solar", top_k=5))


class TestKeywordAdapter:
    @pytest.mark.asyncio
    async def test_bm25_normalized_by_batch_max(self):
        index = Mock(spec=["search"])
        index.search.return_value = [
            {"source_id": "k1", "content": "alpha", "bm25": 12.0},
            {"source_id": "k2", "content": "beta", "bm25": 6.0},
        ]

        results = await KeywordSearchAdapter(index).search(SourceRequest(query="alpha", top_k=10))

        assert [r.raw_score for r in results] == [1.0, 0.5]
        assert results[1].metadata["bm25"] == 6.0
        assert all(r.source_type == SourceType.KEYWORD for r in results)

    @pytest.mark.asyncio
    async def test_malformed_results_dropped(self):
        index = Mock(spec=["search"])
        index.search.return_value = [
            {"source_id": "k1", "content": "alpha", "bm25": 3.0},
            {"content": "no id", "bm25": 1.0},
        ]

        results = await KeywordSearchAdapter(index).search(SourceRequest(query="alpha", top_k=10))
        assert [r.source_id for r in results] == ["k1"]


class TestWebAdapter:
    @pytest.mark.asyncio
    async def test_options_merged(self):
        web = Mock(spec=["search"])
        web.search.return_value = [
            {"source_id": "w1", "raw_score": 0.7, "content": "news", "url": "https://reuters.com/a"},
        ]

        adapter = WebSearchAdapter(web, default_options={"region": "us"})
        request = SourceRequest(query="news", top_k=4, options={"web_options": {"freshness": "week"}})
        results = await adapter.search(request)

        web.search.assert_called_once_with(
            "news", {"region": "us", "freshness": "week", "max_results": 4}
        )
        assert results[0].source_type == SourceType.WEB

    @pytest.mark.asyncio
    async def test_collaborator_degraded_state_opens_circuit(self):
        from contextfusion.common.errors import SourceUnavailable

        web = Mock(spec=["search", "is_degraded"])
        web.is_degraded = True

        with pytest.raises(SourceUnavailable) as exc:
            await WebSearchAdapter(web).search(SourceRequest(query="news", top_k=4))
        assert exc.value.reason == DegradationReason.CIRCUIT_OPEN
        web.search.assert_not_called()


class TestBuildRequests:
    @pytest.fixture
    def profile(self):
        from contextfusion.retriever.query_processor import QueryAnalyzer
        profile = QueryAnalyzer().analyze("battery life")
        return replace(profile, expanded_terms=("cell longevity",))

    def test_keyword_query_gets_expansion_and_quoted_topic(self, profile):
        searcher = Searcher([
            StaticAdapter(RetrievalSource.SEMANTIC),
            StaticAdapter(RetrievalSource.KEYWORD),
        ])
        requests = searcher.build_requests(
            profile,
            [RetrievalSource.SEMANTIC, RetrievalSource.KEYWORD],
            {RetrievalSource.SEMANTIC: 8, RetrievalSource.KEYWORD: 6},
            topic="electric vehicles",
            topic_weight=0.9,
        )

        assert requests[RetrievalSource.SEMANTIC].query == "electric vehicles battery life"
        assert requests[RetrievalSource.KEYWORD].query == '"electric vehicles" battery life cell longevity'
        assert requests[RetrievalSource.SEMANTIC].top_k == 8

    def test_sources_without_adapter_are_skipped(self, profile):
        searcher = Searcher([StaticAdapter(RetrievalSource.KEYWORD)])
        requests = searcher.build_requests(
            profile, list(RetrievalSource), {s: 5 for s in RetrievalSource}
        )
        assert list(requests) == [RetrievalSource.KEYWORD]


class TestFanOut:
    def _requests(self, *sources):
        return {s: SourceRequest(query="q", top_k=5) for s in sources}

    @pytest.mark.asyncio
    async def test_failure_in_one_source_does_not_block_others(self, make_result):
        searcher = Searcher([
            StaticAdapter(RetrievalSource.SEMANTIC, [make_result("d1", "doc")]),
            StaticAdapter(RetrievalSource.WEB, error=RuntimeError("boom")),
        ])

        fanout = await searcher.fan_out(self._requests(RetrievalSource.SEMANTIC, RetrievalSource.WEB))

        assert [r.source_id for r in fanout.results] == ["d1"]
        assert len(fanout.notices) == 1
        assert fanout.notices[0].reason == DegradationReason.SOURCE_UNAVAILABLE
        assert fanout.notices[0].source == "web"
        assert not fanout.all_failed

    @pytest.mark.asyncio
    async def test_source_timeout(self, make_result):
        searcher = Searcher(
            [
                StaticAdapter(RetrievalSource.SEMANTIC, [make_result("d1", "doc")]),
                StaticAdapter(RetrievalSource.KEYWORD, delay=1.0),
            ],
            source_timeout=0.05,
        )

        fanout = await searcher.fan_out(self._requests(RetrievalSource.SEMANTIC, RetrievalSource.KEYWORD))

        reasons = {n.source: n.reason for n in fanout.notices}
        assert reasons == {"keyword": DegradationReason.SOURCE_TIMEOUT}

    @pytest.mark.asyncio
    async def test_request_deadline_cancels_pending(self, make_result):
        slow = StaticAdapter(RetrievalSource.WEB, delay=1.0)
        searcher = Searcher(
            [StaticAdapter(RetrievalSource.SEMANTIC, [make_result("d1", "doc")]), slow],
            source_timeout=5.0,
        )

        fanout = await searcher.fan_out(
            self._requests(RetrievalSource.SEMANTIC, RetrievalSource.WEB), deadline=0.05
        )

        assert [r.source_id for r in fanout.results] == ["d1"]
        assert fanout.notices[0].reason == DegradationReason.REQUEST_TIMEOUT

    @pytest.mark.asyncio
    async def test_results_in_source_priority_order(self, make_result):
        searcher = Searcher([
            StaticAdapter(RetrievalSource.WEB, [make_result("w1", "web", source_type=SourceType.WEB)]),
            StaticAdapter(RetrievalSource.SEMANTIC, [make_result("d1", "doc")], delay=0.02),
        ])

        fanout = await searcher.fan_out(self._requests(RetrievalSource.WEB, RetrievalSource.SEMANTIC))

        assert [r.source_id for r in fanout.results] == ["d1", "w1"]

    @pytest.mark.asyncio
    async def test_all_failed(self):
        searcher = Searcher([
            StaticAdapter(RetrievalSource.SEMANTIC, error=RuntimeError("down")),
            StaticAdapter(RetrievalSource.KEYWORD, error=RuntimeError("down")),
        ])

        fanout = await searcher.fan_out(self._requests(RetrievalSource.SEMANTIC, RetrievalSource.KEYWORD))

        assert fanout.all_failed
        assert fanout.results == []
