"""Tests for ordering, formatting and citation mapping."""

from datetime import datetime, timezone

import pytest

from contextfusion.common.config import AssemblyConfig
from contextfusion.common.errors import DegradationReason
from contextfusion.common.schemas import OrderingStrategy, SourceType
from contextfusion.retriever.assembler import ContextAssembler
from contextfusion.retriever.citations import CitationLinker, find_markers
from contextfusion.retriever.query_processor import QueryAnalyzer


@pytest.fixture
def assembler():
    return ContextAssembler(AssemblyConfig())


def dated(year):
    return datetime(year, 1, 1, tzinfo=timezone.utc)


class TestOrdering:
    def test_auto_uses_relevance_for_timeless_queries(self, assembler):
        profile = QueryAnalyzer().analyze("What is photosynthesis?")
        assert assembler.resolve_ordering(OrderingStrategy.AUTO, profile) == OrderingStrategy.RELEVANCE

    def test_auto_uses_hybrid_for_time_sensitive_queries(self, assembler):
        profile = QueryAnalyzer().analyze("latest solar panel news")
        assert assembler.resolve_ordering(OrderingStrategy.AUTO, profile) == OrderingStrategy.HYBRID

    def test_chronological_newest_first_undated_last(self, assembler, make_scored):
        items = [
            make_scored("old", "a", 0.9, published_at=dated(2015)),
            make_scored("undated", "b", 0.95),
            make_scored("new", "c", 0.5, published_at=dated(2024)),
        ]
        ordered = assembler.order(items, OrderingStrategy.CHRONOLOGICAL)
        assert [i.source_id for i in ordered] == ["new", "old", "undated"]

    def test_hybrid_blends_freshness(self, assembler, make_scored):
        items = [
            make_scored("stale", "a", 0.80, freshness=0.3),
            make_scored("fresh", "b", 0.75, freshness=1.0),
        ]
        ordered = assembler.order(items, OrderingStrategy.HYBRID)
        assert [i.source_id for i in ordered] == ["fresh", "stale"]

    def test_relevance_is_stable(self, assembler, make_scored):
        items = [make_scored("a", "x", 0.5), make_scored("b", "y", 0.5), make_scored("c", "z", 0.9)]
        ordered = assembler.order(items, OrderingStrategy.RELEVANCE)
        assert [i.source_id for i in ordered] == ["c", "a", "b"]


class TestAssemble:
    def test_citations_map_global_and_typed_ids(self, assembler, make_scored):
        items = [
            make_scored("doc-1", "Document body.", 0.9, title="Design notes"),
            make_scored("web-1", "Web body.", 0.8, title="News", source_type=SourceType.WEB,
                        url="https://reuters.com/article"),
        ]

        context = assembler.assemble(items, ordering=OrderingStrategy.RELEVANCE)

        assert context.citations == {
            "1": "doc-1",
            "Document 1": "doc-1",
            "2": "web-1",
            "Web Source 1": "web-1",
        }
        assert "[1] [Document 1] Design notes" in context.context_text
        assert "[2] [Web Source 1](https://reuters.com/article) News" in context.context_text
        assert context.context_text.startswith("Relevant Document Excerpts and Web Search Results:")
        assert context.dangling_citations == []
        assert not context.degraded

    def test_every_marker_resolves(self, assembler, make_scored):
        items = [make_scored(f"d{i}", f"Body {i}.", 0.9 - i / 10) for i in range(3)]
        context = assembler.assemble(items, ordering=OrderingStrategy.RELEVANCE)

        linker = CitationLinker(context.citations, context.items)
        links = linker.link(context.context_text)
        assert links
        assert all(not link.dangling for link in links)

    def test_dangling_marker_reported(self, assembler, make_scored):
        items = [make_scored("d1", "As shown in [Document 9], output rises.", 0.9)]

        context = assembler.assemble(items, ordering=OrderingStrategy.RELEVANCE)

        assert context.dangling_citations == ["[Document 9]"]
        assert context.notices[-1].reason == DegradationReason.DANGLING_CITATION
        assert not context.degraded

    def test_header_tokens_cover_everything_but_content(self, assembler, make_scored, word_counter):
        items = [
            make_scored("d1", "alpha beta gamma", 0.9, title="One", author="A. Writer"),
            make_scored("w1", "delta epsilon", 0.8, source_type=SourceType.WEB, url="https://nasa.gov/x"),
        ]
        ordered = assembler.order(items, OrderingStrategy.RELEVANCE)

        headers = assembler.header_tokens(ordered, word_counter.count)
        context = assembler.assemble(ordered, ordering=OrderingStrategy.RELEVANCE)

        content = sum(word_counter.count(i.content) for i in ordered)
        assert word_counter.count(context.context_text) <= headers + content

    def test_empty(self, assembler):
        context = assembler.assemble([])
        assert context.is_empty
        assert context.context_text == ""
        assert context.citations == {}

    def test_to_dict(self, assembler, make_scored):
        context = assembler.assemble([make_scored("d1", "Body.", 0.9)], ordering=OrderingStrategy.RELEVANCE)
        data = context.to_dict()
        assert data["citations"]["Document 1"] == "d1"
        assert data["items"][0]["source_type"] == "document"


class TestCitationMarkers:
    def test_find_markers(self):
        text = "See [Document 2], [Web Source 1](https://a.org/x), [Paper](document://doc-7) and [3]."
        assert find_markers(text) == [
            "[Document 2]",
            "[Web Source 1](https://a.org/x)",
            "[Paper](document://doc-7)",
            "[3]",
        ]

    def test_resolves_document_urls_and_titles(self, make_scored):
        items = [
            make_scored("s1", "x", title="Grid Study", document_id="doc-7"),
            make_scored("s2", "y", title="Wind Atlas", source_type=SourceType.WEB, url="https://atlas.org/wind"),
        ]
        linker = CitationLinker({"1": "s1"}, items)

        assert linker.source_for("[Anything](document://doc-7)") == "s1"
        assert linker.source_for("[Wind Atlas](https://atlas.org/wind/)") == "s2"
        assert linker.source_for("[1]") == "s1"
        assert linker.source_for("[2]") is None
