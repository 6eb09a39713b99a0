"""Tests for topic scoping."""

from contextfusion.common.schemas import QueryType
from contextfusion.retriever.topic_scoping import ScopingMethod, scope_query, topic_keywords


class TestScopeQuery:
    def test_no_topic_is_passthrough(self):
        scoped = scope_query("battery life", None)
        assert scoped.text == "battery life"
        assert scoped.method == ScopingMethod.NONE

    def test_overlap_appends_only_missing_keywords(self):
        scoped = scope_query("solar panel efficiency", "solar energy")
        assert scoped.text == "solar panel efficiency energy"
        assert scoped.method == ScopingMethod.KEYWORDS

    def test_topic_fully_present_is_not_repeated(self):
        scoped = scope_query("solar energy storage", "Solar Energy")
        assert scoped.text == "solar energy storage"
        assert scoped.method == ScopingMethod.NONE

    def test_short_topic_tokens_never_duplicated(self):
        scoped = scope_query("ai safety research", "AI")
        assert scoped.text == "ai safety research"

    def test_high_weight_prefixes_topic(self):
        scoped = scope_query("battery life", "electric vehicles", weight=0.8)
        assert scoped.text == "electric vehicles battery life"
        assert scoped.method == ScopingMethod.PREFIX

    def test_keyword_search_quotes_multiword_topic(self):
        scoped = scope_query("battery life", "electric vehicles", weight=0.8, quote_phrases=True)
        assert scoped.text == '"electric vehicles" battery life'

    def test_analytical_uses_context_template(self):
        scoped = scope_query("Why do batteries degrade?", "electric vehicles", QueryType.ANALYTICAL)
        assert scoped.text == "In the context of electric vehicles: Why do batteries degrade?"
        assert scoped.method == ScopingMethod.CONTEXT

    def test_factual_template(self):
        scoped = scope_query("What is the range?", "electric vehicles", QueryType.FACTUAL)
        assert scoped.text == "What is the range in electric vehicles"
        assert scoped.method == ScopingMethod.TEMPLATE

    def test_unknown_type_appends_topic(self):
        scoped = scope_query("charging speed", "electric vehicles", QueryType.UNKNOWN)
        assert scoped.text == "charging speed electric vehicles"
        assert scoped.method == ScopingMethod.KEYWORDS


def test_topic_keywords_skip_short_tokens():
    assert topic_keywords("AI in health care and health") == ["health", "care", "and"]
