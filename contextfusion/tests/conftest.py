"""Shared fixtures: a whitespace tokenizer and result builders."""

from datetime import datetime, timezone

import pytest


class WordCounter:
    """One token per whitespace-separated word; deterministic and tokenizer-free"""

    def count(self, text, model_encoding=None):
        return len((text or "").split())

    def truncate(self, text, max_tokens, model_encoding=None):
        if max_tokens <= 0:
            return ""
        return " ".join((text or "").split()[:max_tokens])


@pytest.fixture
def word_counter():
    return WordCounter()


@pytest.fixture
def now():
    return datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_result():
    from contextfusion.common.schemas import RetrievalResult, SourceType

    def _make(source_id, content, score=0.8, source_type=SourceType.DOCUMENT, **kwargs):
        return RetrievalResult(
            source_id=source_id,
            source_type=source_type,
            raw_score=score,
            content=content,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_scored(make_result):
    from contextfusion.common.schemas import ScoredResult

    def _make(source_id, content, combined=0.8, freshness=0.5, **kwargs):
        return ScoredResult(
            result=make_result(source_id, content, **kwargs),
            quality_score=0.5,
            authority_score=0.5,
            freshness_score=freshness,
            relevance_score=0.5,
            combined_score=combined,
        )

    return _make
