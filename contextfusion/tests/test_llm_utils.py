"""Tests for shared LLM response parsing utilities."""

import pytest
from contextfusion.common.llm_utils import parse_llm_json, parse_llm_list


class TestParseLlmJson:
    def test_valid_json(self):
        assert parse_llm_json('{"key": "value"}') == {"key": "value"}

    def test_json_with_markdown_fences(self):
        raw = '```json\n{"terms": ["pv"], "confidence": 0.7}\n```'
        assert parse_llm_json(raw) == {"terms": ["pv"], "confidence": 0.7}

    def test_json_embedded_in_text(self):
        raw = 'Here are the terms: {"key": "value"} hope this helps.'
        assert parse_llm_json(raw) == {"key": "value"}

    def test_no_json_returns_empty_dict(self):
        assert parse_llm_json("This is not JSON at all") == {}

    def test_empty_string_returns_empty_dict(self):
        assert parse_llm_json("") == {}

    def test_top_level_list_is_not_a_dict(self):
        assert parse_llm_json("[1, 2]") == {}


class TestParseLlmList:
    def test_comma_separated(self):
        raw = "solar power, photovoltaics, PV modules"
        assert parse_llm_list(raw) == ["solar power", "photovoltaics", "PV modules"]

    def test_bullets_and_numbers(self):
        raw = "- inverter\n* battery storage\n3. net metering"
        assert parse_llm_list(raw) == ["inverter", "battery storage", "net metering"]

    def test_json_array_with_repeats(self):
        assert parse_llm_list('["grid", "storage", "Grid"]') == ["grid", "storage"]

    def test_json_object_in_fences(self):
        raw = '```json\n{"terms": ["irradiance", "yield"]}\n```'
        assert parse_llm_list(raw) == ["irradiance", "yield"]

    def test_quotes_and_trailing_punctuation(self):
        raw = "\"solar\", 'wind', grid storage."
        assert parse_llm_list(raw) == ["solar", "wind", "grid storage"]

    @pytest.mark.parametrize("raw", ["", "   \n  "])
    def test_empty(self, raw):
        assert parse_llm_list(raw) == []

    def test_limit(self):
        assert parse_llm_list("a, b, c, d", limit=2) == ["a", "b"]
