"""Tests for configuration loading, saving and validation."""

import json
import logging
import os
import stat
import pytest
from unittest.mock import patch

ENV_KEYS = (
    "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "OPENAI_API_KEY", "OPENAI_MODEL",
    "GOOGLE_API_KEY", "GEMINI_API_KEY", "GOOGLE_MODEL", "CONTEXTFUSION_LLM_PROVIDER",
    "CONTEXTFUSION_EXPANSION_STRATEGY", "CONTEXTFUSION_COMPRESSION_STRATEGY",
    "CONTEXTFUSION_MAX_CONTEXT_TOKENS", "CONTEXTFUSION_SOURCE_TIMEOUT", "CONTEXTFUSION_TOKEN_MODEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keys and overrides from the surrounding shell must not leak into loads"""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{}")
    return path


class TestDefaults:
    def test_engine_defaults(self):
        from contextfusion.common.config import EngineConfig
        cfg = EngineConfig()
        assert cfg.llm.provider == "anthropic"
        assert cfg.fanout.web_enabled is False
        assert cfg.compression.max_context_tokens == 8000
        assert cfg.threshold.type_thresholds["factual"] == 0.75
        assert cfg.diversity.lambda_ == 0.7

    def test_model_for(self):
        from contextfusion.common.config import LLMConfig
        cfg = LLMConfig(openai_model="gpt-test")
        assert cfg.model_for("openai") == "gpt-test"
        assert cfg.model_for("nope") == ""


class TestLoadConfig:
    def test_sections_from_file(self, config_file):
        from contextfusion.common.config import load_config
        config_file.write_text(json.dumps({
            "llm": {"provider": "openai", "openai_api_key": "sk-test"},
            "threshold": {"min_results": 1, "type_thresholds": {"factual": 0.8}},
            "diversity": {"lambda": 0.4, "max_per_domain": 2},
            "fanout": {"web_enabled": True},
        }))

        with patch("contextfusion.common.config.CONFIG_PATH", config_file):
            cfg = load_config()

        assert cfg.llm.provider == "openai"
        assert cfg.llm.openai_api_key == "sk-test"
        assert cfg.threshold.min_results == 1
        assert cfg.threshold.type_thresholds["factual"] == 0.8
        assert cfg.threshold.type_thresholds["conceptual"] == 0.65
        assert cfg.diversity.lambda_ == 0.4
        assert cfg.diversity.max_per_domain == 2
        assert cfg.fanout.web_enabled is True

    def test_unknown_keys_ignored_with_warning(self, config_file, caplog):
        from contextfusion.common.config import load_config
        config_file.write_text(json.dumps({"dedup": {"near_threshold": 0.9, "bogus": 1}}))

        with caplog.at_level(logging.WARNING, logger="contextfusion.common.config"), \
             patch("contextfusion.common.config.CONFIG_PATH", config_file):
            cfg = load_config()

        assert cfg.dedup.near_threshold == 0.9
        assert "Ignoring unknown dedup config keys" in caplog.text

    def test_malformed_file_falls_back_to_defaults(self, config_file, caplog):
        from contextfusion.common.config import load_config
        config_file.write_text("{not json")

        with caplog.at_level(logging.WARNING, logger="contextfusion.common.config"), \
             patch("contextfusion.common.config.CONFIG_PATH", config_file):
            cfg = load_config()

        assert cfg.compression.max_context_tokens == 8000
        assert "Failed to load config file" in caplog.text

    def test_env_vars_override_file(self, config_file):
        from contextfusion.common.config import load_config
        config_file.write_text(json.dumps({"compression": {"max_context_tokens": 6000}}))
        env = {
            "GEMINI_API_KEY": "g-env",
            "CONTEXTFUSION_LLM_PROVIDER": "google",
            "CONTEXTFUSION_MAX_CONTEXT_TOKENS": "4000",
            "CONTEXTFUSION_EXPANSION_STRATEGY": "synonym-table",
            "CONTEXTFUSION_SOURCE_TIMEOUT": "1.5",
        }

        with patch("contextfusion.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, env, clear=False):
            cfg = load_config()

        assert cfg.llm.provider == "google"
        assert cfg.llm.google_api_key == "g-env"
        assert cfg.compression.max_context_tokens == 4000
        assert cfg.expansion.strategy == "synonym-table"
        assert cfg.fanout.source_timeout_seconds == 1.5
        assert "google_api_key" in cfg._env_sourced_keys


class TestSaveConfig:
    def test_env_keys_blanked_and_mode_0600(self, tmp_path, config_file):
        from contextfusion.common.config import load_config, save_config
        out_dir = tmp_path / "saved"
        out_path = out_dir / "config.json"

        with patch("contextfusion.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env"}, clear=False):
            cfg = load_config()
        cfg.llm.anthropic_api_key = "sk-file"

        with patch("contextfusion.common.config.CONFIG_DIR", out_dir), \
             patch("contextfusion.common.config.CONFIG_PATH", out_path):
            save_config(cfg)

        data = json.loads(out_path.read_text())
        assert data["llm"]["openai_api_key"] == ""
        assert data["llm"]["anthropic_api_key"] == "sk-file"
        assert data["diversity"]["lambda"] == 0.7
        assert "lambda_" not in data["diversity"]
        assert stat.S_IMODE(out_path.stat().st_mode) == 0o600

    def test_saved_file_loads_back(self, tmp_path):
        from contextfusion.common.config import EngineConfig, load_config, save_config
        out_path = tmp_path / "config.json"
        cfg = EngineConfig()
        cfg.diversity.lambda_ = 0.55
        cfg.selector.max_documents = 12

        with patch("contextfusion.common.config.CONFIG_DIR", tmp_path), \
             patch("contextfusion.common.config.CONFIG_PATH", out_path):
            save_config(cfg)
            loaded = load_config()

        assert loaded.diversity.lambda_ == 0.55
        assert loaded.selector.max_documents == 12


class TestValidateConfig:
    def test_defaults_valid(self):
        from contextfusion.common.config import EngineConfig, validate_config
        validate_config(EngineConfig())

    @pytest.mark.parametrize("section,attr,value,match", [
        ("threshold", "min_threshold", 0.99, "min_threshold"),
        ("threshold", "percentile", 0.0, "percentile"),
        ("diversity", "lambda_", 1.5, "lambda"),
        ("compression", "max_concurrency", 5, "max_concurrency"),
        ("selector", "min_web", 50, "min_web"),
        ("authority", "min_authority_score", 0.2, "min_authority_score"),
    ])
    def test_contradictions_raise(self, section, attr, value, match):
        from contextfusion.common.config import EngineConfig, validate_config
        from contextfusion.common.errors import ConfigurationError
        cfg = EngineConfig()
        setattr(getattr(cfg, section), attr, value)

        with pytest.raises(ConfigurationError, match=match):
            validate_config(cfg)

    def test_configuration_error_is_value_error(self):
        from contextfusion.common.errors import ConfigurationError
        assert issubclass(ConfigurationError, ValueError)
