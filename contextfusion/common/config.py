"""
Configuration Management for Context Fusion

Loads configuration from ~/.contextfusion/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields, asdict
from typing import Dict

from .errors import ConfigurationError

logger = logging.getLogger("contextfusion.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".contextfusion"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class LLMConfig:
    """Generation provider used for expansion, extraction and summarization"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-exp"

    def model_for(self, provider: str) -> str:
        return {
            "anthropic": self.anthropic_model,
            "openai": self.openai_model,
            "google": self.google_model,
        }.get(provider, "")


@dataclass
class TokenConfig:
    """Tokenizer selection for budget accounting"""
    model: str = "gpt-4o"
    encoding: str = ""  # overrides model lookup when set
    cache_size: int = 10000


@dataclass
class ExpansionConfig:
    """Query expansion"""
    strategy: str = "hybrid"
    max_terms: int = 5
    timeout_seconds: float = 3.0
    llm_max_tokens: int = 100
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 1000


@dataclass
class FanoutConfig:
    """Parallel retrieval fan-out"""
    semantic_enabled: bool = True
    keyword_enabled: bool = True
    web_enabled: bool = False
    source_timeout_seconds: float = 5.0
    oversample_factor: float = 2.0  # fetch more than the selector keeps
    min_top_k: int = 5
    max_top_k: int = 50
    embedding_model: str = ""


@dataclass
class DedupConfig:
    """Three-tier deduplication thresholds"""
    exact_threshold: float = 0.98
    near_threshold: float = 0.95
    similarity_threshold: float = 0.85


@dataclass
class QualityConfig:
    """Content quality scoring"""
    min_length: int = 50
    optimal_length: int = 500
    max_length: int = 5000
    min_words_per_sentence: int = 5
    max_words_per_sentence: int = 25
    min_sentences: int = 3
    min_word_count: int = 20
    optimal_word_count: int = 200
    length_weight: float = 0.25
    readability_weight: float = 0.30
    structure_weight: float = 0.25
    completeness_weight: float = 0.20


@dataclass
class AuthorityConfig:
    """Domain authority scoring"""
    default_authority: float = 0.5
    document_authority: float = 0.5
    min_authority_score: float = 0.5  # table matches at or above this are boosted
    high_authority_boost: float = 1.2
    low_authority_score: float = 0.3
    low_authority_penalty: float = 0.9
    table_path: str = ""  # optional JSON table merged over the built-in one
    custom_scores: Dict[str, float] = field(default_factory=dict)


@dataclass
class FreshnessConfig:
    """Publication-date freshness scoring"""
    yearly_decay: float = 0.8
    floor: float = 0.3
    undated_score: float = 0.5


@dataclass
class ThresholdConfig:
    """Adaptive score threshold"""
    default_threshold: float = 0.7
    min_threshold: float = 0.3
    max_threshold: float = 0.95
    percentile: float = 0.75
    use_distribution: bool = True
    min_distribution_size: int = 3
    step_down: float = 0.1
    step_up: float = 0.05
    min_results: int = 3
    max_results: int = 10
    type_thresholds: Dict[str, float] = field(default_factory=lambda: {
        "factual": 0.75,
        "conceptual": 0.65,
        "procedural": 0.70,
        "exploratory": 0.60,
        "analytical": 0.65,
        "comparative": 0.65,
        "unknown": 0.70,
    })


@dataclass
class RerankConfig:
    """Combined score weights"""
    relevance_weight: float = 0.4
    authority_weight: float = 0.2
    freshness_weight: float = 0.15
    quality_weight: float = 0.15
    original_weight: float = 0.1


@dataclass
class DiversityConfig:
    """MMR diversity filter"""
    enabled: bool = True
    lambda_: float = 0.7
    max_per_domain: int = 3


@dataclass
class SelectorConfig:
    """Adaptive context sizing"""
    min_documents: int = 3
    max_documents: int = 20
    default_documents: int = 5
    min_web: int = 2
    max_web: int = 10
    web_ratio: float = 0.8
    tokens_per_document: int = 300
    tokens_per_web: int = 400
    extra_item_tokens: int = 500
    refine_item_tokens: int = 350


@dataclass
class CompressionConfig:
    """Context compression"""
    strategy: str = "hybrid"
    max_context_tokens: int = 8000
    time_budget_seconds: float = 2.5
    max_concurrency: int = 3
    summary_max_tokens: int = 400
    max_key_points: int = 5
    min_item_tokens: int = 16
    no_gain_ratio: float = 0.9


@dataclass
class AssemblyConfig:
    """Final ordering and formatting"""
    ordering: str = "auto"
    include_metadata: bool = True


@dataclass
class EngineConfig:
    """Main Context Fusion configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)
    fanout: FanoutConfig = field(default_factory=FanoutConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    authority: AuthorityConfig = field(default_factory=AuthorityConfig)
    freshness: FreshnessConfig = field(default_factory=FreshnessConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    rerank: RerankConfig = field(default_factory=RerankConfig)
    diversity: DiversityConfig = field(default_factory=DiversityConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


# JSON section name (same as the EngineConfig attribute) -> dataclass
_SECTIONS = {
    "tokens": TokenConfig,
    "expansion": ExpansionConfig,
    "fanout": FanoutConfig,
    "dedup": DedupConfig,
    "quality": QualityConfig,
    "authority": AuthorityConfig,
    "freshness": FreshnessConfig,
    "threshold": ThresholdConfig,
    "rerank": RerankConfig,
    "diversity": DiversityConfig,
    "selector": SelectorConfig,
    "compression": CompressionConfig,
    "assembly": AssemblyConfig,
}


def _parse_section(data: dict, name: str, cls):
    """Parse one plain section, ignoring unknown keys"""
    section_data = data.get(name, {}) or {}
    known = {f.name for f in fields(cls)}
    # "lambda" is a keyword, stored as lambda_
    if "lambda" in section_data and "lambda_" in known:
        section_data = dict(section_data, lambda_=section_data["lambda"])
    values = {k: v for k, v in section_data.items() if k in known}
    unknown = set(section_data) - known - {"lambda"}
    if unknown:
        logger.warning("Ignoring unknown %s config keys: %s", name, sorted(unknown))
    section = cls(**values)
    if cls is ThresholdConfig and "type_thresholds" in values:
        merged = ThresholdConfig().type_thresholds
        merged.update(values["type_thresholds"])
        section.type_thresholds = merged
    return section


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {}) or {}
    return LLMConfig(
        provider=llm_data.get("provider", "anthropic"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-haiku-4-5-20251001"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.0-flash-exp"),
    )


def load_config() -> EngineConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.contextfusion/config.json)
    3. Default values
    """
    config = EngineConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            for name, cls in _SECTIONS.items():
                setattr(config, name, _parse_section(data, name, cls))
        except (json.JSONDecodeError, IOError, TypeError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    # LLM env var overrides (track env-sourced keys)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "CONTEXTFUSION_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("CONTEXTFUSION_EXPANSION_STRATEGY"):
        config.expansion.strategy = os.getenv("CONTEXTFUSION_EXPANSION_STRATEGY")
    if os.getenv("CONTEXTFUSION_COMPRESSION_STRATEGY"):
        config.compression.strategy = os.getenv("CONTEXTFUSION_COMPRESSION_STRATEGY")
    if os.getenv("CONTEXTFUSION_MAX_CONTEXT_TOKENS"):
        config.compression.max_context_tokens = int(os.getenv("CONTEXTFUSION_MAX_CONTEXT_TOKENS"))
    if os.getenv("CONTEXTFUSION_SOURCE_TIMEOUT"):
        config.fanout.source_timeout_seconds = float(os.getenv("CONTEXTFUSION_SOURCE_TIMEOUT"))
    if os.getenv("CONTEXTFUSION_TOKEN_MODEL"):
        config.tokens.model = os.getenv("CONTEXTFUSION_TOKEN_MODEL")

    return config


def save_config(config: EngineConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = asdict(config.llm)
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {"llm": llm_section}
    for name in _SECTIONS:
        section = asdict(getattr(config, name))
        if "lambda_" in section:
            section["lambda"] = section.pop("lambda_")
        data[name] = section

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def validate_config(config: EngineConfig) -> None:
    """Reject contradictory bounds. Raises ConfigurationError."""
    problems = []

    th = config.threshold
    if th.min_threshold > th.max_threshold:
        problems.append(
            f"threshold.min_threshold ({th.min_threshold}) > max_threshold ({th.max_threshold})"
        )
    if not 0.0 < th.percentile <= 1.0:
        problems.append(f"threshold.percentile must be in (0, 1], got {th.percentile}")
    if th.min_results > th.max_results:
        problems.append(
            f"threshold.min_results ({th.min_results}) > max_results ({th.max_results})"
        )
    if th.step_down <= 0 or th.step_up <= 0:
        problems.append("threshold steps must be positive")

    sel = config.selector
    if sel.min_documents > sel.max_documents:
        problems.append("selector.min_documents > selector.max_documents")
    if sel.min_web > sel.max_web:
        problems.append("selector.min_web > selector.max_web")

    dd = config.dedup
    if not 0.0 < dd.similarity_threshold <= 1.0 or not 0.0 < dd.near_threshold <= 1.0:
        problems.append("dedup thresholds must be in (0, 1]")

    if not 0.0 <= config.diversity.lambda_ <= 1.0:
        problems.append(f"diversity.lambda must be in [0, 1], got {config.diversity.lambda_}")
    if config.diversity.max_per_domain < 1:
        problems.append("diversity.max_per_domain must be >= 1")

    au = config.authority
    if au.low_authority_score > au.min_authority_score:
        problems.append(
            f"authority.low_authority_score ({au.low_authority_score}) > min_authority_score ({au.min_authority_score})"
        )

    comp = config.compression
    if comp.max_context_tokens <= 0:
        problems.append("compression.max_context_tokens must be positive")
    if not 1 <= comp.max_concurrency <= 3:
        problems.append("compression.max_concurrency must be between 1 and 3")

    if config.fanout.source_timeout_seconds <= 0:
        problems.append("fanout.source_timeout_seconds must be positive")

    if problems:
        for problem in problems:
            logger.error("Invalid configuration: %s", problem)
        raise ConfigurationError("; ".join(problems))
