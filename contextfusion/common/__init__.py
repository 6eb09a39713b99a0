"""
Context Fusion Common Module

Shared infrastructure: configuration, token accounting, text similarity,
collaborator contracts and the generation client.
"""

from .config import EngineConfig, load_config, validate_config
from .errors import ConfigurationError, DegradationNotice, DegradationReason
from .expansion_cache import ExpansionCache
from .llm_client import LLMClient
from .token_counter import TokenCounter

__all__ = [
    "EngineConfig",
    "load_config",
    "validate_config",
    "ConfigurationError",
    "DegradationNotice",
    "DegradationReason",
    "ExpansionCache",
    "LLMClient",
    "TokenCounter",
]
