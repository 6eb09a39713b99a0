"""
Error taxonomy and degradation notices.

Only ConfigurationError escapes the engine. The other errors are raised at
collaborator boundaries and converted into DegradationNotice records on the
returned context.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DegradationReason(str, Enum):
    """Why part of a request ran in degraded mode"""
    SOURCE_UNAVAILABLE = "source_unavailable"
    SOURCE_TIMEOUT = "source_timeout"
    CIRCUIT_OPEN = "circuit_open"
    NO_RESULTS = "no_results"
    EXPANSION_FAILED = "expansion_failed"
    COMPRESSION_TIMEOUT = "compression_timeout"
    COMPRESSION_FAILED = "compression_failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    REQUEST_TIMEOUT = "request_timeout"
    DANGLING_CITATION = "dangling_citation"


@dataclass(frozen=True)
class DegradationNotice:
    """One degrade-and-continue event surfaced to the caller"""
    reason: DegradationReason
    source: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "source": self.source,
            "detail": self.detail,
        }


class ContextFusionError(Exception):
    """Base class for engine errors"""


class ConfigurationError(ContextFusionError, ValueError):
    """Invalid request or engine configuration. Raised before any collaborator call."""


class SourceUnavailable(ContextFusionError):
    """A retrieval source failed, timed out or reported itself degraded."""

    def __init__(
        self,
        source: str,
        message: str = "",
        reason: DegradationReason = DegradationReason.SOURCE_UNAVAILABLE,
    ):
        super().__init__(message or f"{source} source unavailable")
        self.source = source
        self.reason = reason


class ExpansionFailed(ContextFusionError):
    """Query expansion produced nothing usable."""


class ExpansionUnavailable(ExpansionFailed):
    """Expansion had nothing to run: no provider configured or no table entries."""


class CompressionTimeout(ContextFusionError):
    """The compression wall-clock budget expired."""


class BudgetExceededUnrecoverable(ContextFusionError):
    """Sentence-level truncation could not fit the token budget."""

    def __init__(self, total_tokens: int, budget: int):
        super().__init__(f"{total_tokens} tokens still exceed budget of {budget}")
        self.total_tokens = total_tokens
        self.budget = budget
