"""
Collaborator Contracts

Abstract interfaces for the external services the engine consumes.
Implementations may define these methods either as plain functions or as
coroutines; the engine awaits coroutines and runs plain calls in a worker
thread so a blocking client never stalls the event loop.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from .schemas import RetrievalResult


class EmbeddingProvider(ABC):
    """Turns query text into a vector. Failure degrades the semantic source."""

    @abstractmethod
    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        pass


class VectorIndex(ABC):
    """ANN lookup returning document results with raw_score in [0, 1]."""

    @abstractmethod
    def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievalResult]:
        pass


class KeywordIndex(ABC):
    """Lexical (BM25-style) search.

    Implementations may return unnormalized scores in ``metadata["bm25"]``;
    the keyword adapter rescales them into raw_score.
    """

    @abstractmethod
    def search(self, query: str, top_k: int) -> List[RetrievalResult]:
        pass


class WebSearch(ABC):
    """Web search with optional published_at / author on results."""

    @abstractmethod
    def search(self, query: str, options: Optional[Dict[str, Any]] = None) -> List[RetrievalResult]:
        pass


class GenerationProvider(ABC):
    """Text generation used for expansion, extraction and summarization."""

    @abstractmethod
    def complete(self, prompt: str, max_tokens: int = 512) -> str:
        pass


async def call_collaborator(fn: Callable, *args, **kwargs):
    """Invoke a sync or async collaborator method without blocking the loop."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args, **kwargs)

    result = await asyncio.to_thread(fn, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
