"""
Token Accounting

Exact token counts per model encoding via tiktoken, with a bounded
per-string cache shared across requests.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Dict, Iterable, Optional, Tuple

import tiktoken

logger = logging.getLogger("contextfusion.common.token_counter")

DEFAULT_MODEL = "gpt-4o"
DEFAULT_ENCODING = "o200k_base"

KNOWN_ENCODINGS = (
    "o200k_base",
    "cl100k_base",
    "p50k_base",
    "p50k_edit",
    "r50k_base",
    "gpt2",
)


class TokenCounter:
    """
    Counts and truncates text by model tokens.

    ``model_encoding`` arguments accept either an encoding name
    (``"cl100k_base"``) or a model name (``"gpt-4o-mini"``). Unknown models
    fall back to the default encoding with a warning.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        encoding_name: Optional[str] = None,
        cache_size: int = 10000,
    ):
        self._default_key = encoding_name or model
        self._cache_size = cache_size
        self._encodings: Dict[str, object] = {}
        self._cache: "OrderedDict[Tuple[str, str], int]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _encoding(self, model_encoding: Optional[str] = None):
        key = model_encoding or self._default_key
        encoding = self._encodings.get(key)
        if encoding is not None:
            return encoding

        if key in KNOWN_ENCODINGS:
            encoding = tiktoken.get_encoding(key)
        else:
            try:
                encoding = tiktoken.encoding_for_model(key)
            except KeyError:
                logger.warning(
                    "No tokenizer registered for model %s, using %s", key, DEFAULT_ENCODING
                )
                encoding = tiktoken.get_encoding(DEFAULT_ENCODING)

        with self._lock:
            self._encodings[key] = encoding
        return encoding

    def encoding_name(self, model_encoding: Optional[str] = None) -> str:
        return self._encoding(model_encoding).name

    def count(self, text: str, model_encoding: Optional[str] = None) -> int:
        """Number of tokens in ``text`` under the target encoding."""
        if not text:
            return 0

        encoding = self._encoding(model_encoding)
        key = (encoding.name, text)

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self.hits += 1
                return cached

        count = len(encoding.encode(text, disallowed_special=()))

        with self._lock:
            self.misses += 1
            self._cache[key] = count
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

        return count

    def count_many(self, texts: Iterable[str], model_encoding: Optional[str] = None) -> int:
        return sum(self.count(t, model_encoding) for t in texts)

    def truncate(
        self,
        text: str,
        max_tokens: int,
        model_encoding: Optional[str] = None,
    ) -> str:
        """Cut ``text`` to at most ``max_tokens`` tokens."""
        if max_tokens <= 0 or not text:
            return ""

        encoding = self._encoding(model_encoding)
        tokens = encoding.encode(text, disallowed_special=())
        if len(tokens) <= max_tokens:
            return text

        # Decoding a token prefix can re-encode to a different length
        limit = max_tokens
        while limit > 0:
            candidate = encoding.decode(tokens[:limit])
            if len(encoding.encode(candidate, disallowed_special=())) <= max_tokens:
                return candidate
            limit -= 1
        return ""

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0

    @property
    def cache_size(self) -> int:
        return len(self._cache)
