"""
Topic Scoping

Injects a caller-supplied topic into the search query, phrased per query
type. Topic tokens already present in the raw query are never repeated.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..common.schemas import QueryType


class ScopingMethod(str, Enum):
    """How the topic was folded into the query"""
    NONE = "none"
    TEMPLATE = "template"
    CONTEXT = "context"
    PREFIX = "prefix"
    KEYWORDS = "keywords"


@dataclass(frozen=True)
class ScopedQuery:
    """Search text after topic scoping"""
    text: str
    method: ScopingMethod
    topic: Optional[str] = None


TYPE_TEMPLATES = {
    QueryType.FACTUAL: "{query} in {topic}",
    QueryType.CONCEPTUAL: "{query} in the field of {topic}",
    QueryType.PROCEDURAL: "{query} for {topic}",
    QueryType.EXPLORATORY: "{topic}: {query}",
}

CONTEXT_TEMPLATE = "In the context of {topic}: {query}"

# Weight at or above which the topic leads the query
PREFIX_WEIGHT = 0.7


def _tokens(text: str) -> List[str]:
    return re.findall(r"\b\w+\b", text.lower())


def topic_keywords(topic: str) -> List[str]:
    """Topic tokens of three or more characters, in order, without repeats"""
    return list(dict.fromkeys(t for t in _tokens(topic) if len(t) >= 3))


def scope_query(
    query: str,
    topic: Optional[str],
    query_type: QueryType = QueryType.UNKNOWN,
    weight: float = 0.5,
    quote_phrases: bool = False,
) -> ScopedQuery:
    """
    Fold ``topic`` into ``query``.

    Args:
        query: Raw query text
        topic: Topic to scope to, or None
        query_type: Chooses the template
        weight: Topic importance in [0, 1]; high weight prefixes the topic
        quote_phrases: Quote multi-word topics (keyword search syntax)

    Returns:
        ScopedQuery with the text and the method used
    """
    topic = (topic or "").strip()
    if not topic:
        return ScopedQuery(text=query, method=ScopingMethod.NONE)

    query_tokens = set(_tokens(query))
    topic_tokens = _tokens(topic)
    missing = [k for k in topic_keywords(topic) if k not in query_tokens]

    # Any overlap: only append what the query lacks
    if any(t in query_tokens for t in topic_tokens):
        if not missing:
            return ScopedQuery(text=query, method=ScopingMethod.NONE, topic=topic)
        return ScopedQuery(
            text=f"{query} {' '.join(missing)}",
            method=ScopingMethod.KEYWORDS,
            topic=topic,
        )

    rendered = topic
    if quote_phrases and " " in topic:
        rendered = f'"{topic}"'

    if weight >= PREFIX_WEIGHT:
        return ScopedQuery(text=f"{rendered} {query}", method=ScopingMethod.PREFIX, topic=topic)

    if query_type in (QueryType.ANALYTICAL, QueryType.COMPARATIVE):
        return ScopedQuery(
            text=CONTEXT_TEMPLATE.format(topic=rendered, query=query),
            method=ScopingMethod.CONTEXT,
            topic=topic,
        )

    template = TYPE_TEMPLATES.get(query_type)
    if template:
        return ScopedQuery(
            text=template.format(topic=rendered, query=query.rstrip("?!. ")),
            method=ScopingMethod.TEMPLATE,
            topic=topic,
        )

    return ScopedQuery(text=f"{query} {rendered}", method=ScopingMethod.KEYWORDS, topic=topic)
