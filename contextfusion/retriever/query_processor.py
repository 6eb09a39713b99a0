"""
Query Analyzer

Classifies query type, time sensitivity and complexity, and extracts
keywords. Type rules are ordered: the first matching type wins, so
"explain what is X" is conceptual rather than factual.
"""

import logging
import re
from typing import List, Tuple

from ..common.schemas import IntentComplexity, QueryProfile, QueryType, TimeScope
from ..common.similarity import normalize_text

logger = logging.getLogger("contextfusion.retriever.query_processor")


class QueryAnalyzer:
    """
    Builds the QueryProfile for one request.

    Responsibilities:
    1. Clean and normalize query text
    2. Detect query type (ordered pattern rules)
    3. Detect time scope
    4. Extract keywords
    5. Score complexity from length, keyword count and intent
    """

    # Checked in order; first match wins
    TYPE_PATTERNS: List[Tuple[QueryType, List[str]]] = [
        (QueryType.COMPARATIVE, [
            r"\bcompare\b",
            r"\bcomparison\b",
            r"\b(versus|vs\.?)\b",
            r"\bdifference(s)? between\b",
            r"\b(better|worse) than\b",
            r"\bpros and cons\b",
        ]),
        (QueryType.CONCEPTUAL, [
            r"\b(explain|understand|meaning|concept|theory|idea|definition)\b",
            r"^what (does|do) .+ mean",
            r"^what (does|do)\b",
            r"^define\b",
        ]),
        (QueryType.PROCEDURAL, [
            r"^how (to|do i|do you|can i|should i|would i)\b",
            r"\b(steps?|guide|tutorial|instructions?|process for|walkthrough)\b",
            r"\bhow can (i|we)\b",
        ]),
        (QueryType.ANALYTICAL, [
            r"^why\b",
            r"^how (does|is|are|did|was|were)\b",
            r"\b(analy[sz]e|analysis|cause[sd]?|effects?|impacts?|reasons?|implications?)\b",
        ]),
        (QueryType.EXPLORATORY, [
            r"^tell me (about|more)\b",
            r"\b(overview|introduction|background|general|landscape|survey)\b",
            r"^(describe|discuss)\b",
        ]),
        (QueryType.FACTUAL, [
            r"^(what|who|when|where|which)('s|\s+(is|are|was|were|did|does|do))\b",
            r"^how (many|much|long|old|far)\b",
            r"^(is|are|was|were|did|does|can) \w+",
        ]),
    ]

    # Time scope patterns
    TIME_PATTERNS = {
        TimeScope.LAST_WEEK: [r"last week", r"this week", r"past week", r"7 days", r"\btoday\b", r"\byesterday\b"],
        TimeScope.LAST_MONTH: [r"last month", r"this month", r"past month", r"30 days", r"\b(latest|recent(ly)?|current(ly)?|news)\b"],
        TimeScope.LAST_QUARTER: [r"last quarter", r"this quarter", r"\bq[1-4]\b", r"past 3 months"],
        TimeScope.LAST_YEAR: [r"last year", r"this year", r"\b20\d{2}\b", r"past year"],
    }

    # Stop words to filter from keywords
    STOP_WORDS = {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "shall", "can", "need", "to", "of",
        "in", "for", "on", "with", "at", "by", "from", "up", "about", "into",
        "over", "after", "we", "our", "us", "i", "me", "my", "you", "your",
        "it", "its", "they", "them", "their", "this", "that", "these", "those",
        "what", "which", "who", "whom", "when", "where", "why", "how", "and",
        "or", "but", "if", "because", "as", "until", "while", "just", "also",
        "tell", "explain", "describe", "please", "some", "any", "there",
    }

    INTENT_WEIGHTS = {
        IntentComplexity.SIMPLE: 0.3,
        IntentComplexity.MODERATE: 0.6,
        IntentComplexity.COMPLEX: 0.9,
    }

    TYPE_WEIGHTS = {
        QueryType.EXPLORATORY: 0.9,
        QueryType.CONCEPTUAL: 0.7,
        QueryType.ANALYTICAL: 0.7,
        QueryType.COMPARATIVE: 0.7,
    }

    BROAD_TYPES = (
        QueryType.EXPLORATORY,
        QueryType.CONCEPTUAL,
        QueryType.ANALYTICAL,
        QueryType.COMPARATIVE,
    )

    def analyze(self, query: str) -> QueryProfile:
        """
        Analyze a raw query.

        Args:
            query: Raw user query string

        Returns:
            QueryProfile without expansion terms
        """
        cleaned = self._clean_query(query)
        query_type = self.detect_query_type(cleaned)
        time_scope = self._detect_time_scope(cleaned)
        keywords = self._extract_keywords(cleaned)
        intent = self._intent_complexity(cleaned, keywords, query_type)
        complexity = self._complexity_score(cleaned, keywords, query_type, intent)

        logger.debug(
            "Query analyzed: type=%s intent=%s complexity=%.2f keywords=%s",
            query_type.value, intent.value, complexity, keywords,
        )

        return QueryProfile(
            original_query=query,
            normalized_query=normalize_text(query),
            query_type=query_type,
            complexity_score=complexity,
            intent_complexity=intent,
            keywords=tuple(keywords),
            time_scope=time_scope,
        )

    def detect_query_type(self, query: str) -> QueryType:
        """Detect the query type from ordered pattern rules"""
        query_lower = query.lower().strip()

        for query_type, patterns in self.TYPE_PATTERNS:
            for pattern in patterns:
                if re.search(pattern, query_lower):
                    return query_type

        return QueryType.UNKNOWN

    def _clean_query(self, query: str) -> str:
        """Clean and normalize query text"""
        # Lowercase
        cleaned = query.lower().strip()

        # Remove extra whitespace
        cleaned = re.sub(r'\s+', ' ', cleaned)

        # Remove trailing punctuation
        cleaned = re.sub(r'[.!?,;:]+$', '', cleaned)

        return cleaned

    def _detect_time_scope(self, query: str) -> TimeScope:
        """Detect time scope from query"""
        for scope, patterns in self.TIME_PATTERNS.items():
            for pattern in patterns:
                if re.search(pattern, query, re.IGNORECASE):
                    return scope

        return TimeScope.ALL_TIME

    def _extract_keywords(self, query: str) -> List[str]:
        """Extract important keywords from query"""
        words = re.findall(r'\b\w+\b', query.lower())

        # Filter stop words and short words
        keywords = [
            w for w in words
            if w not in self.STOP_WORDS and len(w) > 2
        ]

        # Deduplicate and return
        return list(dict.fromkeys(keywords))[:15]

    def _intent_complexity(
        self,
        query: str,
        keywords: List[str],
        query_type: QueryType,
    ) -> IntentComplexity:
        if len(query) < 50 and len(keywords) <= 2 and query_type == QueryType.FACTUAL:
            return IntentComplexity.SIMPLE
        if (len(query) > 150 or len(keywords) > 5) and query_type in self.BROAD_TYPES:
            return IntentComplexity.COMPLEX
        return IntentComplexity.MODERATE

    def _complexity_score(
        self,
        query: str,
        keywords: List[str],
        query_type: QueryType,
        intent: IntentComplexity,
    ) -> float:
        length_factor = min(1.0, len(query) / 200)
        keyword_factor = min(1.0, len(keywords) / 10)
        intent_factor = self.INTENT_WEIGHTS[intent]
        type_factor = self.TYPE_WEIGHTS.get(query_type, 0.5)

        score = (
            0.2 * length_factor
            + 0.3 * keyword_factor
            + 0.3 * intent_factor
            + 0.2 * type_factor
        )
        return round(min(1.0, max(0.0, score)), 4)
