#!/usr/bin/env python3
"""
Context Replay Script

Runs one query through the context engine against recorded source results
and prints the assembled context as JSON. Useful for checking threshold,
dedup and budget behavior on real result sets without live indexes.

Fixture format (JSON):
    {
      "semantic": [{"source_id": "...", "content": "...", "raw_score": 0.8, ...}],
      "keyword":  [{"source_id": "...", "content": "...", "bm25": 12.3, ...}],
      "web":      [{"source_id": "...", "content": "...", "url": "...", ...}]
    }

Usage:
    python scripts/replay_context.py --fixtures results.json "how do inverters work?"
    python scripts/replay_context.py --fixtures results.json --max-tokens 2000 --compression truncation "..."
"""

import sys
import json
import logging
import argparse
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


class RecordedKeywordIndex:
    """KeywordIndex over recorded results; bm25 rescaling happens in the adapter"""

    def __init__(self, results):
        self._results = results

    def search(self, query, top_k):
        return self._results[:top_k]


class RecordedWebSearch:
    def __init__(self, results):
        self._results = results

    def search(self, query, options=None):
        limit = (options or {}).get("max_results", len(self._results))
        return self._results[:limit]


def build_adapters(fixtures):
    from contextfusion.retriever.searcher import (
        KeywordSearchAdapter,
        RetrievalSource,
        SourceAdapter,
        WebSearchAdapter,
        coerce_results,
    )
    from contextfusion.common.schemas import SourceType

    class RecordedSemanticAdapter(SourceAdapter):
        """Recorded vector hits, so no embedding provider is needed"""
        source = RetrievalSource.SEMANTIC

        def __init__(self, results):
            self._results = results

        async def search(self, request):
            return coerce_results(self._results, SourceType.DOCUMENT)[:request.top_k]

    adapters = []
    if fixtures.get("semantic"):
        adapters.append(RecordedSemanticAdapter(fixtures["semantic"]))
    if fixtures.get("keyword"):
        adapters.append(KeywordSearchAdapter(RecordedKeywordIndex(fixtures["keyword"])))
    if fixtures.get("web"):
        adapters.append(WebSearchAdapter(RecordedWebSearch(fixtures["web"])))
    return adapters


def main():
    parser = argparse.ArgumentParser(description="Replay a query against recorded source results")
    parser.add_argument("query", help="User question")
    parser.add_argument("--fixtures", type=Path, required=True, help="JSON file with recorded results per source")
    parser.add_argument("--max-tokens", type=int, default=None, help="Total token budget")
    parser.add_argument("--reserve", type=int, default=0, help="Tokens reserved for history")
    parser.add_argument("--topic", type=str, default=None, help="Topic to scope the query to")
    parser.add_argument("--expansion", choices=["llm", "synonym-table", "hybrid", "none"], default=None)
    parser.add_argument("--compression", choices=["truncation", "extraction", "summarization", "hybrid"], default=None)
    parser.add_argument("--ordering", choices=["relevance", "chronological", "hybrid", "auto"], default="auto")
    parser.add_argument("--threshold", type=float, default=None, help="Fixed score threshold")
    parser.add_argument("--timeout", type=float, default=None, help="Request deadline in seconds")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    from contextfusion.common.config import load_config
    from contextfusion.common.errors import ConfigurationError
    from contextfusion.common.llm_client import LLMClient
    from contextfusion.common.schemas import RetrievalOptions
    from contextfusion.retriever import ContextEngine, Searcher

    try:
        fixtures = json.loads(args.fixtures.read_text())
    except (OSError, json.JSONDecodeError) as e:
        print(f"[Replay] ERROR: Could not read fixtures {args.fixtures}: {e}", file=sys.stderr)
        sys.exit(1)

    config = load_config()
    adapters = build_adapters(fixtures)
    if not adapters:
        print("[Replay] ERROR: Fixture file has no semantic, keyword or web results", file=sys.stderr)
        sys.exit(1)

    generation = LLMClient.from_config(config.llm)
    if not generation.is_available:
        print("[Replay] No LLM configured, LLM expansion and compression will degrade", file=sys.stderr)

    options = RetrievalOptions(
        use_semantic=bool(fixtures.get("semantic")),
        use_keyword=bool(fixtures.get("keyword")),
        use_web=bool(fixtures.get("web")),
        topic=args.topic,
        max_total_tokens=args.max_tokens,
        reserved_for_history=args.reserve,
        expansion_strategy=args.expansion,
        compression_strategy=args.compression,
        ordering=args.ordering,
        threshold_override=args.threshold,
        timeout_seconds=args.timeout,
    )

    try:
        engine = ContextEngine(
            Searcher(adapters, source_timeout=config.fanout.source_timeout_seconds),
            generation=generation,
            config=config,
        )
        context = engine.retrieve_context_sync(args.query, options)
    except ConfigurationError as e:
        print(f"[Replay] ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    print(json.dumps(context.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
