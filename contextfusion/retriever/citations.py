"""
Citation Markers

Parses in-text citation markers and resolves them against the citation map
built by the assembler. Supported forms:

    [Document 3]   [Web Source 2]   [Web Source 2](https://...)
    [Some Title](https://...)   [Some Title](document://doc-id)   [4]
"""

import re
from typing import Dict, List, Optional, Sequence

from ..common.schemas import CitationLink, ScoredResult

CITATION_PATTERN = re.compile(
    r"\[(?P<kind>Document|Web Source)\s+(?P<num>\d+)\](?:\((?P<kind_url>[^)\s]+)\))?"
    r"|\[(?P<title>[^\[\]]+)\]\((?P<url>(?:https?|document)://[^)\s]+)\)"
    r"|\[(?P<index>\d+)\]"
)


def find_markers(text: str) -> List[str]:
    """All citation markers in ``text``, in order of appearance"""
    return [m.group(0) for m in CITATION_PATTERN.finditer(text or "")]


def document_citation_id(n: int) -> str:
    return f"Document {n}"


def web_citation_id(n: int) -> str:
    return f"Web Source {n}"


class CitationLinker:
    """Resolves markers to source ids; unresolved markers are flagged dangling"""

    def __init__(self, citations: Dict[str, str], items: Sequence[ScoredResult] = ()):
        self._citations = dict(citations)
        self._by_url: Dict[str, str] = {}
        self._by_title: Dict[str, str] = {}
        for item in items:
            if item.url:
                self._by_url.setdefault(item.url.rstrip("/"), item.source_id)
            doc_id = item.result.document_id or item.source_id
            self._by_url.setdefault(f"document://{doc_id}", item.source_id)
            if item.title:
                self._by_title.setdefault(item.title.strip().lower(), item.source_id)

    def resolve(self, match: "re.Match") -> CitationLink:
        marker = match.group(0)
        if match.group("kind"):
            citation_id = f"{match.group('kind')} {match.group('num')}"
            return CitationLink(marker, citation_id, self._citations.get(citation_id))
        if match.group("url"):
            url = match.group("url").rstrip("/")
            source_id = self._by_url.get(url) or self._by_title.get(match.group("title").strip().lower())
            return CitationLink(marker, url, source_id)
        citation_id = match.group("index")
        return CitationLink(marker, citation_id, self._citations.get(citation_id))

    def link(self, text: str) -> List[CitationLink]:
        """Resolve every marker in ``text``"""
        return [self.resolve(m) for m in CITATION_PATTERN.finditer(text or "")]

    def dangling(self, text: str) -> List[str]:
        return list(dict.fromkeys(link.marker for link in self.link(text) if link.dangling))

    def source_for(self, marker: str) -> Optional[str]:
        links = self.link(marker)
        return links[0].source_id if links else None
