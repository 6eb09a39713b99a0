"""
Domain Authority

Process-wide table of source domain authority. Lookup order:
custom override -> exact domain (and parent domains) -> pattern rule ->
TLD family -> neutral default. Loaded once at startup and injected.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..common.schemas import domain_of

logger = logging.getLogger("contextfusion.retriever.domain_authority")


@dataclass(frozen=True)
class DomainEntry:
    """Built-in authority entry: score 0-100 and tier weight"""
    score: int
    tier: float = 1.0
    category: str = "general"


@dataclass(frozen=True)
class AuthorityScore:
    """Authority lookup result"""
    score: float
    matched_by: str  # custom | exact | pattern | tld | default
    matched: Optional[str] = None

    @property
    def is_match(self) -> bool:
        return self.matched_by != "default"


DEFAULT_DOMAINS: Dict[str, DomainEntry] = {
    # Reference and academic
    "wikipedia.org": DomainEntry(85, 1.0, "reference"),
    "britannica.com": DomainEntry(88, 1.0, "reference"),
    "nature.com": DomainEntry(95, 1.0, "academic"),
    "science.org": DomainEntry(95, 1.0, "academic"),
    "sciencedirect.com": DomainEntry(90, 1.0, "academic"),
    "springer.com": DomainEntry(88, 1.0, "academic"),
    "arxiv.org": DomainEntry(82, 1.0, "academic"),
    "ieee.org": DomainEntry(92, 1.0, "academic"),
    "acm.org": DomainEntry(90, 1.0, "academic"),
    "pubmed.ncbi.nlm.nih.gov": DomainEntry(95, 1.0, "academic"),
    # Government and health
    "nih.gov": DomainEntry(95, 1.0, "government"),
    "cdc.gov": DomainEntry(95, 1.0, "government"),
    "who.int": DomainEntry(93, 1.0, "government"),
    "europa.eu": DomainEntry(88, 1.0, "government"),
    "nasa.gov": DomainEntry(94, 1.0, "government"),
    # News
    "reuters.com": DomainEntry(88, 0.95, "news"),
    "apnews.com": DomainEntry(88, 0.95, "news"),
    "bbc.com": DomainEntry(85, 0.95, "news"),
    "bbc.co.uk": DomainEntry(85, 0.95, "news"),
    "nytimes.com": DomainEntry(84, 0.95, "news"),
    "theguardian.com": DomainEntry(82, 0.95, "news"),
    "economist.com": DomainEntry(85, 0.95, "news"),
    # Technical documentation
    "docs.python.org": DomainEntry(92, 1.0, "technical"),
    "developer.mozilla.org": DomainEntry(92, 1.0, "technical"),
    "github.com": DomainEntry(75, 0.9, "technical"),
    "stackoverflow.com": DomainEntry(72, 0.9, "technical"),
    "learn.microsoft.com": DomainEntry(88, 1.0, "technical"),
    # User-generated
    "reddit.com": DomainEntry(45, 0.8, "social"),
    "quora.com": DomainEntry(40, 0.8, "social"),
}

# (regex over the host, score)
PATTERN_RULES: List[Tuple[str, float]] = [
    (r"\.gov(\.[a-z]{2})?$", 0.9),
    (r"\.edu(\.[a-z]{2})?$", 0.85),
    (r"\.ac\.[a-z]{2}$", 0.85),
    (r"\.mil$", 0.85),
    (r"\.int$", 0.85),
]

TLD_SCORES: Dict[str, float] = {
    "edu": 0.85,
    "gov": 0.9,
    "org": 0.7,
    "int": 0.8,
}

# Free hosting platforms: authority never above this cap
USER_GENERATED_HOSTS = ("blogspot.com", "wordpress.com", "tumblr.com", "medium.com", "substack.com")
USER_GENERATED_CAP = 0.6


class DomainAuthorityTable:
    """
    Read-only after construction, so concurrent lookups need no locking.
    Custom overrides are fixed at init; build a new table to change them.
    """

    def __init__(
        self,
        domains: Optional[Dict[str, DomainEntry]] = None,
        custom_scores: Optional[Dict[str, float]] = None,
        default_score: float = 0.5,
    ):
        self._domains = dict(DEFAULT_DOMAINS if domains is None else domains)
        self._custom = {
            self._clean(k): min(1.0, max(0.0, float(v)))
            for k, v in (custom_scores or {}).items()
        }
        self._patterns = [(re.compile(p), s) for p, s in PATTERN_RULES]
        self._default = default_score

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "DomainAuthorityTable":
        """Merge a JSON table ``{"domain": {"score": 0-100, "tier": 1.0}}`` over the built-in one."""
        domains = dict(DEFAULT_DOMAINS)
        try:
            with open(Path(path).expanduser()) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load domain authority table %s: %s", path, e)
            return cls(domains=domains, **kwargs)

        for domain, entry in data.items():
            if isinstance(entry, (int, float)):
                domains[cls._clean(domain)] = DomainEntry(int(entry))
            elif isinstance(entry, dict) and "score" in entry:
                domains[cls._clean(domain)] = DomainEntry(
                    int(entry["score"]),
                    float(entry.get("tier", 1.0)),
                    entry.get("category", "general"),
                )
        logger.info("Loaded %d domain authority entries from %s", len(data), path)
        return cls(domains=domains, **kwargs)

    @staticmethod
    def _clean(domain: str) -> str:
        domain = domain.strip().lower()
        if domain.startswith("www."):
            domain = domain[4:]
        return domain

    def lookup(self, url_or_domain: Optional[str]) -> AuthorityScore:
        """Authority in [0, 1] for a URL or bare domain"""
        if not url_or_domain:
            return AuthorityScore(self._default, "default")

        if "://" in url_or_domain:
            domain = domain_of(url_or_domain)
        else:
            domain = self._clean(url_or_domain.split("/")[0])
        if not domain:
            return AuthorityScore(self._default, "default")

        score = self._lookup_domain(domain)
        if any(domain == h or domain.endswith("." + h) for h in USER_GENERATED_HOSTS):
            score = AuthorityScore(min(score.score, USER_GENERATED_CAP), score.matched_by, score.matched)
        return score

    def _lookup_domain(self, domain: str) -> AuthorityScore:
        for candidate in self._parents(domain):
            if candidate in self._custom:
                return AuthorityScore(self._custom[candidate], "custom", candidate)

        for candidate in self._parents(domain):
            entry = self._domains.get(candidate)
            if entry is not None:
                return AuthorityScore(
                    min(1.0, entry.score / 100 * entry.tier), "exact", candidate
                )

        for pattern, score in self._patterns:
            if pattern.search(domain):
                return AuthorityScore(score, "pattern", pattern.pattern)

        tld = domain.rsplit(".", 1)[-1]
        if tld in TLD_SCORES:
            return AuthorityScore(TLD_SCORES[tld], "tld", tld)

        return AuthorityScore(self._default, "default")

    @staticmethod
    def _parents(domain: str) -> List[str]:
        """``a.b.example.com`` -> itself, ``b.example.com``, ``example.com``"""
        parts = domain.split(".")
        return [".".join(parts[i:]) for i in range(max(1, len(parts) - 1))]

    def __len__(self) -> int:
        return len(self._domains)
