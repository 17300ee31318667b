"""Deterministic keyword classification of research queries.

Zero network calls. Serves as the consensus baseline and as the validator for
semantic perspective assignments.
"""

from collections import Counter
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from research_pivot.config import Settings, get_settings
from research_pivot.exceptions import InputError
from research_pivot.models import (
    ClassificationResult, Complexity, Domain, Specialist, DOMAIN_ORDER, DOMAIN_SPECIALISTS,
    FALLBACK_DOMAIN, GENERALIST_FILL_ORDER, WORKER_COUNTS,
)
from research_pivot.utils.overrides import load_yaml_lists, merge_lists

logger = logging.getLogger(__name__)

POINTS_PER_MATCH = 10
SECONDARY_THRESHOLD = 40
PRIMARY_SHARE = 0.35
MAX_SECONDARY_SLOTS = 2

# Complexity by total keyword matches: SIMPLE <= 1, MODERATE <= 3, else COMPLEX
SIMPLE_MAX_MATCHES = 1
MODERATE_MAX_MATCHES = 3

# Substring matching: avoid short keywords that hide inside common words
DOMAIN_KEYWORDS: Dict[str, List[str]] = {
    Domain.ACADEMIC.value: [
        "academic", "peer-reviewed", "peer reviewed", "journal", "paper", "study", "studies",
        "scholarly", "literature review", "meta-analysis", "systematic review", "arxiv",
        "citation", "thesis", "dissertation", "university",
    ],
    Domain.TECHNICAL.value: [
        "software", "framework", "library", "tool", "implementation", "architecture", "github",
        "open source", "open-source", "programming", "database", "algorithm", "infrastructure",
        "deployment", "kubernetes", "python", "benchmark", "source code",
    ],
    Domain.SOCIAL_MEDIA.value: [
        "social media", "reddit", "twitter", "tiktok", "youtube", "instagram", "linkedin",
        "forum", "community", "discord", "hacker news", "sentiment", "influencer", "mastodon",
    ],
    Domain.SECURITY.value: [
        "security", "vulnerability", "exploit", "malware", "threat", "osint", "threat intel",
        "breach", "ransomware", "phishing", "penetration test", "pentest", "incident response",
        "forensics", "zero-day", "attack surface", "reconnaissance",
    ],
    Domain.NEWS.value: [
        "news", "announcement", "announced", "press release", "breaking", "latest", "headline",
        "this week", "today", "recent developments",
    ],
    Domain.BUSINESS.value: [
        "market", "pricing", "company", "companies", "startup", "revenue", "competitor",
        "competitive", "vendor", "enterprise", "industry", "investment", "acquisition",
        "business", "customer",
    ],
}


def complexity_for(matches: int) -> Complexity:
    """Map a total keyword match count onto a complexity tier."""
    if matches <= SIMPLE_MAX_MATCHES:
        return Complexity.SIMPLE
    if matches <= MODERATE_MAX_MATCHES:
        return Complexity.MODERATE
    return Complexity.COMPLEX


def allocate_workers(primary: Domain, secondary: Sequence[Domain], worker_count: int) -> Dict[str, int]:
    """
    Allocate worker slots across specialist types.

    The primary specialist gets round(worker_count * 0.35) (at least one),
    up to two secondary specialists one slot each, then the generalist fill
    order, then round-robin over every specialist until the count is met.

    Args:
        primary: Primary domain
        secondary: Secondary domains, strongest first
        worker_count: Total slots to allocate

    Returns:
        Mapping of specialist type to slot count; sums to worker_count
    """
    allocation: Counter = Counter()

    def room() -> int:
        return worker_count - sum(allocation.values())

    primary_slots = min(worker_count, max(1, round(worker_count * PRIMARY_SHARE)))
    allocation[DOMAIN_SPECIALISTS[primary].value] += primary_slots

    for domain in list(secondary)[:MAX_SECONDARY_SLOTS]:
        specialist = DOMAIN_SPECIALISTS[domain].value
        if room() > 0 and specialist not in allocation:
            allocation[specialist] += 1

    for specialist in GENERALIST_FILL_ORDER:
        if room() > 0 and specialist.value not in allocation:
            allocation[specialist.value] += 1

    while room() > 0:
        for specialist in Specialist:
            if room() <= 0:
                break
            allocation[specialist.value] += 1

    return dict(allocation)


def predict_pivots(primary: Domain, secondary: Sequence[Domain], complexity: Complexity,
                   total_matches: int) -> List[str]:
    """Predict the second-wave scenarios a classification makes likely."""
    scenarios = []
    for domain in secondary:
        scenarios.append(
            f"{domain.value} angle may need a dedicated {DOMAIN_SPECIALISTS[domain].value} "
            f"if Wave 1 confirms it"
        )
    if complexity == Complexity.COMPLEX:
        scenarios.append("Complex query: expect coverage gaps that justify a second wave")
    if total_matches == 0:
        scenarios.append(f"Weak keyword signal: primary domain {primary.value} may shift after Wave 1")
    return scenarios


class KeywordClassifier:
    """Dictionary-driven domain and complexity scorer."""

    source_name = "keyword"

    def __init__(self, keywords: Optional[Dict[str, List[str]]] = None,
                 settings: Optional[Settings] = None):
        settings = settings or get_settings()
        base = keywords if keywords is not None else DOMAIN_KEYWORDS
        extra = load_yaml_lists(settings.KEYWORD_DICTIONARY_PATH)
        unknown = [k for k in extra if k not in {d.value for d in Domain}]
        if unknown:
            logger.warning(f"Ignoring keyword overrides for unknown domains: {unknown}")
            extra = {k: v for k, v in extra.items() if k not in unknown}
        self.keywords = merge_lists(base, extra)

    def score(self, query: str) -> Tuple[Dict[str, int], Dict[str, List[str]]]:
        """
        Raw per-domain scores: 10 points per keyword occurrence, uncapped.

        Returns:
            Tuple of (scores by domain, matched keywords by domain)
        """
        q = query.lower()
        scores: Dict[str, int] = {}
        matched: Dict[str, List[str]] = {}
        for domain in DOMAIN_ORDER:
            total = 0
            hits = []
            for keyword in self.keywords.get(domain.value, []):
                n = q.count(keyword)
                if n:
                    total += n * POINTS_PER_MATCH
                    hits.append(keyword)
            scores[domain.value] = total
            matched[domain.value] = hits
        return scores, matched

    def classify(self, query: str) -> ClassificationResult:
        """
        Classify a query by keyword dictionary.

        Args:
            query: Free-text research query

        Returns:
            ClassificationResult tagged with source "keyword"

        Raises:
            InputError: query is empty or whitespace
        """
        if not query or not query.strip():
            raise InputError("Query must not be empty")

        scores, matched = self.score(query)
        ranked = [d for d in DOMAIN_ORDER if scores[d.value] > 0]
        # Stable sort keeps declaration order among equal scores
        ranked.sort(key=lambda d: scores[d.value], reverse=True)

        total_score = sum(scores.values())
        total_matches = total_score // POINTS_PER_MATCH

        if ranked:
            primary = ranked[0]
            secondary = [d for d in ranked[1:] if scores[d.value] > SECONDARY_THRESHOLD]
            confidence = min(100, scores[primary.value] * 100 // total_score)
        else:
            primary = FALLBACK_DOMAIN
            secondary = []
            confidence = 0

        complexity = complexity_for(total_matches)
        worker_count = WORKER_COUNTS[complexity]
        allocation = allocate_workers(primary, secondary, worker_count)

        hit_summary = ", ".join(f"{d}: {len(k)}" for d, k in matched.items() if k) or "none"
        logger.debug(f"Keyword scores for '{query[:50]}': {scores}")
        logger.info(f"Query '{query[:50]}' classified as {primary.value}/{complexity.value} (keyword)")

        return ClassificationResult(
            query=query,
            domain_scores=scores,
            primary_domain=primary,
            secondary_domains=secondary,
            complexity=complexity,
            worker_count=worker_count,
            allocation=allocation,
            pivot_scenarios=predict_pivots(primary, secondary, complexity, total_matches),
            confidence=confidence,
            source=self.source_name,
            reasoning=f"{total_matches} keyword matches ({hit_summary})",
        )


def classify(query: str) -> ClassificationResult:
    """Classify with the built-in dictionary and current settings."""
    return KeywordClassifier().classify(query)
