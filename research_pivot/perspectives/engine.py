"""
Perspective generation, keyword validation and targeted re-resolution.

Pipeline:
1. One semantic call designs 4-8 research angles (keyword fallback on failure)
2. Each angle's own text is keyword-classified and compared to its domain
3. Flagged angles are re-resolved once through the consensus resolver
4. Workers are allocated one per angle plus backups
"""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional

from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.config import Settings
from research_pivot.consensus.dispatch import AnalyzerDispatcher
from research_pivot.exceptions import ResearchPivotError
from research_pivot.llm.prompts import perspective_prompt
from research_pivot.llm.schema import parse_perspectives
from research_pivot.models import (
    Domain, PerspectivePlan, PerspectiveSet, PerspectiveValidation, PlatformSuggestion,
    ResearchPerspective, Specialist, DOMAIN_SPECIALISTS, GENERALIST,
)

logger = logging.getLogger(__name__)

MIN_PERSPECTIVES = 4
MAX_PERSPECTIVES = 8

# Default sources per domain for keyword-derived perspectives
DEFAULT_PLATFORMS: Dict[Domain, List[PlatformSuggestion]] = {
    Domain.ACADEMIC: [
        PlatformSuggestion(name="Google Scholar", reason="peer-reviewed literature"),
        PlatformSuggestion(name="arXiv", reason="preprints"),
        PlatformSuggestion(name="Semantic Scholar", reason="citation graph"),
    ],
    Domain.TECHNICAL: [
        PlatformSuggestion(name="GitHub", reason="source code and issues"),
        PlatformSuggestion(name="Stack Overflow", reason="practitioner answers"),
        PlatformSuggestion(name="Official documentation", reason="primary technical reference"),
    ],
    Domain.SOCIAL_MEDIA: [
        PlatformSuggestion(name="Reddit", reason="community discussion"),
        PlatformSuggestion(name="Hacker News", reason="practitioner sentiment"),
        PlatformSuggestion(name="YouTube", reason="demonstrations and reviews"),
    ],
    Domain.SECURITY: [
        PlatformSuggestion(name="MITRE ATT&CK", reason="adversary techniques"),
        PlatformSuggestion(name="NVD", reason="vulnerability records"),
        PlatformSuggestion(name="CISA advisories", reason="government alerts"),
    ],
    Domain.NEWS: [
        PlatformSuggestion(name="Reuters", reason="wire reporting"),
        PlatformSuggestion(name="AP News", reason="wire reporting"),
        PlatformSuggestion(name="Google News", reason="recent coverage"),
    ],
    Domain.BUSINESS: [
        PlatformSuggestion(name="SEC EDGAR", reason="company filings"),
        PlatformSuggestion(name="Crunchbase", reason="company and funding data"),
        PlatformSuggestion(name="Gartner", reason="market analysis"),
    ],
}

_ANGLE_LABELS = {
    Domain.ACADEMIC: "Published research on",
    Domain.TECHNICAL: "Technical implementation of",
    Domain.SOCIAL_MEDIA: "Community discussion of",
    Domain.SECURITY: "Security implications of",
    Domain.NEWS: "Recent developments in",
    Domain.BUSINESS: "Market landscape for",
}

_SPECIALIST_DOMAINS = {s: d for d, s in DOMAIN_SPECIALISTS.items()}


class PerspectiveEngine:
    """Designs and validates the research angles for one query."""

    def __init__(self, adapter, dispatcher: Optional[AnalyzerDispatcher], resolver,
                 settings: Settings, keyword_classifier: Optional[KeywordClassifier] = None):
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.settings = settings
        self.keywords = keyword_classifier or KeywordClassifier(settings=settings)

    async def generate(self, query: str) -> PerspectiveSet:
        """
        Generate research perspectives with one semantic call.

        Falls back to keyword-derived perspectives when the call fails and
        PERSPECTIVE_KEYWORD_FALLBACK is enabled.
        """
        if self.adapter is None or self.dispatcher is None:
            if not self.settings.PERSPECTIVE_KEYWORD_FALLBACK:
                raise ResearchPivotError("No semantic analyzer configured for perspective generation")
            logger.info("No semantic analyzer configured; deriving perspectives from keywords")
            return self.keyword_perspectives(query)

        prompt = perspective_prompt(query, MIN_PERSPECTIVES, MAX_PERSPECTIVES)
        try:
            text = await self.dispatcher.call(self.adapter, prompt)
            perspective_set = parse_perspectives(text, query)
        except ResearchPivotError as e:
            if not self.settings.PERSPECTIVE_KEYWORD_FALLBACK:
                raise
            logger.warning(f"Perspective generation failed ({e}); using keyword fallback")
            return self.keyword_perspectives(query)

        logger.info(f"Generated {len(perspective_set.perspectives)} perspectives for '{query[:50]}'")
        return perspective_set

    def keyword_perspectives(self, query: str) -> PerspectiveSet:
        """One perspective per keyword-allocated worker slot."""
        result = self.keywords.classify(query)
        perspectives = []
        for specialist_name, count in result.allocation.items():
            specialist = Specialist(specialist_name)
            domain = _SPECIALIST_DOMAINS.get(specialist, result.primary_domain)
            for i in range(count):
                label = _ANGLE_LABELS[domain]
                text = f"{label} {query}" if i == 0 else f"{label} {query} (angle {i + 1})"
                perspectives.append(ResearchPerspective(
                    perspective=text,
                    domain=domain,
                    confidence=result.confidence,
                    specialist=specialist,
                    rationale=f"Keyword allocation for {domain.value}",
                    platforms=list(DEFAULT_PLATFORMS[domain]),
                ))
        return PerspectiveSet(
            query=query,
            perspectives=perspectives[:MAX_PERSPECTIVES],
            complexity=result.complexity,
            time_sensitive=False,
            reasoning=result.reasoning or "",
            source="keyword-fallback",
        )

    def validate(self, perspective: ResearchPerspective) -> PerspectiveValidation:
        """
        Cross-check one perspective against keyword analysis of its own text.

        Match boosts confidence, mismatch penalizes it. Low confidence or a
        mismatch flags the perspective for re-resolution; very low confidence
        also assigns a generalist backup.
        """
        s = self.settings
        keyword_domain = self.keywords.classify(perspective.perspective).primary_domain
        match = keyword_domain == perspective.domain
        delta = s.MATCH_CONFIDENCE_BOOST if match else -s.MISMATCH_CONFIDENCE_PENALTY
        adjusted = max(0, min(100, perspective.confidence + delta))

        needs_resolution = adjusted < s.ENSEMBLE_CONFIDENCE_THRESHOLD
        if not match and s.MISMATCH_TRIGGERS_RESOLUTION:
            needs_resolution = True
        backup = GENERALIST if adjusted < s.BACKUP_CONFIDENCE_THRESHOLD else None

        if not match:
            logger.debug(
                f"Perspective '{perspective.perspective[:40]}' labelled {perspective.domain.value}, "
                f"keywords say {keyword_domain.value}"
            )
        return PerspectiveValidation(
            perspective=perspective,
            keyword_domain=keyword_domain,
            domain_match=match,
            adjusted_confidence=adjusted,
            needs_resolution=needs_resolution,
            backup_specialist=backup,
        )

    async def _resolve_one(self, validation: PerspectiveValidation) -> None:
        text = validation.perspective.perspective
        try:
            outcome = await self.resolver.resolve(text)
        except Exception as e:
            # Fail open: keep the original assignment
            logger.warning(f"Re-resolution failed for '{text[:40]}': {e}")
            validation.resolution = "failed"
        else:
            winner = outcome.final.primary_domain
            validation.perspective.domain = winner
            validation.perspective.specialist = DOMAIN_SPECIALISTS[winner]
            validation.domain_match = True
            validation.resolution = f"consensus:{outcome.method.value}"
        validation.needs_resolution = False

    async def resolve_uncertain(self, validations: List[PerspectiveValidation]) -> List[PerspectiveValidation]:
        """Re-resolve exactly the flagged perspectives, once each, concurrently."""
        flagged = [v for v in validations if v.needs_resolution]
        if flagged:
            logger.info(f"Re-resolving {len(flagged)} of {len(validations)} perspectives")
            await asyncio.gather(*(self._resolve_one(v) for v in flagged))
        return validations

    @staticmethod
    def allocation(validations: List[PerspectiveValidation]) -> Dict[str, int]:
        """Per-perspective specialist tally plus backup specialists."""
        tally: Counter = Counter()
        for v in validations:
            tally[v.perspective.specialist.value] += 1
            if v.backup_specialist is not None:
                tally[v.backup_specialist.value] += 1
        return dict(tally)

    async def plan(self, query: str) -> PerspectivePlan:
        perspective_set = await self.generate(query)
        validations = [self.validate(p) for p in perspective_set.perspectives]
        await self.resolve_uncertain(validations)
        return PerspectivePlan(
            perspective_set=perspective_set,
            validations=validations,
            allocation=self.allocation(validations),
        )
