"""
Multi-source classification consensus.

The keyword baseline and every configured semantic analyzer classify the same
query concurrently, each under its own deadline. Once all have settled the
valid results vote on primary domain and complexity; scores are never averaged.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

import structlog

from research_pivot.classify.keywords import SECONDARY_THRESHOLD, allocate_workers
from research_pivot.context import SessionContext
from research_pivot.consensus.dispatch import AnalyzerDispatcher, RetryPhase, RetryTrace
from research_pivot.exceptions import AllSourcesFailedError, InputError
from research_pivot.models import (
    ClassificationResult, Complexity, ConsensusAgreement, ConsensusOutcome, Domain,
    ResolutionMethod, SourceAttempt, DOMAIN_ORDER, WORKER_COUNTS,
)
from research_pivot.monitoring_metrics import CONSENSUS_RESOLUTIONS

logger = structlog.get_logger(__name__)

E = TypeVar("E", bound=Enum)

_COMPLEXITY_ORDER = list(Complexity)


def _vote(values: Sequence[E], order: Sequence[E], preferred: Optional[E]) -> E:
    """Majority value; ties go to ``preferred`` when it is tied, then declaration order."""
    counts = Counter(values)
    best = max(counts.values())
    tied = [v for v in order if counts.get(v) == best]
    if preferred is not None and preferred in tied:
        return preferred
    return tied[0]


def _highest_confidence(results: Sequence[ClassificationResult]) -> Optional[ClassificationResult]:
    best = None
    for r in results:
        # Strict comparison keeps the earliest source on equal confidence
        if best is None or r.confidence > best.confidence:
            best = r
    return best


class ConsensusResolver:
    """Runs every classification source and reconciles their answers."""

    def __init__(self, keyword_source, semantic_sources: Sequence, context: SessionContext,
                 cache=None):
        self.keyword_source = keyword_source
        self.semantic_sources = list(semantic_sources)
        self.context = context
        self.settings = context.settings
        self.cache = cache

    @classmethod
    def from_settings(cls, context: SessionContext, cache=None, client=None) -> "ConsensusResolver":
        """Keyword baseline plus one SemanticClassifier per configured provider."""
        from research_pivot.llm.adapters import adapters_from_settings
        from research_pivot.llm.semantic import KeywordSource, SemanticClassifier

        dispatcher = AnalyzerDispatcher(context)
        semantic = [SemanticClassifier(a, dispatcher) for a in adapters_from_settings(context, client)]
        return cls(KeywordSource(), semantic, context, cache=cache)

    @property
    def sources(self) -> List:
        return [self.keyword_source] + self.semantic_sources

    async def _run(self, source, query: str) -> Tuple[Optional[ClassificationResult], SourceAttempt]:
        trace = RetryTrace(analyzer=source.name)
        started = time.perf_counter()
        attempt = SourceAttempt(source=source.name)
        try:
            result = await asyncio.wait_for(source.classify(query, trace=trace),
                                            timeout=self.settings.ANALYZER_DEADLINE_SEC)
        except asyncio.TimeoutError:
            attempt.error_kind = "deadline"
            attempt.error = f"no result within {self.settings.ANALYZER_DEADLINE_SEC}s"
            result = None
        except Exception as e:
            attempt.error_kind = trace.error_kind or getattr(e, "kind", type(e).__name__)
            attempt.error = str(e) or type(e).__name__
            result = None
        else:
            attempt.state = "succeeded"
        attempt.attempts = trace.attempts
        attempt.waits = list(trace.waits)
        attempt.elapsed_sec = round(time.perf_counter() - started, 3)
        if result is None:
            logger.warning("source_failed", source=source.name, kind=attempt.error_kind,
                           attempts=attempt.attempts, error=attempt.error)
        return result, attempt

    async def resolve(self, query: str) -> ConsensusOutcome:
        """
        Classify a query with every source and resolve consensus.

        Raises:
            InputError: empty or whitespace query
            AllSourcesFailedError: no source produced a valid result
        """
        if not query or not query.strip():
            raise InputError("Query must not be empty")

        sources = self.sources
        settled = await asyncio.gather(*(self._run(s, query) for s in sources))

        results: Dict[str, Optional[ClassificationResult]] = {}
        attempts: List[SourceAttempt] = []
        semantic_names = {s.name for s in self.semantic_sources}
        for source, (result, attempt) in zip(sources, settled):
            results[source.name] = result
            attempts.append(attempt)

        valid = [r for r in results.values() if r is not None]
        if not valid:
            raise AllSourcesFailedError(query, {a.source: a.error or "failed" for a in attempts})

        semantic_valid = [r for name, r in results.items() if r is not None and name in semantic_names]
        agreement = ConsensusAgreement(
            domain_votes=dict(Counter(r.primary_domain.value for r in valid)),
            complexity_votes=dict(Counter(r.complexity.value for r in valid)),
            valid_sources=len(valid),
            total_sources=len(sources),
        )

        if len(valid) == 1:
            method = ResolutionMethod.FALLBACK
            base = valid[0]
            domain, complexity = base.primary_domain, base.complexity
        else:
            lead = _highest_confidence(semantic_valid)
            domain = _vote([r.primary_domain for r in valid], DOMAIN_ORDER,
                           lead.primary_domain if lead else None)
            complexity = _vote([r.complexity for r in valid], _COMPLEXITY_ORDER,
                               lead.complexity if lead else None)
            if len(agreement.domain_votes) == 1 and len(agreement.complexity_votes) == 1:
                method = ResolutionMethod.UNANIMOUS
            elif max(agreement.domain_votes.values()) >= 2 or max(agreement.complexity_votes.values()) >= 2:
                method = ResolutionMethod.MAJORITY
            else:
                method = ResolutionMethod.WEIGHTED

            if method == ResolutionMethod.WEIGHTED:
                base = lead or _highest_confidence(valid)
            else:
                base = _highest_confidence([r for r in valid if r.primary_domain == domain])

        final = self._finalize(query, base, domain, complexity, method)
        CONSENSUS_RESOLUTIONS.labels(method=method.value).inc()
        logger.info("consensus_resolved", query=query[:50], method=method.value,
                    domain=domain.value, complexity=complexity.value,
                    valid=agreement.valid_sources, total=agreement.total_sources)
        return ConsensusOutcome(
            query=query,
            results=results,
            final=final,
            method=method,
            agreement=agreement,
            attempts=attempts,
        )

    def _finalize(self, query: str, base: ClassificationResult, domain: Domain,
                  complexity: Complexity, method: ResolutionMethod) -> ClassificationResult:
        scores = base.clamped_scores()
        secondary = [d for d in DOMAIN_ORDER if d != domain and scores.get(d.value, 0) > SECONDARY_THRESHOLD]
        secondary.sort(key=lambda d: scores[d.value], reverse=True)
        worker_count = WORKER_COUNTS[complexity]
        return ClassificationResult(
            query=query,
            domain_scores=scores,
            primary_domain=domain,
            secondary_domains=secondary,
            complexity=complexity,
            worker_count=worker_count,
            allocation=allocate_workers(domain, secondary, worker_count),
            pivot_scenarios=list(base.pivot_scenarios),
            confidence=base.confidence,
            source="consensus",
            reasoning=f"{method.value} resolution; base from {base.source}",
        )

    async def classify(self, query: str) -> ConsensusOutcome:
        """Resolve through the result cache when one is configured."""
        if self.cache is not None:
            cached = self.cache.get(query)
            if cached is not None:
                try:
                    return ConsensusOutcome.model_validate(cached)
                except ValueError as e:
                    logger.warning("cache_entry_invalid", query=query[:50], error=str(e))
        outcome = await self.resolve(query)
        if self.cache is not None:
            self.cache.set(query, outcome.model_dump(mode="json"))
        return outcome
