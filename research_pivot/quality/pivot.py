"""Second-wave (pivot) decision."""

import logging
from typing import List, Optional, Sequence

from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.config import Settings, get_settings
from research_pivot.models import (
    CoverageReport, Domain, DomainSignal, GapReport, PivotDecision, QualityBand,
    QualityGateResult, SpecialistRecommendation, WaveQualitySummary,
    DOMAIN_SPECIALISTS, FALLBACK_DOMAIN, GENERALIST,
)

logger = logging.getLogger(__name__)


class PivotDecisionEngine:
    """
    Decides whether Wave 1 warrants a second wave and which specialists to send.

    Triggers are checked in a fixed order so reasons are stable:
    poor outputs, strong signals, promoted gaps, uncovered perspectives,
    source-quality gate, understaffing.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 keyword_classifier: Optional[KeywordClassifier] = None):
        self.settings = settings or get_settings()
        self.keywords = keyword_classifier or KeywordClassifier(settings=self.settings)

    def _domain_for(self, text: str, default: Domain) -> Domain:
        scores, _ = self.keywords.score(text)
        best = max(scores.values()) if scores else 0
        if best <= 0:
            return default
        return next(Domain(d) for d, s in scores.items() if s == best)

    def decide(self, *, summary: WaveQualitySummary, signals: Sequence[DomainSignal] = (),
               gaps: Optional[GapReport] = None, coverage: Optional[CoverageReport] = None,
               gate: Optional[QualityGateResult] = None, primary_domain: Domain = FALLBACK_DOMAIN,
               executed_workers: int = 0, recommended_workers: int = 0, wave: int = 1) -> PivotDecision:
        reasons: List[str] = []
        recs: List[SpecialistRecommendation] = []
        primary_specialist = DOMAIN_SPECIALISTS[primary_domain]

        poor = summary.band_counts.get(QualityBand.POOR.value, 0)
        if poor:
            reasons.append(f"{poor} worker output(s) scored poor")
            recs.append(SpecialistRecommendation(
                domain=primary_domain.value, track="quality-retry", worker_type=primary_specialist,
                rationale="Replace poor-quality coverage of the primary domain", count=poor,
            ))

        for signal in signals:
            if not signal.strong:
                continue
            reasons.append(f"Strong {signal.theme.value} signal (strength {signal.strength})")
            recs.append(SpecialistRecommendation(
                domain=signal.theme.value, track="signal", worker_type=DOMAIN_SPECIALISTS[signal.theme],
                rationale=f"{signal.worker_count} worker(s) surfaced {', '.join(signal.keywords[:5])}",
            ))

        for gap in (gaps.promoted if gaps else []):
            domain = self._domain_for(gap.text, primary_domain)
            reasons.append(f"Coverage gap ({gap.category}): {gap.text}")
            recs.append(SpecialistRecommendation(
                domain=domain.value, track=f"gap:{gap.category}", worker_type=DOMAIN_SPECIALISTS[domain],
                rationale=f"Reported by {', '.join(gap.workers)}",
            ))

        uncovered = coverage.flagged if coverage else []
        if uncovered:
            reasons.append(f"{len(uncovered)} perspective(s) visited none of their designated platforms")
            recs.append(SpecialistRecommendation(
                domain=primary_domain.value, track="platform-coverage", worker_type=GENERALIST,
                rationale="Search the designated platforms for: "
                          + "; ".join(p.perspective[:60] for p in uncovered),
                count=len(uncovered),
            ))

        if gate is not None and not gate.passed and gate.should_rebalance:
            reasons.append(f"Source quality gate failed: {', '.join(gate.triggers)}")
            for spec in gate.rebalancing_agents:
                recs.append(SpecialistRecommendation(
                    domain=primary_domain.value, track=spec.track, worker_type=spec.worker_type,
                    rationale=spec.focus,
                ))

        if recommended_workers and executed_workers < recommended_workers:
            missing = recommended_workers - executed_workers
            reasons.append(f"Only {executed_workers} of {recommended_workers} recommended workers produced output")
            recs.append(SpecialistRecommendation(
                domain=primary_domain.value, track="staffing", worker_type=primary_specialist,
                rationale="Make up for workers that did not report", count=missing,
            ))

        decision = PivotDecision(
            wave=wave,
            launch_wave2=bool(reasons),
            reasons=reasons,
            recommendations=self._cap(self._dedupe(recs)),
        )
        if decision.launch_wave2:
            logger.info(f"Wave 2 recommended: {len(reasons)} trigger(s), "
                        f"{sum(r.count for r in decision.recommendations)} worker(s)")
        else:
            logger.info("Wave 2 not needed")
        return decision

    @staticmethod
    def _dedupe(recs: Sequence[SpecialistRecommendation]) -> List[SpecialistRecommendation]:
        seen = set()
        out = []
        for rec in recs:
            key = (rec.domain, rec.track)
            if key not in seen:
                seen.add(key)
                out.append(rec)
        return out

    def _cap(self, recs: List[SpecialistRecommendation]) -> List[SpecialistRecommendation]:
        budget = self.settings.WAVE2_MAX_WORKERS
        capped = []
        for rec in recs:
            if budget <= 0:
                break
            count = min(rec.count, budget)
            budget -= count
            capped.append(rec if count == rec.count else rec.model_copy(update={"count": count}))
        return capped
