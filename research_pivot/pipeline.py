"""
Research pipeline for one session directory.

Wires classification, perspective planning and wave evaluation together and
persists their artifacts under ``<session>/analysis/``.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.consensus.resolver import ConsensusResolver
from research_pivot.context import SessionContext
from research_pivot.data.cache import ResultCache
from research_pivot.models import (
    ClassificationResult, ConsensusOutcome, PerspectivePlan, PivotDecision, FALLBACK_DOMAIN,
)
from research_pivot.perspectives.engine import PerspectiveEngine
from research_pivot.quality.coverage import PlatformCoverageValidator
from research_pivot.quality.gaps import GapAnalyzer
from research_pivot.quality.gates import QualityGate
from research_pivot.quality.pivot import PivotDecisionEngine
from research_pivot.quality.scoring import QualityScorer
from research_pivot.quality.signals import SignalDetector
from research_pivot.quality.source_tiers import SourceTierClassifier
from research_pivot.quality.worker_output import load_wave
from research_pivot.utils.file_ops import atomic_write_json, read_json

logger = logging.getLogger(__name__)

CLASSIFICATION_FILE = "classification.json"
PERSPECTIVES_FILE = "perspectives.json"
QUALITY_GATE_FILE = "quality-gate.json"
PIVOT_DECISION_FILE = "pivot-decision.json"


def decision_file(wave: int) -> str:
    """Wave 1 keeps the bare name; later waves get their own decision file."""
    if wave <= 1:
        return PIVOT_DECISION_FILE
    return f"pivot-decision-wave-{wave}.json"


class ResearchPipeline:
    def __init__(self, session_dir: Union[str, Path], context: Optional[SessionContext] = None,
                 resolver: Optional[ConsensusResolver] = None,
                 perspectives: Optional[PerspectiveEngine] = None,
                 cache: Optional[ResultCache] = None):
        self.session_dir = Path(session_dir)
        self.analysis_dir = self.session_dir / "analysis"
        self.context = context or SessionContext()
        settings = self.context.settings
        self.settings = settings

        if cache is None and settings.CACHE_ENABLED:
            cache = ResultCache(settings=settings)
        self.cache = cache
        self.resolver = resolver or ConsensusResolver.from_settings(self.context, cache=cache)
        self.perspectives = perspectives or self._default_perspective_engine()

        keywords = KeywordClassifier(settings=settings)
        self.scorer = QualityScorer()
        self.signals = SignalDetector(settings, keywords)
        self.gaps = GapAnalyzer(settings)
        self.coverage = PlatformCoverageValidator()
        self.tiers = SourceTierClassifier(settings)
        self.gate = QualityGate(settings)
        self.pivot = PivotDecisionEngine(settings, keywords)

    def _default_perspective_engine(self) -> PerspectiveEngine:
        semantic = self.resolver.semantic_sources
        wanted = self.settings.PERSPECTIVE_PROVIDER
        source = next((s for s in semantic if s.name == wanted), None) if wanted else None
        if source is None and semantic:
            source = semantic[0]
        adapter = source.adapter if source is not None else None
        dispatcher = source.dispatcher if source is not None else None
        return PerspectiveEngine(adapter, dispatcher, self.resolver, self.settings)

    def _artifact(self, name: str) -> Path:
        return self.analysis_dir / name

    def _load(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return read_json(self._artifact(name))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable artifact {name}: {e}")
            return None

    async def classify(self, query: str) -> ConsensusOutcome:
        outcome = await self.resolver.classify(query)
        atomic_write_json(self._artifact(CLASSIFICATION_FILE), outcome.model_dump(mode="json"))
        return outcome

    async def plan(self, query: str) -> PerspectivePlan:
        plan = await self.perspectives.plan(query)
        data = plan.model_dump(mode="json")
        data["total_workers"] = plan.total_workers
        atomic_write_json(self._artifact(PERSPECTIVES_FILE), data)
        logger.info(f"Planned {plan.total_workers} workers across {len(plan.validations)} perspectives")
        return plan

    def _classification(self) -> Optional[ClassificationResult]:
        data = self._load(CLASSIFICATION_FILE)
        if not data:
            return None
        try:
            return ConsensusOutcome.model_validate(data).final
        except ValidationError as e:
            logger.warning(f"Ignoring invalid {CLASSIFICATION_FILE}: {e}")
            return None

    def _plan(self) -> Optional[PerspectivePlan]:
        data = self._load(PERSPECTIVES_FILE)
        if not data:
            return None
        data.pop("total_workers", None)
        try:
            return PerspectivePlan.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid {PERSPECTIVES_FILE}: {e}")
            return None

    def evaluate_wave(self, wave: int = 1) -> PivotDecision:
        """
        Evaluate a wave's outputs and decide on a further wave.

        An existing decision for the same wave is returned unchanged.
        """
        decision_name = decision_file(wave)
        existing = self._load(decision_name)
        if existing:
            try:
                decision = PivotDecision.model_validate(existing)
                logger.info(f"Pivot already decided at {decision.decided_at}; reusing")
                return decision
            except ValidationError as e:
                logger.warning(f"Re-deciding; invalid {decision_name}: {e}")

        outputs = load_wave(self.session_dir, wave)
        classification = self._classification()
        plan = self._plan()
        primary = classification.primary_domain if classification else FALLBACK_DOMAIN
        if wave > 1:
            recommended = self._previous_recommended(wave)
        elif plan is not None:
            recommended = plan.total_workers
        elif classification is not None:
            recommended = classification.worker_count
        else:
            recommended = 0

        scores = self.scorer.score_all(outputs)
        summary = self.scorer.summarize(scores, wave=wave)
        signals = self.signals.detect(outputs, scores, primary_domain=primary)
        gaps = self.gaps.analyze(outputs, scores)
        # The perspective plan only describes wave 1
        coverage = None
        if plan is not None and wave == 1:
            coverage = self.coverage.validate(plan.perspective_set.perspectives, outputs)

        citations = [url for o in outputs for url in o.citations]
        report = self.tiers.report(citations)
        previous = self._load(QUALITY_GATE_FILE) or {}
        attempts = int(previous.get("rebalance_attempts", 0))
        gate = self.gate.evaluate(report, rebalance_attempts=attempts)
        gate_record = gate.model_dump(mode="json")
        if gate.should_rebalance:
            gate_record["rebalance_attempts"] = attempts + 1
        atomic_write_json(self._artifact(QUALITY_GATE_FILE), gate_record)

        decision = self.pivot.decide(
            summary=summary,
            signals=signals,
            gaps=gaps,
            coverage=coverage,
            gate=gate,
            primary_domain=primary,
            executed_workers=len(outputs),
            recommended_workers=recommended,
            wave=wave,
        )
        atomic_write_json(self._artifact(f"wave-{wave}-quality.json"), {
            "summary": summary.model_dump(mode="json"),
            "signals": [s.model_dump(mode="json") for s in signals],
            "gaps": gaps.model_dump(mode="json"),
            "coverage": coverage.model_dump(mode="json") if coverage else None,
        })
        atomic_write_json(self._artifact(decision_name), decision.model_dump(mode="json"))
        return decision

    def _previous_recommended(self, wave: int) -> int:
        """Worker count the previous wave's decision asked for."""
        data = self._load(decision_file(wave - 1))
        if not data:
            return 0
        try:
            previous = PivotDecision.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid {decision_file(wave - 1)}: {e}")
            return 0
        return sum(r.count for r in previous.recommendations)
