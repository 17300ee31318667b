"""Source-quality gate with rebalancing worker specs."""

import logging
from typing import Dict, List, Optional

from research_pivot.config import Settings, get_settings
from research_pivot.models import (
    QualityGateResult, RebalancingAgentSpec, SourceQualityReport, Specialist,
)

logger = logging.getLogger(__name__)

# trigger -> rebalancing worker; specs sharing a track are deduplicated
REBALANCING_SPECS: Dict[str, RebalancingAgentSpec] = {
    "vendor_heavy": RebalancingAgentSpec(
        track="independent-analysis",
        focus="Find independent analyses (academic, standards bodies, government) of the vendor claims",
        source_tier_priority=[1, 2],
        worker_type=Specialist.ACADEMIC,
    ),
    "low_independent": RebalancingAgentSpec(
        track="independent-sources",
        focus="Add peer-reviewed, standards-body and government sources",
        source_tier_priority=[1],
        worker_type=Specialist.ACADEMIC,
    ),
    "no_tier1": RebalancingAgentSpec(
        track="independent-sources",
        focus="Find at least one independent primary source",
        source_tier_priority=[1],
        worker_type=Specialist.ACADEMIC,
    ),
    "needs_contrarian": RebalancingAgentSpec(
        track="contrarian",
        focus="Find opposing viewpoints, critiques and documented failures",
        source_tier_priority=[1, 2],
        worker_type=Specialist.WEB,
    ),
}


class QualityGate:
    """
    Decides whether a wave's sourcing is acceptable.

    The rebalance counter is supplied by the caller; once it reaches
    MAX_REBALANCE_ATTEMPTS the gate still reports failures but never asks
    for another rebalancing wave.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def evaluate(self, report: SourceQualityReport, rebalance_attempts: int = 0) -> QualityGateResult:
        s = self.settings
        triggers: List[str] = []
        if report.total:
            if report.vendor_fraction > s.VENDOR_FRACTION_MAX:
                triggers.append("vendor_heavy")
            if report.independent_fraction < s.INDEPENDENT_FRACTION_MIN:
                triggers.append("low_independent")
            if report.tier1 == 0:
                triggers.append("no_tier1")
            if report.vendor_fraction >= s.CONTRARIAN_VENDOR_FRACTION:
                triggers.append("needs_contrarian")

        agents: List[RebalancingAgentSpec] = []
        tracks = set()
        for trigger in triggers:
            spec = REBALANCING_SPECS[trigger]
            if spec.track not in tracks:
                tracks.add(spec.track)
                agents.append(spec.model_copy())

        passed = not triggers
        capped = rebalance_attempts >= s.MAX_REBALANCE_ATTEMPTS
        should_rebalance = not passed and not capped

        if passed:
            reason = "Source mix within thresholds" if report.total else "No sources to evaluate"
        elif capped:
            reason = (f"Gate failed ({', '.join(triggers)}) but rebalance limit "
                      f"{s.MAX_REBALANCE_ATTEMPTS} reached; proceeding with caveats")
        else:
            reason = f"Gate failed: {', '.join(triggers)}"

        if passed:
            logger.info(f"Quality gate passed ({report.total} sources)")
        else:
            logger.warning(f"Quality gate failed: {triggers} (rebalance attempts={rebalance_attempts})")

        return QualityGateResult(
            passed=passed,
            triggers=triggers,
            rebalancing_agents=agents,
            should_rebalance=should_rebalance,
            rebalance_attempts=rebalance_attempts,
            reason=reason,
            report=report,
        )
