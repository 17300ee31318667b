"""Coverage gap aggregation across worker outputs."""

import logging
import re
from typing import Dict, Optional, Sequence, Tuple

from research_pivot.config import Settings, get_settings
from research_pivot.models import AgentQualityScore, CoverageGap, GapReport
from research_pivot.quality.worker_output import WorkerOutput

logger = logging.getLogger(__name__)

MIN_WORKERS_TO_PROMOTE = 2

_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_gap(text: str) -> str:
    return " ".join(_PUNCT_RE.sub(" ", text.lower()).split())


class GapAnalyzer:
    """Promotes gaps that several workers, or one high-quality worker, report."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def analyze(self, outputs: Sequence[WorkerOutput], scores: Sequence[AgentQualityScore]) -> GapReport:
        totals = {s.worker_id: s.total for s in scores}
        gaps: Dict[Tuple[str, str], CoverageGap] = {}

        for output in outputs:
            for category, items in output.gaps.items():
                for item in items:
                    key = (category, normalize_gap(item))
                    if not key[1]:
                        continue
                    gap = gaps.get(key)
                    if gap is None:
                        gap = gaps[key] = CoverageGap(category=category, text=item)
                    if output.worker_id not in gap.workers:
                        gap.workers.append(output.worker_id)
                    if totals.get(output.worker_id, 0) >= self.settings.HIGH_QUALITY_SCORE:
                        gap.high_quality = True

        for gap in gaps.values():
            gap.promoted = len(gap.workers) >= MIN_WORKERS_TO_PROMOTE or gap.high_quality

        report = GapReport(gaps=list(gaps.values()))
        logger.info(f"Gap analysis: {len(report.gaps)} gaps, {len(report.promoted)} promoted")
        return report
