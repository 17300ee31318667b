"""Per-worker quality scoring."""

import logging
from collections import Counter
from typing import List, Sequence

from research_pivot.models import AgentQualityScore, QualityBand, WaveQualitySummary
from research_pivot.quality.worker_output import WorkerOutput

logger = logging.getLogger(__name__)

SIZE_MAX = 40
CITATION_MAX = 30
CONFIDENCE_MAX = 30

# Body words for full size credit
FULL_SIZE_WORDS = 1500
POINTS_PER_CITATION = 3

CONFIDENCE_POINTS = {"HIGH": 30, "MEDIUM": 20, "LOW": 10}

BAND_THRESHOLDS = (
    (80, QualityBand.EXCELLENT),
    (60, QualityBand.GOOD),
    (40, QualityBand.FAIR),
)


def band_for(total: int) -> QualityBand:
    for threshold, band in BAND_THRESHOLDS:
        if total >= threshold:
            return band
    return QualityBand.POOR


class QualityScorer:
    """Scores worker outputs on size, citations and stated confidence."""

    def score(self, output: WorkerOutput) -> AgentQualityScore:
        size = min(SIZE_MAX, output.word_count * SIZE_MAX // FULL_SIZE_WORDS)
        citations = min(CITATION_MAX, len(output.citations) * POINTS_PER_CITATION)
        if output.confidence_label:
            confidence = CONFIDENCE_POINTS[output.confidence_label]
        elif output.confidence_pct is not None:
            confidence = min(CONFIDENCE_MAX, round(output.confidence_pct * CONFIDENCE_MAX / 100))
        else:
            confidence = 0
        total = size + citations + confidence
        return AgentQualityScore(
            worker_id=output.worker_id,
            size_score=size,
            citation_score=citations,
            confidence_score=confidence,
            total=total,
            band=band_for(total),
        )

    def score_all(self, outputs: Sequence[WorkerOutput]) -> List[AgentQualityScore]:
        return [self.score(o) for o in outputs]

    @staticmethod
    def summarize(scores: Sequence[AgentQualityScore], wave: int = 1) -> WaveQualitySummary:
        counts = Counter(s.band.value for s in scores)
        mean = sum(s.total for s in scores) / len(scores) if scores else 0.0
        summary = WaveQualitySummary(
            wave=wave,
            mean_score=round(mean, 2),
            band_counts={b.value: counts.get(b.value, 0) for b in QualityBand},
            scores=list(scores),
        )
        logger.info(f"Wave {wave} quality: mean={summary.mean_score}, bands={summary.band_counts}")
        return summary
