"""Cross-domain signal detection over a wave's worker outputs."""

import logging
from typing import Dict, List, Optional, Sequence

from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.config import Settings, get_settings
from research_pivot.models import AgentQualityScore, Domain, DomainSignal, DOMAIN_ORDER
from research_pivot.quality.worker_output import WorkerOutput

logger = logging.getLogger(__name__)


class SignalDetector:
    """
    Finds domains the wave kept running into that it was not staffed for.

    Each output contributes its distinct keyword matches per domain, weighted
    by its quality total / 100, so thin outputs carry less signal.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 keyword_classifier: Optional[KeywordClassifier] = None):
        self.settings = settings or get_settings()
        self.keywords = keyword_classifier or KeywordClassifier(settings=self.settings)

    def detect(self, outputs: Sequence[WorkerOutput], scores: Sequence[AgentQualityScore],
               primary_domain: Optional[Domain] = None) -> List[DomainSignal]:
        weights = {s.worker_id: s.total / 100 for s in scores}
        strength: Dict[Domain, float] = {d: 0.0 for d in DOMAIN_ORDER}
        workers: Dict[Domain, int] = {d: 0 for d in DOMAIN_ORDER}
        keywords: Dict[Domain, List[str]] = {d: [] for d in DOMAIN_ORDER}

        for output in outputs:
            _, matched = self.keywords.score(output.body)
            weight = weights.get(output.worker_id, 0.0)
            for domain in DOMAIN_ORDER:
                hits = matched.get(domain.value, [])
                if not hits:
                    continue
                strength[domain] += len(hits) * weight
                workers[domain] += 1
                keywords[domain].extend(k for k in hits if k not in keywords[domain])

        signals = []
        for domain in DOMAIN_ORDER:
            if domain == primary_domain:
                continue
            value = round(strength[domain], 2)
            if value >= self.settings.SIGNAL_MIN_STRENGTH:
                signals.append(DomainSignal(
                    theme=domain,
                    strength=value,
                    worker_count=workers[domain],
                    keywords=keywords[domain],
                    strong=value >= self.settings.SIGNAL_STRONG_STRENGTH,
                ))
        signals.sort(key=lambda s: s.strength, reverse=True)
        if signals:
            logger.info(f"Detected signals: {[(s.theme.value, s.strength) for s in signals]}")
        return signals
