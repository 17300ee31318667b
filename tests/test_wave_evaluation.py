"""Tests for worker output parsing, scoring, signals, gaps, coverage and pivot decisions."""

import pytest

from research_pivot.models import (
    CoverageGap, CoverageReport, Domain, DomainSignal, GapReport, PerspectiveCoverage,
    PlatformSuggestion, QualityBand, ResearchPerspective, Specialist, WaveQualitySummary,
)
from research_pivot.quality.coverage import PlatformCoverageValidator, platform_visited
from research_pivot.quality.gaps import GapAnalyzer
from research_pivot.quality.gates import QualityGate
from research_pivot.quality.pivot import PivotDecisionEngine
from research_pivot.quality.scoring import QualityScorer, band_for
from research_pivot.quality.signals import SignalDetector
from research_pivot.quality.source_tiers import SourceTierClassifier
from research_pivot.quality.worker_output import WorkerOutput, load_wave, parse_worker_output

SAMPLE = """# OSINT tooling overview

Maltego and SpiderFoot dominate open-source reconnaissance. Several companies
sell commercial platforms; pricing and market consolidation came up repeatedly.

Sources: https://github.com/smicallef/spiderfoot, https://www.maltego.com/pricing.

## Metadata
Confidence: HIGH
Perspective: 2

### Limited Coverage Areas
- Legal constraints on scraping
- None

### Alternative Domains
- Business: vendor pricing

### Platforms Searched
- GitHub
- Reddit
"""


def _output(worker_id, body="", citations=0, confidence="HIGH", gaps=None, perspective=None,
            platforms=None):
    urls = [f"https://site{i}.example.org/p" for i in range(citations)]
    return WorkerOutput(
        worker_id=worker_id, text=body, body=body, confidence_label=confidence,
        citations=urls, gaps=gaps or {}, perspective_index=perspective,
        platforms_searched=platforms or [],
    )


class TestWorkerOutput:
    def test_parse_sample(self, tmp_path):
        path = tmp_path / "wave-1" / "security-researcher-1.md"
        path.parent.mkdir()
        path.write_text(SAMPLE)
        out = parse_worker_output(path)

        assert out.worker_id == "security-researcher-1"
        assert out.confidence_label == "HIGH"
        assert out.perspective_index == 2
        assert out.citations == ["https://github.com/smicallef/spiderfoot", "https://www.maltego.com/pricing"]
        assert out.gaps["limited_coverage"] == ["Legal constraints on scraping"]
        assert out.gaps["alternative_domains"] == ["Business: vendor pricing"]
        assert out.platforms_searched == ["GitHub", "Reddit"]
        assert "## Metadata" not in out.body

    def test_percentage_confidence(self):
        out = WorkerOutput.from_text("w", "body\n## Metadata\nConfidence: 72%\n")
        assert out.confidence_label is None
        assert out.confidence_pct == 72.0

    def test_load_wave_sorted(self, tmp_path):
        wave = tmp_path / "wave-1"
        wave.mkdir()
        (wave / "b.md").write_text("b")
        (wave / "a.md").write_text("a")
        (wave / "notes.txt").write_text("ignored")
        assert [o.worker_id for o in load_wave(tmp_path, 1)] == ["a", "b"]
        assert load_wave(tmp_path, 2) == []


class TestQualityScorer:
    @pytest.mark.parametrize("total,band", [
        (100, QualityBand.EXCELLENT), (80, QualityBand.EXCELLENT), (79, QualityBand.GOOD),
        (60, QualityBand.GOOD), (40, QualityBand.FAIR), (39, QualityBand.POOR), (0, QualityBand.POOR),
    ])
    def test_bands(self, total, band):
        assert band_for(total) == band

    def test_component_caps(self):
        out = _output("w", body="word " * 5000, citations=50, confidence="HIGH")
        score = QualityScorer().score(out)
        assert (score.size_score, score.citation_score, score.confidence_score) == (40, 30, 30)
        assert score.total == 100
        assert score.band == QualityBand.EXCELLENT

    def test_thin_output_is_poor(self):
        score = QualityScorer().score(_output("w", body="short note", citations=1, confidence="LOW"))
        assert score.total == 0 + 3 + 10
        assert score.band == QualityBand.POOR

    def test_summary(self):
        scorer = QualityScorer()
        scores = scorer.score_all([
            _output("a", body="word " * 1500, citations=10),
            _output("b", body="x", citations=0, confidence=None),
        ])
        summary = scorer.summarize(scores)
        assert summary.mean_score == 50.0
        assert summary.band_counts == {"poor": 1, "fair": 0, "good": 0, "excellent": 1}


class TestSignalDetector:
    def test_weighted_signals_exclude_primary(self, settings):
        body = "market pricing vendor competitor revenue; malware exploit"
        outputs = [_output("a", body=body), _output("b", body=body)]
        scores = [QualityScorer().score(o) for o in outputs]
        # Pin the weights: 100 and 50
        scores[0] = scores[0].model_copy(update={"total": 100})
        scores[1] = scores[1].model_copy(update={"total": 50})

        signals = SignalDetector(settings).detect(outputs, scores, primary_domain=Domain.SECURITY)

        assert [s.theme for s in signals] == [Domain.BUSINESS]
        business = signals[0]
        assert business.strength == 7.5
        assert business.worker_count == 2
        assert business.strong is True

    def test_weak_theme_ignored(self, settings):
        outputs = [_output("a", body="one market mention")]
        scores = [QualityScorer().score(outputs[0]).model_copy(update={"total": 100})]
        assert SignalDetector(settings).detect(outputs, scores, primary_domain=Domain.SECURITY) == []


class TestGapAnalyzer:
    def test_promotion_rules(self, settings):
        outputs = [
            _output("a", gaps={"tool_gaps": ["No SIEM coverage!"]}),
            _output("b", gaps={"tool_gaps": ["no siem coverage"], "platform_gaps": ["Telegram channels"]}),
            _output("c", gaps={"limited_coverage": ["EU regulation"]}),
        ]
        totals = {"a": 50, "b": 50, "c": 85}
        scores = [QualityScorer().score(o).model_copy(update={"total": totals[o.worker_id]}) for o in outputs]
        report = GapAnalyzer(settings).analyze(outputs, scores)

        by_text = {g.text: g for g in report.gaps}
        assert by_text["No SIEM coverage!"].workers == ["a", "b"]
        assert by_text["No SIEM coverage!"].promoted is True
        assert by_text["Telegram channels"].promoted is False
        assert by_text["EU regulation"].promoted is True
        assert len(report.promoted) == 2


class TestPlatformCoverage:
    def _perspectives(self):
        return [
            ResearchPerspective(perspective="Tooling", domain=Domain.TECHNICAL, confidence=80,
                                specialist=Specialist.TECHNICAL,
                                platforms=[PlatformSuggestion(name="GitHub"), PlatformSuggestion(name="Stack Overflow")]),
            ResearchPerspective(perspective="Community", domain=Domain.SOCIAL_MEDIA, confidence=80,
                                specialist=Specialist.SOCIAL_MEDIA,
                                platforms=[PlatformSuggestion(name="Hacker News")]),
        ]

    def test_visited_by_citation_or_searched_list(self):
        assert platform_visited("Stack Overflow", [], ["stackoverflow.com"])
        assert platform_visited("Reddit", ["reddit (r/osint)"], [])
        assert platform_visited("arxiv.org", [], ["export.arxiv.org"])
        assert not platform_visited("Hacker News", ["Reddit"], ["github.com"])

    def test_zero_coverage_flagged(self):
        outputs = [
            WorkerOutput(worker_id="w1", text="", body="", perspective_index=1,
                         citations=["https://github.com/x/y"], platforms_searched=[]),
            WorkerOutput(worker_id="w2", text="", body="", perspective_index=2,
                         citations=["https://www.reddit.com/r/x"], platforms_searched=["Reddit"]),
        ]
        report = PlatformCoverageValidator().validate(self._perspectives(), outputs)
        first, second = report.perspectives
        assert first.visited == ["GitHub"]
        assert first.coverage == 0.5
        assert first.flagged is False
        assert second.coverage == 0.0
        assert second.flagged is True
        assert [p.perspective_index for p in report.flagged] == [2]

    def test_unclaimed_perspective_flagged(self):
        report = PlatformCoverageValidator().validate(self._perspectives(), [])
        assert len(report.flagged) == 2


class TestPivotDecision:
    """Trigger evaluation, deduplication and the worker cap."""

    def _summary(self, poor=0):
        return WaveQualitySummary(wave=1, mean_score=70, band_counts={"poor": poor, "fair": 0, "good": 4, "excellent": 0})

    def test_no_triggers_no_wave2(self, settings):
        decision = PivotDecisionEngine(settings).decide(summary=self._summary(), executed_workers=5,
                                                        recommended_workers=5)
        assert decision.launch_wave2 is False
        assert decision.reasons == []
        assert decision.recommendations == []

    def test_triggers_in_order(self, settings):
        signal = DomainSignal(theme=Domain.BUSINESS, strength=5.0, worker_count=3, keywords=["market"], strong=True)
        gaps = GapReport(gaps=[CoverageGap(category="alternative_domains", text="startup funding rounds",
                                           workers=["a", "b"], promoted=True)])
        coverage = CoverageReport(perspectives=[PerspectiveCoverage(perspective_index=1, perspective="Community",
                                                                    coverage=0.0, flagged=True)])
        decision = PivotDecisionEngine(settings.model_copy(update={"WAVE2_MAX_WORKERS": 10})).decide(
            summary=self._summary(poor=1), signals=[signal], gaps=gaps, coverage=coverage,
            primary_domain=Domain.SECURITY, executed_workers=4, recommended_workers=6,
        )
        assert decision.launch_wave2 is True
        assert len(decision.reasons) == 5
        assert decision.reasons[0].startswith("1 worker output")
        assert "Strong business signal" in decision.reasons[1]
        tracks = [(r.domain, r.track) for r in decision.recommendations]
        # Signal and gap both point at business but on different tracks
        assert ("business", "signal") in tracks
        assert ("business", "gap:alternative_domains") in tracks
        assert len(tracks) == len(set(tracks))

    def test_recommendations_capped(self, settings):
        decision = PivotDecisionEngine(settings.model_copy(update={"WAVE2_MAX_WORKERS": 3})).decide(
            summary=self._summary(poor=2), executed_workers=2, recommended_workers=6,
        )
        assert sum(r.count for r in decision.recommendations) == 3
        assert decision.recommendations[0].count == 2
        assert decision.recommendations[1].count == 1

    def test_gate_failure_only_when_rebalance_allowed(self, settings):
        tiers = SourceTierClassifier(settings)
        report = tiers.report(["https://www.microsoft.com/a", "https://www.crowdstrike.com/b"])
        engine = PivotDecisionEngine(settings)

        open_gate = QualityGate(settings).evaluate(report, rebalance_attempts=0)
        decision = engine.decide(summary=self._summary(), gate=open_gate)
        assert decision.launch_wave2 is True
        assert any(r.track == "contrarian" for r in decision.recommendations)

        capped = QualityGate(settings).evaluate(report, rebalance_attempts=1)
        assert engine.decide(summary=self._summary(), gate=capped).launch_wave2 is False

    def test_decision_is_frozen(self, settings):
        decision = PivotDecisionEngine(settings).decide(summary=self._summary())
        with pytest.raises(Exception):
            decision.launch_wave2 = True
