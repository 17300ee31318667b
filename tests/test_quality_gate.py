"""Tests for source tier classification and the source-quality gate."""

import pytest

from research_pivot.models import TrustTier
from research_pivot.quality.gates import QualityGate
from research_pivot.quality.source_tiers import SourceTierClassifier

VENDOR = [
    "https://www.microsoft.com/security/blog/post",
    "https://www.crowdstrike.com/blog/report",
    "https://unit42.paloaltonetworks.com/threat",
    "https://www.mandiant.com/resources/apt",
    "https://www.splunk.com/en_us/blog/security.html",
]
QUASI = [
    "https://www.reuters.com/technology/x",
    "https://github.com/org/tool",
    "https://arstechnica.com/security/y",
    "https://someblog.example.net/post",
    "https://www.bleepingcomputer.com/news/z",
]
INDEPENDENT = [
    "https://nvd.nist.gov/vuln/detail/CVE-2024-1",
    "https://arxiv.org/abs/2401.00001",
    "https://www.cisa.gov/news-events/alerts",
]


@pytest.fixture
def tiers(settings):
    return SourceTierClassifier(settings)


class TestSourceTiers:
    def test_host_normalization_and_subdomains(self, tiers):
        c = tiers.classify("https://WWW.Blog.CrowdStrike.com:443/path?q=1")
        assert c.host == "blog.crowdstrike.com"
        assert c.tier == TrustTier.VENDOR
        assert c.category == "vendor"
        assert c.confidence == "high"

    def test_unlisted_defaults_to_tier2(self, tiers):
        c = tiers.classify("https://example-unknown.io/a")
        assert c.tier == TrustTier.QUASI_INDEPENDENT
        assert c.confidence == "default"

    def test_bare_domain(self, tiers):
        assert tiers.classify("arxiv.org").tier == TrustTier.INDEPENDENT

    def test_precedence_independent_first(self, settings):
        custom = SourceTierClassifier(settings, tiers={
            TrustTier.INDEPENDENT: ["research.bigvendor.com"],
            TrustTier.VENDOR: ["bigvendor.com"],
            TrustTier.SUSPECT: ["bigvendor.com"],
        })
        assert custom.classify("https://research.bigvendor.com/x").tier == TrustTier.INDEPENDENT
        # Suspect beats vendor
        assert custom.classify("https://shop.bigvendor.com").tier == TrustTier.SUSPECT

    def test_yaml_override(self, settings, tmp_path):
        path = tmp_path / "tiers.yaml"
        path.write_text("tier1:\n  - https://www.internal-lab.org\ntier9:\n  - nowhere.com\n")
        custom = SourceTierClassifier(settings.model_copy(update={"SOURCE_TIERS_PATH": str(path)}))
        assert custom.classify("https://docs.internal-lab.org/a").tier == TrustTier.INDEPENDENT

    def test_report_counts_and_flags(self, tiers):
        report = tiers.report(VENDOR + QUASI + QUASI[:2])
        assert report.total == 10
        assert report.tier3 == 5
        assert report.tier1 == 0
        assert report.vendor_fraction == 0.5
        assert {"vendor_heavy", "low_independent", "no_tier1"} <= set(report.flags)
        assert report.recommendations

    def test_suspect_flag(self, tiers):
        report = tiers.report(["https://medium.com/@x/post"] + INDEPENDENT)
        assert "suspect_present" in report.flags


class TestQualityGate:
    """Threshold triggers, rebalancing specs and the rebalance cap."""

    def test_vendor_heavy_scenario(self, tiers, settings):
        result = QualityGate(settings).evaluate(tiers.report(VENDOR + QUASI))

        assert result.passed is False
        for trigger in ("vendor_heavy", "low_independent", "needs_contrarian"):
            assert trigger in result.triggers
        assert len(result.rebalancing_agents) >= 2
        tracks = [a.track for a in result.rebalancing_agents]
        assert len(tracks) == len(set(tracks))
        assert "contrarian" in tracks
        assert result.should_rebalance is True

    def test_balanced_sources_pass(self, tiers, settings):
        result = QualityGate(settings).evaluate(tiers.report(INDEPENDENT + QUASI[:3] + VENDOR[:1]))
        assert result.passed is True
        assert result.triggers == []
        assert result.rebalancing_agents == []
        assert result.should_rebalance is False

    def test_rebalance_cap(self, tiers, settings):
        result = QualityGate(settings).evaluate(tiers.report(VENDOR + QUASI), rebalance_attempts=1)
        assert result.passed is False
        assert result.should_rebalance is False
        assert result.rebalance_attempts == 1

    def test_contrarian_below_threshold(self, tiers, settings):
        urls = VENDOR[:3] + INDEPENDENT[:1] + QUASI[:3]
        result = QualityGate(settings).evaluate(tiers.report(urls))
        assert "vendor_heavy" in result.triggers
        assert "needs_contrarian" not in result.triggers

    def test_empty_report_passes(self, tiers, settings):
        assert QualityGate(settings).evaluate(tiers.report([])).passed is True
