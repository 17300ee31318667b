"""Source trust-tier classification and per-batch quality reports."""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from research_pivot.config import Settings, get_settings
from research_pivot.models import SourceClassification, SourceQualityReport, TrustTier
from research_pivot.utils.overrides import load_yaml_lists
from research_pivot.utils.urls import host_matches, normalize_host

logger = logging.getLogger(__name__)

# Tier 1: Independent research, standards bodies, government and academia
TIER1_HOSTS = (
    # Standards and government
    "nist.gov", "cisa.gov", "cve.org", "nvd.nist.gov", "mitre.org", "ietf.org", "w3.org",
    "europa.eu", "gov.uk", "who.int", "oecd.org", "un.org",
    # Academic / peer-reviewed
    "arxiv.org", "doi.org", "acm.org", "ieee.org", "usenix.org", "nature.com", "science.org",
    "springer.com", "sciencedirect.com", "jstor.org", "semanticscholar.org", "pubmed.ncbi.nlm.nih.gov",
    # Independent labs and non-profits
    "owasp.org", "eff.org", "citizenlab.ca", "first.org", "sans.org",
)

# Tier 3: Vendor-controlled content (product marketing, vendor research blogs)
TIER3_HOSTS = (
    "microsoft.com", "google.com", "cloud.google.com", "aws.amazon.com", "ibm.com", "oracle.com",
    "cisco.com", "paloaltonetworks.com", "crowdstrike.com", "fortinet.com", "checkpoint.com",
    "mandiant.com", "recordedfuture.com", "sentinelone.com", "splunk.com", "trendmicro.com",
    "kaspersky.com", "sophos.com", "rapid7.com", "tenable.com", "okta.com", "zscaler.com",
    "salesforce.com", "hubspot.com", "gartner.com", "forrester.com",
)

# Tier 4: Content farms, SEO aggregators and unattributed sources
TIER4_HOSTS = (
    "medium.com", "quora.com", "answers.com", "ehow.com", "wikihow.com", "scribd.com",
    "slideshare.net", "pinterest.com", "blogspot.com", "wordpress.com",
)

# Tier 2 is the default; listed hosts are matched with high confidence
TIER2_HOSTS = (
    "reuters.com", "apnews.com", "bbc.co.uk", "bbc.com", "nytimes.com", "wsj.com", "ft.com",
    "theguardian.com", "arstechnica.com", "wired.com", "theregister.com", "bleepingcomputer.com",
    "krebsonsecurity.com", "darkreading.com", "securityweek.com", "techcrunch.com",
    "github.com", "stackoverflow.com", "wikipedia.org", "news.ycombinator.com", "reddit.com",
)

_CATEGORIES = {
    TrustTier.INDEPENDENT: "independent",
    TrustTier.QUASI_INDEPENDENT: "quasi-independent",
    TrustTier.VENDOR: "vendor",
    TrustTier.SUSPECT: "suspect",
}

# Checked in this order: an independent listing beats a vendor parent domain
_PRECEDENCE = (TrustTier.INDEPENDENT, TrustTier.SUSPECT, TrustTier.VENDOR, TrustTier.QUASI_INDEPENDENT)

_OVERRIDE_KEYS = {
    "tier1": TrustTier.INDEPENDENT,
    "tier2": TrustTier.QUASI_INDEPENDENT,
    "tier3": TrustTier.VENDOR,
    "tier4": TrustTier.SUSPECT,
}


class SourceTierClassifier:
    """Classifies source URLs into trust tiers by host list."""

    def __init__(self, settings: Optional[Settings] = None,
                 tiers: Optional[Dict[TrustTier, Iterable[str]]] = None):
        settings = settings or get_settings()
        self.settings = settings
        base = tiers if tiers is not None else {
            TrustTier.INDEPENDENT: TIER1_HOSTS,
            TrustTier.QUASI_INDEPENDENT: TIER2_HOSTS,
            TrustTier.VENDOR: TIER3_HOSTS,
            TrustTier.SUSPECT: TIER4_HOSTS,
        }
        self.tiers: Dict[TrustTier, List[str]] = {t: [h.lower() for h in hosts] for t, hosts in base.items()}
        for key, hosts in load_yaml_lists(settings.SOURCE_TIERS_PATH).items():
            tier = _OVERRIDE_KEYS.get(key)
            if tier is None:
                logger.warning(f"Ignoring unknown source tier override '{key}'")
                continue
            current = self.tiers.setdefault(tier, [])
            current.extend(normalize_host(h) for h in hosts if normalize_host(h) not in current)

    def _lookup(self, host: str) -> Tuple[TrustTier, bool]:
        for tier in _PRECEDENCE:
            if any(host_matches(host, d) for d in self.tiers.get(tier, ())):
                return tier, True
        return TrustTier.QUASI_INDEPENDENT, False

    def classify(self, url: str) -> SourceClassification:
        """
        Classify one URL or bare domain.

        Unlisted hosts default to tier 2 with confidence "default".
        """
        host = normalize_host(url)
        tier, listed = self._lookup(host) if host else (TrustTier.QUASI_INDEPENDENT, False)
        return SourceClassification(
            url=url,
            host=host,
            tier=tier,
            category=_CATEGORIES[tier],
            confidence="high" if listed else "default",
        )

    def report(self, urls: Iterable[str]) -> SourceQualityReport:
        """
        Aggregate tier distribution for a batch of sources.

        Duplicate URLs count once.
        """
        settings = self.settings
        seen = set()
        sources = []
        for url in urls:
            if url and url not in seen:
                seen.add(url)
                sources.append(self.classify(url))

        counts = Counter(s.tier for s in sources)
        total = len(sources)
        vendor_fraction = counts[TrustTier.VENDOR] / total if total else 0.0
        independent_fraction = counts[TrustTier.INDEPENDENT] / total if total else 0.0

        flags = []
        recommendations = []
        if total:
            if vendor_fraction > settings.VENDOR_FRACTION_MAX:
                flags.append("vendor_heavy")
                recommendations.append(
                    f"Vendor sources are {vendor_fraction:.0%} of citations; add independent analysis"
                )
            if independent_fraction < settings.INDEPENDENT_FRACTION_MIN:
                flags.append("low_independent")
                recommendations.append("Add academic, standards-body or government sources")
            if counts[TrustTier.INDEPENDENT] == 0:
                flags.append("no_tier1")
                recommendations.append("No tier-1 source cited; find at least one independent primary source")
            if counts[TrustTier.SUSPECT]:
                flags.append("suspect_present")
                recommendations.append(
                    f"Replace {counts[TrustTier.SUSPECT]} low-trust source(s) with attributable ones"
                )

        logger.info(
            f"Source quality: {total} sources, vendor={vendor_fraction:.0%}, "
            f"independent={independent_fraction:.0%}, flags={flags}"
        )
        return SourceQualityReport(
            total=total,
            tier1=counts[TrustTier.INDEPENDENT],
            tier2=counts[TrustTier.QUASI_INDEPENDENT],
            tier3=counts[TrustTier.VENDOR],
            tier4=counts[TrustTier.SUSPECT],
            vendor_fraction=round(vendor_fraction, 4),
            independent_fraction=round(independent_fraction, 4),
            flags=flags,
            recommendations=recommendations,
            sources=sources,
        )
