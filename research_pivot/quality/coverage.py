"""Checks whether workers visited the platforms designated for their perspective."""

import logging
import re
from typing import List, Sequence

from research_pivot.models import CoverageReport, PerspectiveCoverage, ResearchPerspective
from research_pivot.quality.worker_output import WorkerOutput
from research_pivot.utils.urls import host_matches, normalize_host

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]")


def _slug(text: str) -> str:
    return _SLUG_RE.sub("", text.lower())


def platform_visited(platform: str, searched: Sequence[str], hosts: Sequence[str]) -> bool:
    """
    A platform counts as visited when it is named under "Platforms Searched"
    or a cited host matches it (by domain, or by its name with spaces and
    punctuation removed, e.g. "Stack Overflow" -> stackoverflow.com).
    """
    slug = _slug(platform)
    if not slug:
        return False
    for item in searched:
        item_slug = _slug(item)
        if item_slug and (slug in item_slug or item_slug in slug):
            return True
    as_domain = normalize_host(platform) if "." in platform and " " not in platform.strip() else ""
    for host in hosts:
        if as_domain and host_matches(host, as_domain):
            return True
        if slug in _slug(host):
            return True
    return False


class PlatformCoverageValidator:
    """Per perspective: designated vs visited platforms. Perspective indices are 1-based."""

    def validate(self, perspectives: Sequence[ResearchPerspective],
                 outputs: Sequence[WorkerOutput]) -> CoverageReport:
        by_index = {}
        for output in outputs:
            if output.perspective_index is not None and output.perspective_index not in by_index:
                by_index[output.perspective_index] = output

        results: List[PerspectiveCoverage] = []
        for i, perspective in enumerate(perspectives, start=1):
            designated = [p.name for p in perspective.platforms]
            output = by_index.get(i)
            visited: List[str] = []
            if output is not None:
                hosts = [normalize_host(u) for u in output.citations]
                visited = [name for name in designated
                           if platform_visited(name, output.platforms_searched, hosts)]
            coverage = len(visited) / len(designated) if designated else 1.0
            results.append(PerspectiveCoverage(
                perspective_index=i,
                perspective=perspective.perspective,
                worker_id=output.worker_id if output else None,
                designated=designated,
                visited=visited,
                coverage=round(coverage, 3),
                flagged=coverage == 0,
            ))

        report = CoverageReport(perspectives=results)
        if report.flagged:
            logger.warning(f"{len(report.flagged)} perspectives visited none of their designated platforms")
        return report
