"""Parser for research worker markdown outputs.

Workers write one markdown file each under ``<session>/wave-<n>/``. The
conventions this module reads:

    ## Metadata
    Confidence: HIGH | MEDIUM | LOW | 75%
    Perspective: 2

    ### Limited Coverage Areas / ### Alternative Domains
    ### Tool Gaps / ### Platform Gaps
    - one bullet per gap

    ### Platforms Searched
    - Reddit

Citation URLs are collected from the whole file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from research_pivot.utils.urls import extract_urls

logger = logging.getLogger(__name__)

GAP_SECTIONS = {
    "limited coverage areas": "limited_coverage",
    "alternative domains": "alternative_domains",
    "tool gaps": "tool_gaps",
    "platform gaps": "platform_gaps",
}
PLATFORMS_SECTION = "platforms searched"

CONFIDENCE_LABELS = ("HIGH", "MEDIUM", "LOW")

_METADATA_RE = re.compile(r"^##\s+metadata\s*$", re.I | re.M)
_HEADING_RE = re.compile(r"^(#{2,4})\s+(.+?)\s*$")
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*\S)\s*$")
_CONFIDENCE_RE = re.compile(r"^\**confidence\**\s*:\**\s*(.+)$", re.I | re.M)
_PERSPECTIVE_RE = re.compile(r"^\**perspective\**\s*:\**\s*#?(\d+)", re.I | re.M)
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")


@dataclass
class WorkerOutput:
    worker_id: str
    text: str
    body: str
    path: Optional[Path] = None
    confidence_label: Optional[str] = None
    confidence_pct: Optional[float] = None
    perspective_index: Optional[int] = None
    citations: List[str] = field(default_factory=list)
    gaps: Dict[str, List[str]] = field(default_factory=dict)
    platforms_searched: List[str] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.body.split())

    @classmethod
    def from_text(cls, worker_id: str, text: str, path: Optional[Path] = None) -> "WorkerOutput":
        m = _METADATA_RE.search(text)
        body = text[:m.start()] if m else text
        metadata = text[m.end():] if m else ""

        label, pct = _parse_confidence(metadata or text)
        pm = _PERSPECTIVE_RE.search(metadata or text)
        sections = _bullet_sections(text)

        gaps = {}
        for heading, category in GAP_SECTIONS.items():
            items = sections.get(heading)
            if items:
                gaps[category] = items

        return cls(
            worker_id=worker_id,
            text=text,
            body=body,
            path=path,
            confidence_label=label,
            confidence_pct=pct,
            perspective_index=int(pm.group(1)) if pm else None,
            citations=extract_urls(text),
            gaps=gaps,
            platforms_searched=sections.get(PLATFORMS_SECTION, []),
        )


def _parse_confidence(text: str):
    m = _CONFIDENCE_RE.search(text)
    if not m:
        return None, None
    value = m.group(1).strip().strip("*").strip()
    upper = value.upper()
    for label in CONFIDENCE_LABELS:
        if upper.startswith(label):
            return label, None
    pm = _PERCENT_RE.search(value)
    if pm:
        return None, max(0.0, min(100.0, float(pm.group(1))))
    return None, None


def _bullet_sections(text: str) -> Dict[str, List[str]]:
    """Bullets grouped by the lower-cased heading they sit under."""
    sections: Dict[str, List[str]] = {}
    current = None
    for line in text.splitlines():
        hm = _HEADING_RE.match(line)
        if hm:
            current = hm.group(2).strip().strip(":").lower()
            continue
        if current is None:
            continue
        bm = _BULLET_RE.match(line)
        if bm:
            item = bm.group(1).strip()
            if item.lower() not in ("none", "n/a", "-"):
                sections.setdefault(current, []).append(item)
    return sections


def parse_worker_output(path: Union[str, Path]) -> WorkerOutput:
    p = Path(path)
    return WorkerOutput.from_text(p.stem, p.read_text(encoding="utf-8", errors="replace"), path=p)


def load_wave(session_dir: Union[str, Path], wave: int) -> List[WorkerOutput]:
    """Parse every worker output of a wave, sorted by file name."""
    wave_dir = Path(session_dir) / f"wave-{wave}"
    if not wave_dir.is_dir():
        return []
    outputs = []
    for p in sorted(wave_dir.glob("*.md")):
        try:
            outputs.append(parse_worker_output(p))
        except OSError as e:
            logger.warning(f"Skipping unreadable worker output {p}: {e}")
    logger.info(f"Loaded {len(outputs)} worker outputs from {wave_dir}")
    return outputs
