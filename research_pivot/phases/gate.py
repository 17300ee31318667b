"""
Phase gate: a marker-file state machine over one research session.

    wave1 -> validation -> pivot -> wave2 (complete | skipped) -> citations -> synthesis

Each stage may only be marked complete once its direct predecessor's marker
exists. Markers are JSON files under ``<session>/analysis/phase-<marker>.json``.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from research_pivot.exceptions import GateBlockedError, InputError
from research_pivot.models import GateCheck, PhaseMarker, PhaseStatus
from research_pivot.utils.file_ops import atomic_write_json, read_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    name: str
    markers: Tuple[str, ...]
    requires: Tuple[str, ...]  # any one of these markers satisfies the gate


WAVE1_OUTPUTS = "wave-1-outputs"
WAVE2_SKIPPED = "wave-2-skipped"

STAGES: Tuple[Stage, ...] = (
    Stage("wave1", ("wave-1-complete",), (WAVE1_OUTPUTS,)),
    Stage("validation", ("wave-1-validated",), ("wave-1-complete",)),
    Stage("pivot", ("pivot-decided",), ("wave-1-validated",)),
    Stage("wave2", ("wave-2-complete", WAVE2_SKIPPED), ("pivot-decided",)),
    Stage("citations", ("citations-validated",), ("wave-2-complete", WAVE2_SKIPPED)),
    Stage("synthesis", ("synthesis-complete",), ("citations-validated",)),
)
STAGE_NAMES = [s.name for s in STAGES]
_BY_NAME = {s.name: s for s in STAGES}


class PhaseGate:
    """Verifies and records phase transitions for one session directory."""

    def __init__(self, session_dir: Union[str, Path]):
        self.session_dir = Path(session_dir)
        self.analysis_dir = self.session_dir / "analysis"

    @staticmethod
    def stage(name: str) -> Stage:
        try:
            return _BY_NAME[name]
        except KeyError:
            raise InputError(f"Unknown stage '{name}' (expected one of: {', '.join(STAGE_NAMES)})")

    def marker_path(self, marker: str) -> Path:
        return self.analysis_dir / f"phase-{marker}.json"

    def has_marker(self, marker: str) -> bool:
        if marker == WAVE1_OUTPUTS:
            return self.count(1) > 0
        return self.marker_path(marker).exists()

    def read_marker(self, marker: str) -> Optional[PhaseMarker]:
        try:
            data = read_json(self.marker_path(marker))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable marker {marker}: {e}")
            return None
        if data is None:
            return None
        try:
            return PhaseMarker.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid marker {marker}: {e}")
            return None

    def count(self, wave: int) -> int:
        """Number of worker outputs (markdown files) for a wave."""
        wave_dir = self.session_dir / f"wave-{wave}"
        if not wave_dir.is_dir():
            return 0
        return sum(1 for p in wave_dir.glob("*.md") if p.is_file())

    def verify(self, stage: str) -> GateCheck:
        """Check only the direct predecessor of ``stage``."""
        s = self.stage(stage)
        satisfied = any(self.has_marker(m) for m in s.requires)
        missing = [] if satisfied else list(s.requires)
        return GateCheck(stage=stage, satisfied=satisfied, missing=missing)

    def _write(self, s: Stage, marker: str, metrics: Optional[Dict[str, Any]], reason: Optional[str]) -> PhaseMarker:
        check = self.verify(s.name)
        if not check.satisfied:
            logger.warning(f"Gate blocked for {s.name}: missing {check.missing}")
            raise GateBlockedError(s.name, check.missing)
        record = PhaseMarker(stage=s.name, marker=marker, metrics=metrics, reason=reason)
        atomic_write_json(self.marker_path(marker), record.model_dump(exclude_none=True))
        logger.info(f"Phase marker written: {marker}")
        return record

    def mark_complete(self, stage: str, metrics: Optional[Dict[str, Any]] = None) -> PhaseMarker:
        """
        Record a stage as complete.

        Re-marking an already complete stage rewrites the marker with a fresh
        timestamp.

        Raises:
            GateBlockedError: the predecessor marker is missing
        """
        s = self.stage(stage)
        return self._write(s, s.markers[0], metrics, None)

    def skip_wave2(self, reason: str) -> PhaseMarker:
        if not reason or not reason.strip():
            raise InputError("A reason is required to skip wave 2")
        return self._write(self.stage("wave2"), WAVE2_SKIPPED, None, reason.strip())

    def status(self) -> PhaseStatus:
        completed: List[str] = []
        markers: Dict[str, PhaseMarker] = {}
        for s in STAGES:
            found = [m for m in s.markers if self.marker_path(m).exists()]
            for m in found:
                record = self.read_marker(m)
                if record is not None:
                    markers[m] = record
            if found:
                completed.append(s.name)
        next_stage = next((s.name for s in STAGES if s.name not in completed), None)
        return PhaseStatus(
            session_dir=str(self.session_dir),
            completed=completed,
            next_stage=next_stage,
            markers=markers,
            worker_counts={"wave-1": self.count(1), "wave-2": self.count(2)},
        )
