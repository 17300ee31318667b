from .gate import PhaseGate, STAGE_NAMES

__all__ = ["PhaseGate", "STAGE_NAMES"]
