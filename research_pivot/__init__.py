"""
Research Pivot - research planning, evidence quality gates and phase control
"""

__version__ = "1.0.0"

__all__ = [
    "ClassificationResult",
    "ConsensusResolver",
    "KeywordClassifier",
    "PhaseGate",
    "ResearchPipeline",
    "ResultCache",
    "Settings",
    "__version__",
]

def __getattr__(name: str):
    """Lazy import to avoid import-time side effects."""
    if name == "ClassificationResult":
        from .models import ClassificationResult
        return ClassificationResult
    elif name == "ConsensusResolver":
        from .consensus.resolver import ConsensusResolver
        return ConsensusResolver
    elif name == "KeywordClassifier":
        from .classify.keywords import KeywordClassifier
        return KeywordClassifier
    elif name == "PhaseGate":
        from .phases.gate import PhaseGate
        return PhaseGate
    elif name == "ResearchPipeline":
        from .pipeline import ResearchPipeline
        return ResearchPipeline
    elif name == "ResultCache":
        from .data.cache import ResultCache
        return ResultCache
    elif name == "Settings":
        from research_pivot.config.settings import Settings
        return Settings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
