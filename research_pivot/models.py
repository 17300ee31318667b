from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum, IntEnum


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Domain(str, Enum):
    """Subject-matter domains. Declaration order is the tie-break order."""
    ACADEMIC = "academic"
    TECHNICAL = "technical"
    SOCIAL_MEDIA = "social_media"
    SECURITY = "security"
    NEWS = "news"
    BUSINESS = "business"


class Specialist(str, Enum):
    """Research worker types"""
    ACADEMIC = "academic-researcher"
    TECHNICAL = "technical-researcher"
    SOCIAL_MEDIA = "social-media-researcher"
    SECURITY = "security-researcher"
    NEWS = "news-researcher"
    BUSINESS = "business-researcher"
    WEB = "web-researcher"


class Complexity(str, Enum):
    SIMPLE = "SIMPLE"
    MODERATE = "MODERATE"
    COMPLEX = "COMPLEX"


class ResolutionMethod(str, Enum):
    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    FALLBACK = "fallback"


class QualityBand(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class TrustTier(IntEnum):
    INDEPENDENT = 1
    QUASI_INDEPENDENT = 2
    VENDOR = 3
    SUSPECT = 4


DOMAIN_ORDER: List[Domain] = list(Domain)
FALLBACK_DOMAIN = Domain.TECHNICAL
GENERALIST = Specialist.WEB

DOMAIN_SPECIALISTS: Dict[Domain, Specialist] = {
    Domain.ACADEMIC: Specialist.ACADEMIC,
    Domain.TECHNICAL: Specialist.TECHNICAL,
    Domain.SOCIAL_MEDIA: Specialist.SOCIAL_MEDIA,
    Domain.SECURITY: Specialist.SECURITY,
    Domain.NEWS: Specialist.NEWS,
    Domain.BUSINESS: Specialist.BUSINESS,
}

# Filled one slot each (when unallocated) before round-robin over every type
GENERALIST_FILL_ORDER: List[Specialist] = [Specialist.WEB, Specialist.ACADEMIC, Specialist.TECHNICAL]

WORKER_COUNTS: Dict[Complexity, int] = {
    Complexity.SIMPLE: 4,
    Complexity.MODERATE: 5,
    Complexity.COMPLEX: 6,
}


class ClassificationResult(BaseModel):
    query: str
    domain_scores: Dict[str, int]
    primary_domain: Domain
    secondary_domains: List[Domain] = Field(default_factory=list)
    complexity: Complexity
    worker_count: int
    allocation: Dict[str, int]
    pivot_scenarios: List[str] = Field(default_factory=list)
    confidence: int = Field(default=0, ge=0, le=100)
    source: str = "keyword"  # provenance: keyword, analyzer name or consensus
    reasoning: Optional[str] = None

    @model_validator(mode="after")
    def check_invariants(self):
        if self.worker_count != WORKER_COUNTS[self.complexity]:
            raise ValueError(
                f"worker_count {self.worker_count} does not match complexity {self.complexity.value}"
            )
        if sum(self.allocation.values()) != self.worker_count:
            raise ValueError("allocation does not sum to worker_count")
        if any(v < 0 for v in self.allocation.values()):
            raise ValueError("allocation counts must be non-negative")
        for domain, score in self.domain_scores.items():
            if score < 0:
                raise ValueError(f"negative score for {domain}")
            # Keyword scores are raw match totals and may exceed 100
            if self.source != "keyword" and score > 100:
                raise ValueError(f"score for {domain} outside [0, 100]")
        return self

    def clamped_scores(self) -> Dict[str, int]:
        return {d: max(0, min(100, s)) for d, s in self.domain_scores.items()}


class SourceAttempt(BaseModel):
    """Attempt log for one classification source"""
    source: str
    attempts: int = 0
    state: Literal["succeeded", "failed"] = "failed"
    error_kind: Optional[str] = None
    error: Optional[str] = None
    elapsed_sec: float = 0.0
    waits: List[float] = Field(default_factory=list)


class ConsensusAgreement(BaseModel):
    domain_votes: Dict[str, int] = Field(default_factory=dict)
    complexity_votes: Dict[str, int] = Field(default_factory=dict)
    valid_sources: int = 0
    total_sources: int = 0


class ConsensusOutcome(BaseModel):
    query: str
    results: Dict[str, Optional[ClassificationResult]]
    final: ClassificationResult
    method: ResolutionMethod
    agreement: ConsensusAgreement
    attempts: List[SourceAttempt] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unanimity(self):
        if self.method == ResolutionMethod.UNANIMOUS:
            valid = [r for r in self.results.values() if r is not None]
            if len({(r.primary_domain, r.complexity) for r in valid}) > 1:
                raise ValueError("unanimous resolution with disagreeing sources")
        return self


class PlatformSuggestion(BaseModel):
    name: str = Field(min_length=1)
    reason: str = ""


class ResearchPerspective(BaseModel):
    perspective: str = Field(min_length=1)
    domain: Domain
    confidence: int = Field(ge=0, le=100)
    specialist: Specialist
    rationale: str = ""
    platforms: List[PlatformSuggestion] = Field(min_length=1, max_length=3)


class PerspectiveSet(BaseModel):
    query: str
    perspectives: List[ResearchPerspective] = Field(min_length=4, max_length=8)
    complexity: Complexity
    time_sensitive: bool = False
    reasoning: str = ""
    source: str = "semantic"


class PerspectiveValidation(BaseModel):
    """Keyword cross-check of one perspective. Mutated only by the re-resolution pass."""
    perspective: ResearchPerspective
    keyword_domain: Domain
    domain_match: bool
    adjusted_confidence: int = Field(ge=0, le=100)
    needs_resolution: bool = False
    backup_specialist: Optional[Specialist] = None
    resolution: Optional[str] = None


class PerspectivePlan(BaseModel):
    perspective_set: PerspectiveSet
    validations: List[PerspectiveValidation]
    allocation: Dict[str, int]

    @property
    def total_workers(self) -> int:
        return sum(self.allocation.values())


class SourceClassification(BaseModel):
    url: str
    host: str
    tier: TrustTier
    category: str
    confidence: Literal["high", "default"]


class SourceQualityReport(BaseModel):
    total: int = 0
    tier1: int = 0
    tier2: int = 0
    tier3: int = 0
    tier4: int = 0
    vendor_fraction: float = 0.0
    independent_fraction: float = 0.0
    flags: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    sources: List[SourceClassification] = Field(default_factory=list)


class RebalancingAgentSpec(BaseModel):
    track: str
    focus: str
    source_tier_priority: List[int]
    worker_type: Specialist


class QualityGateResult(BaseModel):
    passed: bool
    triggers: List[str] = Field(default_factory=list)
    rebalancing_agents: List[RebalancingAgentSpec] = Field(default_factory=list)
    should_rebalance: bool = False
    rebalance_attempts: int = 0
    reason: str = ""
    report: SourceQualityReport


class AgentQualityScore(BaseModel):
    worker_id: str
    size_score: int = Field(ge=0, le=40)
    citation_score: int = Field(ge=0, le=30)
    confidence_score: int = Field(ge=0, le=30)
    total: int = Field(ge=0, le=100)
    band: QualityBand

    @model_validator(mode="after")
    def check_total(self):
        if self.total != self.size_score + self.citation_score + self.confidence_score:
            raise ValueError("total must equal the sum of the sub-scores")
        return self


class WaveQualitySummary(BaseModel):
    wave: int
    mean_score: float = 0.0
    band_counts: Dict[str, int] = Field(default_factory=dict)
    scores: List[AgentQualityScore] = Field(default_factory=list)


class DomainSignal(BaseModel):
    theme: Domain
    strength: float
    worker_count: int
    keywords: List[str] = Field(default_factory=list)
    strong: bool = False


class CoverageGap(BaseModel):
    category: str
    text: str
    workers: List[str] = Field(default_factory=list)
    high_quality: bool = False
    promoted: bool = False


class GapReport(BaseModel):
    gaps: List[CoverageGap] = Field(default_factory=list)

    @property
    def promoted(self) -> List[CoverageGap]:
        return [g for g in self.gaps if g.promoted]


class PerspectiveCoverage(BaseModel):
    perspective_index: int
    perspective: str
    worker_id: Optional[str] = None
    designated: List[str] = Field(default_factory=list)
    visited: List[str] = Field(default_factory=list)
    coverage: float = 0.0
    flagged: bool = False


class CoverageReport(BaseModel):
    perspectives: List[PerspectiveCoverage] = Field(default_factory=list)

    @property
    def flagged(self) -> List[PerspectiveCoverage]:
        return [p for p in self.perspectives if p.flagged]


class SpecialistRecommendation(BaseModel):
    domain: str
    track: str
    worker_type: Specialist
    rationale: str
    count: int = Field(default=1, ge=1)


class PivotDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    wave: int = 1
    launch_wave2: bool
    reasons: List[str] = Field(default_factory=list)
    recommendations: List[SpecialistRecommendation] = Field(default_factory=list)
    decided_at: str = Field(default_factory=utc_now_iso)


class CacheEntry(BaseModel):
    query: str
    normalized_query: str
    key: str
    result: Dict[str, Any]
    created_at: float
    expires_at: float
    last_accessed_at: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class PhaseMarker(BaseModel):
    stage: str
    marker: str
    timestamp: str = Field(default_factory=utc_now_iso)
    metrics: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


class GateCheck(BaseModel):
    stage: str
    satisfied: bool
    missing: List[str] = Field(default_factory=list)


class PhaseStatus(BaseModel):
    session_dir: str
    completed: List[str] = Field(default_factory=list)
    next_stage: Optional[str] = None
    markers: Dict[str, PhaseMarker] = Field(default_factory=dict)
    worker_counts: Dict[str, int] = Field(default_factory=dict)
