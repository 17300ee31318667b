"""
Analyzer response schemas.

Parsing is deserialize-then-validate: pull one JSON object out of the raw
text, coerce enum-valued fields that the analyzer got wrong to safe defaults,
then validate with pydantic. Structural violations raise SchemaError.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from research_pivot.classify.keywords import SECONDARY_THRESHOLD, allocate_workers
from research_pivot.exceptions import SchemaError
from research_pivot.models import (
    ClassificationResult, Complexity, Domain, PerspectiveSet, Specialist,
    DOMAIN_ORDER, DOMAIN_SPECIALISTS, FALLBACK_DOMAIN, GENERALIST, WORKER_COUNTS,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.S | re.I)

DEFAULT_COMPLEXITY = Complexity.MODERATE


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Extract the first JSON object from analyzer output.

    Code fences are allowed; prose before or after the object is ignored.

    Raises:
        SchemaError: no JSON object could be decoded
    """
    if not text or not text.strip():
        raise SchemaError("Empty analyzer response")

    candidates = [m.group(1) for m in _FENCE_RE.finditer(text)]
    candidates.append(text)
    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(candidate[start:])
            except json.JSONDecodeError:
                start = candidate.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = candidate.find("{", start + 1)
    raise SchemaError("No JSON object found in analyzer response", raw=text[:500])


def coerce_domain(value: Any) -> Domain:
    """Map an analyzer-supplied domain onto the enum, defaulting to the fallback domain."""
    if isinstance(value, Domain):
        return value
    normalized = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return Domain(normalized)
    except ValueError:
        logger.warning(f"Unknown domain '{value}' coerced to {FALLBACK_DOMAIN.value}")
        return FALLBACK_DOMAIN


def coerce_complexity(value: Any) -> Complexity:
    if isinstance(value, Complexity):
        return value
    try:
        return Complexity(str(value or "").strip().upper())
    except ValueError:
        logger.warning(f"Unknown complexity '{value}' coerced to {DEFAULT_COMPLEXITY.value}")
        return DEFAULT_COMPLEXITY


def coerce_specialist(value: Any) -> Specialist:
    """Accept specialist names or bare domain names; anything else is the generalist."""
    if isinstance(value, Specialist):
        return value
    normalized = str(value or "").strip().lower().replace("_", "-").replace(" ", "-")
    try:
        return Specialist(normalized)
    except ValueError:
        pass
    try:
        return Specialist(f"{normalized}-researcher")
    except ValueError:
        pass
    try:
        return DOMAIN_SPECIALISTS[Domain(normalized.replace("-", "_"))]
    except ValueError:
        logger.warning(f"Unknown specialist '{value}' coerced to {GENERALIST.value}")
        return GENERALIST


class ClassificationPayload(BaseModel):
    """Raw classification as returned by an analyzer"""
    domain_scores: Dict[str, float]
    primary_domain: Optional[str] = None
    complexity: Optional[str] = None
    confidence: float = Field(default=50, ge=0, le=100)
    reasoning: Optional[str] = None
    pivot_scenarios: List[str] = Field(default_factory=list)

    @field_validator("domain_scores")
    @classmethod
    def scores_in_range(cls, v):
        for name, score in v.items():
            if not 0 <= score <= 100:
                raise ValueError(f"score for {name} outside [0, 100]: {score}")
        return v


def parse_classification(text: str, query: str, source: str) -> ClassificationResult:
    """
    Parse and validate an analyzer classification.

    Unknown score keys are ignored and missing ones count as 0. Worker count
    and allocation are always recomputed locally from the parsed complexity.

    Args:
        text: Raw analyzer output
        query: The classified query
        source: Provenance tag (the analyzer name)

    Raises:
        SchemaError: the response is not a valid classification
    """
    data = extract_json_object(text)
    try:
        payload = ClassificationPayload.model_validate(data)
    except ValidationError as e:
        raise SchemaError(f"{source}: invalid classification: {e.errors()[0]['msg']}", raw=text[:500]) from e

    known = {d.value for d in Domain}
    ignored = [k for k in payload.domain_scores if coerce_key(k) not in known]
    if ignored:
        logger.debug(f"{source}: ignoring unknown score keys {ignored}")
    scores = {d.value: 0 for d in DOMAIN_ORDER}
    for key, value in payload.domain_scores.items():
        k = coerce_key(key)
        if k in known:
            scores[k] = int(round(value))

    if payload.primary_domain is not None:
        primary = coerce_domain(payload.primary_domain)
    else:
        ranked = sorted(DOMAIN_ORDER, key=lambda d: scores[d.value], reverse=True)
        primary = ranked[0] if scores[ranked[0].value] > 0 else FALLBACK_DOMAIN

    secondary = [d for d in DOMAIN_ORDER if d != primary and scores[d.value] > SECONDARY_THRESHOLD]
    secondary.sort(key=lambda d: scores[d.value], reverse=True)

    complexity = coerce_complexity(payload.complexity)
    worker_count = WORKER_COUNTS[complexity]

    try:
        return ClassificationResult(
            query=query,
            domain_scores=scores,
            primary_domain=primary,
            secondary_domains=secondary,
            complexity=complexity,
            worker_count=worker_count,
            allocation=allocate_workers(primary, secondary, worker_count),
            pivot_scenarios=[str(s) for s in payload.pivot_scenarios],
            confidence=int(round(payload.confidence)),
            source=source,
            reasoning=payload.reasoning,
        )
    except ValidationError as e:
        raise SchemaError(f"{source}: classification failed validation: {e}", raw=text[:500]) from e


def coerce_key(key: str) -> str:
    return str(key).strip().lower().replace("-", "_").replace(" ", "_")


def _normalize_platforms(raw: Any) -> List[Dict[str, str]]:
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    platforms = []
    for item in raw:
        if isinstance(item, str):
            platforms.append({"name": item, "reason": ""})
        elif isinstance(item, dict):
            platforms.append({"name": str(item.get("name", "")), "reason": str(item.get("reason", ""))})
    return platforms


def parse_perspectives(text: str, query: str) -> PerspectiveSet:
    """
    Parse and validate a perspective-generation response.

    Domain and specialist values outside the enums are coerced, not rejected.
    The perspective count (4..8) and platform count (1..3) are enforced.

    Raises:
        SchemaError: the response is not a valid perspective set
    """
    data = extract_json_object(text)
    raw_perspectives = data.get("perspectives")
    if not isinstance(raw_perspectives, list):
        raise SchemaError("Perspective response has no 'perspectives' list", raw=text[:500])

    perspectives = []
    for item in raw_perspectives:
        if not isinstance(item, dict):
            raise SchemaError("Perspective entries must be objects", raw=text[:500])
        perspectives.append({
            "perspective": str(item.get("perspective") or item.get("title") or "").strip(),
            "domain": coerce_domain(item.get("domain")),
            "confidence": item.get("confidence", 50),
            "specialist": coerce_specialist(item.get("specialist")),
            "rationale": str(item.get("rationale") or ""),
            "platforms": _normalize_platforms(item.get("platforms")),
        })

    try:
        return PerspectiveSet(
            query=query,
            perspectives=perspectives,
            complexity=coerce_complexity(data.get("complexity")),
            time_sensitive=bool(data.get("time_sensitive", False)),
            reasoning=str(data.get("reasoning") or ""),
        )
    except ValidationError as e:
        raise SchemaError(f"Invalid perspective set: {e.errors()[0]['msg']}", raw=text[:500]) from e
