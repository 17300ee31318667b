"""Shared fixtures: isolated settings, a virtual clock and fake analyzers."""

import asyncio
import random
from typing import Dict, List, Optional

import pytest

from research_pivot.config import Settings
from research_pivot.context import SessionContext
from research_pivot.models import (
    ClassificationResult, Complexity, Domain, DOMAIN_ORDER, WORKER_COUNTS,
)
from research_pivot.classify.keywords import allocate_workers


class VirtualClock:
    """Clock whose sleeps advance virtual time instantly."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.t

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += max(0.0, seconds)
        await asyncio.sleep(0)


class FakeAdapter:
    """Scripted analyzer: each submit pops the next response or raises it."""

    def __init__(self, name: str = "fake", responses=None, model: str = "fake-model"):
        self.name = name
        self.model = model
        self.responses = list(responses or [])
        self.calls: List[Dict] = []

    async def submit(self, prompt, *, model=None, max_tokens=2000, temperature=0.2, timeout=60.0):
        self.calls.append({"prompt": prompt, "model": model, "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"{self.name}: no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeSource:
    """Classification source returning a fixed result or raising."""

    semantic = True

    def __init__(self, name: str, result: Optional[ClassificationResult] = None,
                 error: Optional[BaseException] = None, delay: float = 0.0):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def classify(self, query, trace=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result.model_copy(update={"query": query})


def make_result(domain: Domain, complexity: Complexity, confidence: int = 80,
                source: str = "semantic", scores: Optional[Dict[str, int]] = None) -> ClassificationResult:
    scores = scores or {d.value: (90 if d == domain else 10) for d in DOMAIN_ORDER}
    count = WORKER_COUNTS[complexity]
    return ClassificationResult(
        query="q",
        domain_scores=scores,
        primary_domain=domain,
        secondary_domains=[],
        complexity=complexity,
        worker_count=count,
        allocation=allocate_workers(domain, [], count),
        confidence=confidence,
        source=source,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        LLM_PROVIDERS="",
        ANTHROPIC_API_KEY="test-key",
        CACHE_DIR=str(tmp_path / "cache"),
        SESSION_DIR=str(tmp_path / "session"),
        KEYWORD_DICTIONARY_PATH=None,
        SOURCE_TIERS_PATH=None,
    )


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def context(settings, clock):
    return SessionContext(settings=settings, clock=clock, rng=random.Random(7))
