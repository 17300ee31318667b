"""Tests for multi-source consensus classification."""

import asyncio

import pytest
from pydantic import ValidationError

from conftest import FakeAdapter, FakeSource, make_result
from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.consensus.dispatch import AnalyzerDispatcher
from research_pivot.consensus.resolver import ConsensusResolver
from research_pivot.data.cache import ResultCache
from research_pivot.exceptions import AllSourcesFailedError, InputError, ProviderError
from research_pivot.llm.semantic import KeywordSource, SemanticClassifier
from research_pivot.models import (
    Complexity, ConsensusAgreement, ConsensusOutcome, Domain, ResolutionMethod,
)

OSINT = "Research OSINT tools for threat intelligence"


@pytest.fixture
def keyword_source(settings):
    return KeywordSource(KeywordClassifier(settings=settings))


def _resolver(keyword_source, context, *sources, cache=None):
    return ConsensusResolver(keyword_source, list(sources), context, cache=cache)


class TestResolutionMethods:
    """Voting rules and method tags."""

    @pytest.mark.asyncio
    async def test_unanimous_osint(self, keyword_source, context):
        a = FakeSource("semantic-a", make_result(Domain.SECURITY, Complexity.COMPLEX, 90))
        b = FakeSource("semantic-b", make_result(Domain.SECURITY, Complexity.COMPLEX, 85))
        outcome = await _resolver(keyword_source, context, a, b).resolve(OSINT)

        assert outcome.method == ResolutionMethod.UNANIMOUS
        assert outcome.final.primary_domain == Domain.SECURITY
        assert outcome.final.worker_count == 6
        assert sum(outcome.final.allocation.values()) == 6
        assert outcome.final.source == "consensus"
        assert list(outcome.results) == ["keyword", "semantic-a", "semantic-b"]
        assert outcome.agreement.valid_sources == 3
        assert outcome.agreement.domain_votes == {"security": 3}

    @pytest.mark.asyncio
    async def test_majority(self, keyword_source, context):
        a = FakeSource("a", make_result(Domain.SECURITY, Complexity.MODERATE, 70))
        b = FakeSource("b", make_result(Domain.TECHNICAL, Complexity.MODERATE, 95))
        outcome = await _resolver(keyword_source, context, a, b).resolve(OSINT)

        assert outcome.method == ResolutionMethod.MAJORITY
        assert outcome.final.primary_domain == Domain.SECURITY
        assert outcome.final.complexity == Complexity.MODERATE
        # Worker count follows the resolved complexity, not any one source
        assert outcome.final.worker_count == 5

    @pytest.mark.asyncio
    async def test_weighted_prefers_most_confident_semantic(self, keyword_source, context):
        a = FakeSource("a", make_result(Domain.ACADEMIC, Complexity.SIMPLE, 90))
        b = FakeSource("b", make_result(Domain.BUSINESS, Complexity.MODERATE, 60))
        outcome = await _resolver(keyword_source, context, a, b).resolve(OSINT)

        assert outcome.method == ResolutionMethod.WEIGHTED
        assert outcome.final.primary_domain == Domain.ACADEMIC
        assert outcome.final.complexity == Complexity.SIMPLE
        assert outcome.final.worker_count == 4
        assert outcome.final.confidence == 90

    @pytest.mark.asyncio
    async def test_single_valid_result_is_fallback(self, keyword_source, context):
        a = FakeSource("a", error=ProviderError("down", provider="a"))
        b = FakeSource("b", error=asyncio.TimeoutError())
        outcome = await _resolver(keyword_source, context, a, b).resolve(OSINT)

        assert outcome.method == ResolutionMethod.FALLBACK
        assert outcome.results["a"] is None
        assert outcome.results["b"] is None
        assert outcome.final.primary_domain == Domain.SECURITY
        states = {a.source: a.state for a in outcome.attempts}
        assert states == {"keyword": "succeeded", "a": "failed", "b": "failed"}

    @pytest.mark.asyncio
    async def test_all_sources_failed(self, context):
        failing = FakeSource("keyword", error=RuntimeError("broken"))
        a = FakeSource("a", error=ProviderError("down"))
        with pytest.raises(AllSourcesFailedError) as exc:
            await ConsensusResolver(failing, [a], context).resolve(OSINT)
        assert set(exc.value.errors) == {"keyword", "a"}

    @pytest.mark.asyncio
    async def test_empty_query(self, keyword_source, context):
        with pytest.raises(InputError):
            await _resolver(keyword_source, context).resolve("  ")


class TestConsensusInvariants:
    @pytest.mark.asyncio
    async def test_scores_clamped_in_final(self, keyword_source, context):
        query = " ".join(["malware"] * 15)
        outcome = await _resolver(keyword_source, context).resolve(query)
        assert outcome.results["keyword"].domain_scores["security"] == 150
        assert outcome.final.domain_scores["security"] == 100
        assert all(0 <= s <= 100 for s in outcome.final.domain_scores.values())

    @pytest.mark.asyncio
    async def test_independent_of_completion_order(self, keyword_source, context):
        fast = FakeSource("a", make_result(Domain.ACADEMIC, Complexity.SIMPLE, 90), delay=0.0)
        slow = FakeSource("b", make_result(Domain.BUSINESS, Complexity.MODERATE, 60), delay=0.05)
        first = await _resolver(keyword_source, context, fast, slow).resolve(OSINT)

        fast.delay, slow.delay = 0.05, 0.0
        second = await _resolver(keyword_source, context, fast, slow).resolve(OSINT)
        assert first.final == second.final
        assert first.method == second.method

    @pytest.mark.asyncio
    async def test_deadline_does_not_cancel_siblings(self, keyword_source, context):
        context.settings = context.settings.model_copy(update={"ANALYZER_DEADLINE_SEC": 0.05})
        hung = FakeSource("hung", make_result(Domain.NEWS, Complexity.SIMPLE), delay=5)
        ok = FakeSource("ok", make_result(Domain.SECURITY, Complexity.COMPLEX))
        resolver = _resolver(keyword_source, context, hung, ok)
        outcome = await resolver.resolve(OSINT)

        assert outcome.results["hung"] is None
        assert outcome.results["ok"] is not None
        hung_attempt = next(a for a in outcome.attempts if a.source == "hung")
        assert hung_attempt.error_kind == "deadline"
        assert outcome.method == ResolutionMethod.UNANIMOUS

    def test_unanimous_requires_agreement(self):
        a = make_result(Domain.SECURITY, Complexity.COMPLEX)
        b = make_result(Domain.NEWS, Complexity.COMPLEX)
        with pytest.raises(ValidationError):
            ConsensusOutcome(
                query="q", results={"a": a, "b": b}, final=a,
                method=ResolutionMethod.UNANIMOUS, agreement=ConsensusAgreement(),
            )


class TestSemanticSource:
    """End to end through dispatch and parsing."""

    @pytest.mark.asyncio
    async def test_semantic_classifier_with_retry(self, keyword_source, context):
        body = ('```json\n{"domain_scores": {"security": 95, "technical": 40}, '
                '"primary_domain": "security", "complexity": "COMPLEX", "confidence": 91}\n```')
        adapter = FakeAdapter(name="anthropic", responses=[RuntimeError("503 overloaded"), body])
        semantic = SemanticClassifier(adapter, AnalyzerDispatcher(context))
        outcome = await _resolver(keyword_source, context, semantic).resolve(OSINT)

        assert outcome.method == ResolutionMethod.UNANIMOUS
        assert outcome.results["anthropic"].source == "anthropic"
        attempt = next(a for a in outcome.attempts if a.source == "anthropic")
        assert attempt.attempts == 2
        assert len(attempt.waits) == 1

    @pytest.mark.asyncio
    async def test_malformed_output_fails_that_source_only(self, keyword_source, context):
        adapter = FakeAdapter(name="openai", responses=["I think it is security."])
        semantic = SemanticClassifier(adapter, AnalyzerDispatcher(context))
        outcome = await _resolver(keyword_source, context, semantic).resolve(OSINT)

        assert outcome.method == ResolutionMethod.FALLBACK
        assert outcome.results["openai"] is None
        assert len(adapter.calls) == 1


class TestCachedClassify:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, keyword_source, context, settings, tmp_path):
        cache = ResultCache(root=str(tmp_path / "c"), settings=settings)
        a = FakeSource("a", make_result(Domain.SECURITY, Complexity.COMPLEX))
        resolver = _resolver(keyword_source, context, a, cache=cache)

        first = await resolver.classify(OSINT)
        second = await resolver.classify(OSINT.upper() + "!")
        assert a.calls == 1
        assert second.final == first.final

    @pytest.mark.asyncio
    async def test_time_sensitive_queries_bypass_cache(self, keyword_source, context, settings, tmp_path):
        cache = ResultCache(root=str(tmp_path / "c"), settings=settings)
        a = FakeSource("a", make_result(Domain.NEWS, Complexity.SIMPLE))
        resolver = _resolver(keyword_source, context, a, cache=cache)
        await resolver.classify("latest ransomware news")
        await resolver.classify("latest ransomware news")
        assert a.calls == 2
