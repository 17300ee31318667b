"""Classification sources consumed by the consensus resolver."""

import logging
from typing import Optional, Protocol

from research_pivot.classify.keywords import KeywordClassifier
from research_pivot.consensus.dispatch import AnalyzerDispatcher, RetryPhase, RetryTrace
from research_pivot.llm.prompts import classification_prompt
from research_pivot.llm.schema import parse_classification
from research_pivot.models import ClassificationResult

logger = logging.getLogger(__name__)


class ClassificationSource(Protocol):
    name: str
    semantic: bool

    async def classify(self, query: str, trace: Optional[RetryTrace] = None) -> ClassificationResult: ...


class KeywordSource:
    """Adapts the synchronous KeywordClassifier to the source interface."""

    semantic = False

    def __init__(self, classifier: Optional[KeywordClassifier] = None):
        self.classifier = classifier or KeywordClassifier()
        self.name = self.classifier.source_name

    async def classify(self, query: str, trace: Optional[RetryTrace] = None) -> ClassificationResult:
        if trace is not None:
            trace.move(RetryPhase.ATTEMPTING)
        try:
            result = self.classifier.classify(query)
        except Exception as e:
            if trace is not None:
                trace.error_kind = type(e).__name__
                trace.error = str(e)
                trace.move(RetryPhase.FAILED)
            raise
        if trace is not None:
            trace.move(RetryPhase.SUCCEEDED)
        return result


class SemanticClassifier:
    """
    Classifier source backed by one semantic analyzer.

    Prompt, dispatch (throttle + retries), then strict parsing. The result is
    tagged with the adapter name; worker count and allocation are recomputed
    locally rather than trusted from the analyzer.
    """

    semantic = True

    def __init__(self, adapter, dispatcher: AnalyzerDispatcher):
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.name = adapter.name

    async def classify(self, query: str, trace: Optional[RetryTrace] = None) -> ClassificationResult:
        text = await self.dispatcher.call(self.adapter, classification_prompt(query), trace=trace)
        result = parse_classification(text, query, source=self.name)
        logger.info(
            f"{self.name} classified '{query[:50]}' as "
            f"{result.primary_domain.value}/{result.complexity.value} (confidence {result.confidence})"
        )
        return result
