"""
Analyzer dispatch: throttle, per-attempt timeout and retry with backoff.

Retries are driven by tenacity. The wait strategy and the retry trace are
ours so the backoff bound and the attempt state machine are observable and
testable on a virtual clock.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from research_pivot.context import SessionContext
from research_pivot.exceptions import TransientProviderError
from research_pivot.llm.errors import classify_error
from research_pivot.monitoring_metrics import ANALYZER_ERRORS, ANALYZER_LATENCY, ANALYZER_REQUESTS

logger = structlog.get_logger(__name__)


class RetryPhase(str, enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryTrace:
    """State machine log for one dispatched call.

    IDLE -> ATTEMPTING -> (WAITING -> ATTEMPTING)* -> SUCCEEDED | FAILED
    """
    analyzer: str
    phase: RetryPhase = RetryPhase.IDLE
    attempts: int = 0
    waits: List[float] = field(default_factory=list)
    transitions: List[Tuple[RetryPhase, int, Optional[float]]] = field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None

    _ALLOWED = {
        RetryPhase.IDLE: {RetryPhase.ATTEMPTING},
        RetryPhase.ATTEMPTING: {RetryPhase.WAITING, RetryPhase.SUCCEEDED, RetryPhase.FAILED},
        RetryPhase.WAITING: {RetryPhase.ATTEMPTING},
        RetryPhase.SUCCEEDED: set(),
        RetryPhase.FAILED: set(),
    }

    def move(self, phase: RetryPhase, delay: Optional[float] = None) -> None:
        if phase not in self._ALLOWED[self.phase]:
            raise RuntimeError(f"Illegal retry transition {self.phase.value} -> {phase.value}")
        if phase == RetryPhase.ATTEMPTING:
            self.attempts += 1
        if phase == RetryPhase.WAITING and delay is not None:
            self.waits.append(delay)
        self.phase = phase
        self.transitions.append((phase, self.attempts, delay))

    @property
    def finished(self) -> bool:
        return self.phase in (RetryPhase.SUCCEEDED, RetryPhase.FAILED)


class BackoffWait(wait_base):
    """
    Exponential backoff with jitter and retry-after override.

    Retry k (k >= 1) waits min(base * 2**(k-1), cap) scaled by a uniform
    jitter factor in [1 - jitter, 1 + jitter]. A retry-after hint on the last
    error replaces the computed delay with hint + buffer, bounded by
    max_retry_after.
    """

    def __init__(self, base: float, cap: float, jitter: float, rng,
                 buffer: float = 1.0, max_retry_after: float = 120.0):
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self.rng = rng
        self.buffer = buffer
        self.max_retry_after = max_retry_after

    def backoff(self, retry_number: int) -> float:
        raw = min(self.base * (2 ** (retry_number - 1)), self.cap)
        return raw * self.rng.uniform(1 - self.jitter, 1 + self.jitter)

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        hint = getattr(exc, "retry_after", None)
        if hint is not None:
            return min(hint + self.buffer, self.max_retry_after)
        return self.backoff(retry_state.attempt_number)


class AnalyzerDispatcher:
    """Sends prompts to analyzers under the session throttle and retry budget."""

    def __init__(self, context: SessionContext):
        self.context = context
        self.settings = context.settings

    def _wait(self) -> BackoffWait:
        s = self.settings
        return BackoffWait(
            base=s.RETRY_BACKOFF_BASE_SECONDS,
            cap=s.RETRY_BACKOFF_MAX_SECONDS,
            jitter=s.RETRY_JITTER,
            rng=self.context.rng,
            buffer=s.RETRY_AFTER_BUFFER_SEC,
            max_retry_after=s.RETRY_AFTER_MAX_SEC,
        )

    async def _attempt(self, adapter, prompt: str, timeout: float) -> str:
        name = adapter.name
        ANALYZER_REQUESTS.labels(analyzer=name).inc()
        started = time.perf_counter()
        async with self.context.rate_limiter.slot(name):
            try:
                return await asyncio.wait_for(
                    adapter.submit(
                        prompt,
                        model=getattr(adapter, "model", None),
                        max_tokens=self.settings.ANALYZER_MAX_TOKENS,
                        temperature=self.settings.ANALYZER_TEMPERATURE,
                        timeout=timeout,
                    ),
                    timeout=timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                err = classify_error(e, provider=name)
                ANALYZER_ERRORS.labels(analyzer=name, kind=getattr(err, "kind", "schema")).inc()
                if err is e:
                    raise
                raise err from e
            finally:
                ANALYZER_LATENCY.labels(analyzer=name).observe(time.perf_counter() - started)

    async def call(self, adapter, prompt: str, *, timeout: Optional[float] = None,
                   trace: Optional[RetryTrace] = None) -> str:
        """
        Submit one prompt with retries.

        Only TransientProviderError is retried. Auth, provider and schema
        errors fail on the attempt that raised them.

        Args:
            adapter: SemanticAnalyzerAdapter
            prompt: Prompt text
            timeout: Per-attempt timeout (defaults to ANALYZER_TIMEOUT_SEC)
            trace: Optional RetryTrace to record the attempt state machine into

        Returns:
            Raw analyzer text
        """
        timeout = timeout or self.settings.ANALYZER_TIMEOUT_SEC
        trace = trace if trace is not None else RetryTrace(analyzer=adapter.name)
        log = logger.bind(analyzer=adapter.name)

        def before(retry_state: RetryCallState) -> None:
            trace.move(RetryPhase.ATTEMPTING)

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            exc = retry_state.outcome.exception()
            log.warning("analyzer_retry", attempt=retry_state.attempt_number,
                        kind=getattr(exc, "kind", None), delay=round(delay, 3))
            trace.move(RetryPhase.WAITING, delay)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.RETRY_MAX_TRIES),
            wait=self._wait(),
            retry=retry_if_exception_type(TransientProviderError),
            sleep=self.context.clock.sleep,
            before=before,
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    text = await self._attempt(adapter, prompt, timeout)
        except Exception as e:
            trace.error_kind = getattr(e, "kind", type(e).__name__)
            trace.error = str(e)
            trace.move(RetryPhase.FAILED)
            log.warning("analyzer_failed", attempts=trace.attempts, kind=trace.error_kind, error=str(e))
            raise
        trace.move(RetryPhase.SUCCEEDED)
        log.debug("analyzer_succeeded", attempts=trace.attempts)
        return text
