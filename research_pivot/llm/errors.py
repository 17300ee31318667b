"""Map arbitrary analyzer failures onto the typed error hierarchy."""

import asyncio
import re
from typing import Optional

import httpx

from research_pivot.exceptions import (
    AuthError, ProviderError, ResearchPivotError, TransientProviderError,
)

_RETRY_HINT = re.compile(
    r"(?:retry[- ]after|retry in|try again in)\D{0,3}(\d+(?:\.\d+)?)\s*(ms|milliseconds|s|sec|secs|seconds)?",
    re.I,
)

# Checked in order; auth first so "401 ... try again" is never retried
_PATTERNS = (
    ("auth", ("unauthorized", "401", "403", "invalid api key", "invalid x-api-key",
              "authentication", "permission denied", "forbidden")),
    ("quota", ("quota", "insufficient_quota", "resource_exhausted", "billing")),
    ("rate_limit", ("rate limit", "rate_limit", "ratelimit", "429", "too many requests")),
    ("timeout", ("timeout", "timed out", "deadline exceeded")),
    ("overloaded", ("overloaded", "503", "529", "temporarily unavailable", "server error")),
)


def parse_retry_after(text: str) -> Optional[float]:
    """Extract an explicit "retry after N seconds" hint from an error message."""
    m = _RETRY_HINT.search(text or "")
    if not m:
        return None
    value = float(m.group(1))
    unit = (m.group(2) or "s").lower()
    if unit in ("ms", "milliseconds"):
        value /= 1000.0
    return value


def classify_error(exc: BaseException, provider: Optional[str] = None) -> ResearchPivotError:
    """
    Normalize an exception raised while calling an analyzer.

    Typed errors pass through unchanged. Timeouts become transient; other
    exceptions are classified by message. Anything unrecognised is a
    non-retryable ProviderError.
    """
    if isinstance(exc, ResearchPivotError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return TransientProviderError(f"timed out: {exc}".rstrip(": "), provider=provider, kind="timeout")

    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    for kind, needles in _PATTERNS:
        if any(n in lowered for n in needles):
            if kind == "auth":
                return AuthError(message, provider=provider)
            return TransientProviderError(
                message, provider=provider, kind=kind, retry_after=parse_retry_after(message)
            )
    if isinstance(exc, httpx.TransportError):
        return TransientProviderError(message, provider=provider, kind="network")
    return ProviderError(message, provider=provider)
