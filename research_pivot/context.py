"""
Session context: the explicit home of per-session mutable state.

The analyzer throttle, the cached bearer tokens, the clock and the jitter RNG
live here instead of module globals, so independent sessions (and tests) can
run side by side without cross-talk.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import random

from research_pivot.config import Settings, get_settings
from research_pivot.consensus.throttle import Clock, RateLimiter, SystemClock


@dataclass
class SessionContext:
    settings: Settings = field(default_factory=get_settings)
    clock: Clock = field(default_factory=SystemClock)
    rng: random.Random = field(default_factory=random.Random)
    rate_limiter: Optional[RateLimiter] = None
    # provider name -> (token, expires_at on the session clock)
    tokens: Dict[str, Tuple[str, float]] = field(default_factory=dict)

    def __post_init__(self):
        if self.rate_limiter is None:
            self.rate_limiter = RateLimiter(self.clock, self.settings.ANALYZER_MIN_INTERVAL_SEC)

    def cached_token(self, provider: str) -> Optional[str]:
        entry = self.tokens.get(provider)
        if entry and entry[1] > self.clock.now():
            return entry[0]
        return None

    def store_token(self, provider: str, token: str, ttl: float) -> None:
        self.tokens[provider] = (token, self.clock.now() + ttl)
