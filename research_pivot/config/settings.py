"""Unified configuration and settings module.

Single source of truth for analyzer providers, retry/throttle budgets,
decision thresholds, cache and session locations.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = ("anthropic", "openai")

DEFAULT_BYPASS_KEYWORDS = [
    "latest", "today", "yesterday", "this week", "this month", "breaking",
    "current", "recent", "right now", "2025", "2026",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # ==== Semantic analyzers ====
    LLM_PROVIDERS: str = Field("anthropic", description="Comma-separated semantic analyzers; empty disables them")
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_API_BASE: str = "https://api.anthropic.com"
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-latest"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    PERSPECTIVE_PROVIDER: Optional[str] = Field(None, description="Analyzer used for perspective generation (defaults to the first)")

    ANALYZER_MAX_TOKENS: int = Field(2000, ge=1)
    ANALYZER_TEMPERATURE: float = Field(0.2, ge=0, le=2)
    ANALYZER_TIMEOUT_SEC: float = Field(60.0, gt=0, description="Timeout for a single analyzer attempt")
    ANALYZER_DEADLINE_SEC: float = Field(240.0, gt=0, description="Deadline for one source including retries")
    ANALYZER_MIN_INTERVAL_SEC: float = Field(5.0, ge=0, description="Minimum gap between calls to one analyzer")
    TOKEN_TTL_SEC: float = Field(3300.0, gt=0)

    # ==== Retries ====
    RETRY_MAX_TRIES: int = Field(4, ge=1)
    RETRY_BACKOFF_BASE_SECONDS: float = Field(2.0, gt=0)
    RETRY_BACKOFF_MAX_SECONDS: float = Field(60.0, gt=0)
    RETRY_JITTER: float = Field(0.2, ge=0, lt=1)
    RETRY_AFTER_BUFFER_SEC: float = Field(1.0, ge=0)
    RETRY_AFTER_MAX_SEC: float = Field(120.0, gt=0)

    # ==== Perspective validation ====
    MATCH_CONFIDENCE_BOOST: int = 10
    MISMATCH_CONFIDENCE_PENALTY: int = 20
    ENSEMBLE_CONFIDENCE_THRESHOLD: int = Field(70, ge=0, le=100)
    BACKUP_CONFIDENCE_THRESHOLD: int = Field(50, ge=0, le=100)
    MISMATCH_TRIGGERS_RESOLUTION: bool = True
    PERSPECTIVE_KEYWORD_FALLBACK: bool = Field(True, description="Derive perspectives from keywords when generation fails")

    # ==== Source quality gate ====
    VENDOR_FRACTION_MAX: float = 0.4
    INDEPENDENT_FRACTION_MIN: float = 0.1
    CONTRARIAN_VENDOR_FRACTION: float = 0.5
    MAX_REBALANCE_ATTEMPTS: int = 1
    SOURCE_TIERS_PATH: Optional[str] = Field(None, description="YAML file extending the source tier lists")

    # ==== Wave evaluation ====
    HIGH_QUALITY_SCORE: int = 80
    SIGNAL_MIN_STRENGTH: float = 2.0
    SIGNAL_STRONG_STRENGTH: float = 4.0
    WAVE2_MAX_WORKERS: int = Field(6, ge=1)
    KEYWORD_DICTIONARY_PATH: Optional[str] = Field(None, description="YAML file extending the domain keywords")

    # ==== Cache ====
    CACHE_ENABLED: bool = True
    CACHE_DIR: str = ".research_cache"
    CACHE_TTL_HOURS: float = Field(168.0, gt=0)
    CACHE_MAX_ENTRIES: int = Field(500, ge=1)
    CACHE_BYPASS_KEYWORDS: List[str] = Field(default_factory=lambda: list(DEFAULT_BYPASS_KEYWORDS))

    # ==== Session / runtime ====
    SESSION_DIR: str = "."
    WALL_TIMEOUT_SEC: float = Field(600.0, gt=0, description="Wall clock bound for any CLI command")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("LLM_PROVIDERS")
    @classmethod
    def _known_providers(cls, value: str) -> str:
        wanted = [p.strip().lower() for p in value.split(",") if p.strip()]
        unknown = [p for p in wanted if p not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown analyzer providers: {unknown}")
        return ",".join(wanted)

    def model_post_init(self, __context):
        if self.BACKUP_CONFIDENCE_THRESHOLD > self.ENSEMBLE_CONFIDENCE_THRESHOLD:
            raise ValueError("BACKUP_CONFIDENCE_THRESHOLD must not exceed ENSEMBLE_CONFIDENCE_THRESHOLD")
        if self.RETRY_BACKOFF_BASE_SECONDS > self.RETRY_BACKOFF_MAX_SECONDS:
            raise ValueError("RETRY_BACKOFF_BASE_SECONDS must not exceed RETRY_BACKOFF_MAX_SECONDS")

    def enabled_providers(self) -> List[str]:
        return [p for p in self.LLM_PROVIDERS.split(",") if p]

    @property
    def cache_ttl_seconds(self) -> float:
        return self.CACHE_TTL_HOURS * 3600.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
