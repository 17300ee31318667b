"""
Custom exceptions for the research pivot system
"""

from typing import Dict, List, Optional


class ResearchPivotError(Exception):
    """Base exception for research pivot system"""
    pass


class ConfigurationError(ResearchPivotError):
    """Configuration related errors"""
    pass


class InputError(ResearchPivotError):
    """Empty or invalid query. Fatal, never retried."""
    pass


class SchemaError(ResearchPivotError):
    """Analyzer response failed structural validation"""
    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class ProviderError(ResearchPivotError):
    """Non-retryable analyzer failure"""
    kind = "provider"

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeout, quota or rate-limit failure; retried with backoff"""

    def __init__(self, message: str, provider: str = None, status_code: int = None,
                 kind: str = "transient", retry_after: Optional[float] = None):
        super().__init__(message, provider=provider, status_code=status_code)
        self.kind = kind
        self.retry_after = retry_after


class AuthError(ProviderError):
    """Credential failure; fails the source immediately"""
    kind = "auth"


class AllSourcesFailedError(ResearchPivotError):
    """Every consensus source failed"""
    def __init__(self, query: str, errors: Dict[str, str] = None):
        self.query = query
        self.errors = errors or {}
        detail = "; ".join(f"{name}: {msg}" for name, msg in self.errors.items())
        super().__init__(f"All classification sources failed ({detail or 'no sources configured'})")


class GateBlockedError(ResearchPivotError):
    """Phase transition refused because a prerequisite marker is missing"""
    def __init__(self, stage: str, missing: List[str]):
        self.stage = stage
        self.missing = list(missing)
        super().__init__(f"Cannot complete '{stage}': missing {', '.join(self.missing)}")


class CacheIOError(ResearchPivotError):
    """Cache read/write failure. Soft: the cache is bypassed for that operation."""
    pass
