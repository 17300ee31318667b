"""Credential providers for semantic analyzers.

Any failure to produce a token is an AuthError, which the resolver never
retries.
"""

from typing import Optional, Protocol

from research_pivot.config import Settings, get_settings
from research_pivot.context import SessionContext
from research_pivot.exceptions import AuthError


class CredentialProvider(Protocol):
    def get_token(self) -> str: ...


class EnvCredentialProvider:
    """Reads the API key for a provider from settings (env / .env)."""

    _FIELDS = {
        "anthropic": "ANTHROPIC_API_KEY",
        "openai": "OPENAI_API_KEY",
    }

    def __init__(self, provider: str, settings: Optional[Settings] = None):
        self.provider = provider
        self.settings = settings or get_settings()

    def get_token(self) -> str:
        field_name = self._FIELDS.get(self.provider)
        if field_name is None:
            raise AuthError(f"No credential source for provider '{self.provider}'", provider=self.provider)
        token = getattr(self.settings, field_name, None)
        if not token:
            raise AuthError(f"{field_name} is not configured", provider=self.provider)
        return token


class CachedCredentialProvider:
    """Caches a token in the session context until its TTL elapses."""

    def __init__(self, inner: CredentialProvider, context: SessionContext, provider: str,
                 ttl: Optional[float] = None):
        self.inner = inner
        self.context = context
        self.provider = provider
        self.ttl = ttl if ttl is not None else context.settings.TOKEN_TTL_SEC

    def get_token(self) -> str:
        token = self.context.cached_token(self.provider)
        if token:
            return token
        try:
            token = self.inner.get_token()
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"Credential lookup failed: {e}", provider=self.provider) from e
        if not token:
            raise AuthError("Credential provider returned an empty token", provider=self.provider)
        self.context.store_token(self.provider, token, self.ttl)
        return token

    def invalidate(self) -> None:
        self.context.tokens.pop(self.provider, None)
