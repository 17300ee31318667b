"""
Semantic analyzer adapters.

Each adapter wraps one remote language-understanding endpoint behind the same
contract: submit a prompt, receive text within a timeout, or fail with a typed
error (transient, auth, provider, schema).
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from research_pivot.config import Settings
from research_pivot.context import SessionContext
from research_pivot.exceptions import (
    AuthError, ConfigurationError, ProviderError, SchemaError, TransientProviderError,
)
from research_pivot.llm.auth import CachedCredentialProvider, CredentialProvider, EnvCredentialProvider
from research_pivot.llm.errors import parse_retry_after

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a research planning analyst. You classify research queries and design research "
    "angles. Output one valid JSON object only, with no prose before or after it."
)


class SemanticAnalyzerAdapter(Protocol):
    name: str
    model: str

    async def submit(self, prompt: str, *, model: Optional[str] = None, max_tokens: int = 2000,
                     temperature: float = 0.2, timeout: float = 60.0) -> str: ...


class HTTPAnalyzerAdapter:
    """Shared request/response handling for HTTP chat endpoints."""

    name = "http"
    path = ""

    def __init__(self, credentials: CredentialProvider, base_url: str, model: str,
                 client: Optional[httpx.AsyncClient] = None, name: Optional[str] = None):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client
        if name:
            self.name = name

    def _headers(self, token: str) -> Dict[str, str]:
        raise NotImplementedError

    def _payload(self, prompt: str, model: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def submit(self, prompt: str, *, model: Optional[str] = None, max_tokens: int = 2000,
                     temperature: float = 0.2, timeout: float = 60.0) -> str:
        token = self.credentials.get_token()
        url = f"{self.base_url}{self.path}"
        payload = self._payload(prompt, model or self.model, max_tokens, temperature)
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=self._headers(token),
                                                   timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=payload, headers=self._headers(token))
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.name} request timed out", provider=self.name,
                                         kind="timeout") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"{self.name} transport error: {e}", provider=self.name,
                                         kind="network") from e

        self._raise_for_status(response)
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise SchemaError(f"{self.name} returned a non-JSON body", raw=response.text[:500]) from e
        try:
            text = self._extract_text(data)
        except (KeyError, IndexError, TypeError) as e:
            raise SchemaError(f"{self.name} response missing message content: {e}",
                              raw=json.dumps(data)[:500]) from e
        if not text or not text.strip():
            raise SchemaError(f"{self.name} returned empty content")
        return text

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = response.text[:300]
        message = f"{self.name} HTTP {status}: {body}"
        if status in (401, 403):
            if isinstance(self.credentials, CachedCredentialProvider):
                self.credentials.invalidate()
            raise AuthError(message, provider=self.name, status_code=status)
        if status == 429:
            retry_after = _header_seconds(response.headers.get("retry-after"))
            if retry_after is None:
                retry_after = parse_retry_after(body)
            kind = "quota" if "quota" in body.lower() else "rate_limit"
            raise TransientProviderError(message, provider=self.name, status_code=status,
                                         kind=kind, retry_after=retry_after)
        if status in (408, 504):
            raise TransientProviderError(message, provider=self.name, status_code=status, kind="timeout")
        if status >= 500:
            raise TransientProviderError(message, provider=self.name, status_code=status,
                                         kind="overloaded",
                                         retry_after=_header_seconds(response.headers.get("retry-after")))
        raise ProviderError(message, provider=self.name, status_code=status)


def _header_seconds(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class AnthropicAdapter(HTTPAnalyzerAdapter):
    """Anthropic Messages API"""

    name = "anthropic"
    path = "/v1/messages"
    api_version = "2023-06-01"

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "x-api-key": token,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _payload(self, prompt, model, max_tokens, temperature):
        return {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }

    def _extract_text(self, data):
        blocks = data["content"]
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


class OpenAIAdapter(HTTPAnalyzerAdapter):
    """OpenAI Chat Completions API"""

    name = "openai"
    path = "/chat/completions"

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _payload(self, prompt, model, max_tokens, temperature):
        return {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }

    def _extract_text(self, data):
        return data["choices"][0]["message"]["content"]


_ADAPTERS = {
    "anthropic": (AnthropicAdapter, "ANTHROPIC_API_BASE", "ANTHROPIC_MODEL"),
    "openai": (OpenAIAdapter, "OPENAI_API_BASE", "OPENAI_MODEL"),
}


def build_adapter(provider: str, context: SessionContext,
                  client: Optional[httpx.AsyncClient] = None) -> HTTPAnalyzerAdapter:
    """Create one adapter with session-cached credentials."""
    settings: Settings = context.settings
    try:
        cls, base_field, model_field = _ADAPTERS[provider]
    except KeyError:
        raise ConfigurationError(f"Unknown analyzer provider: {provider}")
    credentials = CachedCredentialProvider(EnvCredentialProvider(provider, settings), context, provider)
    return cls(credentials, getattr(settings, base_field), getattr(settings, model_field), client=client)


def adapters_from_settings(context: SessionContext,
                           client: Optional[httpx.AsyncClient] = None) -> List[HTTPAnalyzerAdapter]:
    """Build every analyzer listed in LLM_PROVIDERS."""
    adapters = [build_adapter(p, context, client) for p in context.settings.enabled_providers()]
    logger.info(f"Configured {len(adapters)} semantic analyzers: {[a.name for a in adapters]}")
    return adapters
