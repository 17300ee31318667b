"""Semantic analyzer adapters, credentials, error mapping and response schemas."""

from .adapters import AnthropicAdapter, OpenAIAdapter, adapters_from_settings, build_adapter
from .errors import classify_error, parse_retry_after
from .schema import extract_json_object, parse_classification, parse_perspectives

__all__ = [
    "AnthropicAdapter",
    "OpenAIAdapter",
    "adapters_from_settings",
    "build_adapter",
    "classify_error",
    "parse_retry_after",
    "extract_json_object",
    "parse_classification",
    "parse_perspectives",
]
