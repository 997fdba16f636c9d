"""Provider implementations."""

from .anthropic import AnthropicProvider
from .base import Provider, ProviderRequest, ProviderResult
from .openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderRequest",
    "ProviderResult",
]
