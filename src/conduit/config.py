"""Configuration: frozen Config with explicit provider and per-tier settings."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

from dotenv import load_dotenv

from conduit import _flags
from conduit._http import DEFAULT_ANTHROPIC_BASE_URL, DEFAULT_OPENAI_BASE_URL
from conduit.errors import ConfigurationError

load_dotenv()

ProviderName = Literal["anthropic", "bedrock", "vertex", "openai"]
Tier = Literal["small", "large"]

_PROVIDERS: tuple[ProviderName, ...] = ("anthropic", "bedrock", "vertex", "openai")

# Providers authenticated with an API key rather than cloud credentials.
_API_KEY_ENV_VARS: dict[ProviderName, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}

DEFAULT_LARGE_MODEL = "claude-3-7-sonnet-latest"
DEFAULT_SMALL_MODEL = "claude-3-5-haiku-latest"
DEFAULT_MAX_TOKENS = 8000
DEFAULT_CLI_SYSPROMPT_PREFIX = (
    "You are an interactive command-line assistant for software engineering tasks."
)


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one orchestrator.

    Anything left as *None* is resolved from the environment in
    ``__post_init__``, so an instance always carries concrete values.

    Example:
        config = Config(provider="openai", large_model_name="gpt-4.1",
                        large_base_url="https://api.openai.com/v1")
    """

    provider: ProviderName = "anthropic"
    large_model_name: str = DEFAULT_LARGE_MODEL
    small_model_name: str = DEFAULT_SMALL_MODEL
    #: Auto-resolved from ``ANTHROPIC_API_KEY`` or ``OPENAI_API_KEY`` when empty.
    large_api_keys: tuple[str, ...] = ()
    small_api_keys: tuple[str, ...] = ()
    large_base_url: str | None = None
    small_base_url: str | None = None
    large_max_tokens: int | None = None
    small_max_tokens: int | None = None
    max_tokens: int | None = None
    #: OpenAI-compatible path only; the native path always streams.
    stream: bool = True
    vertex_project_id: str | None = None
    vertex_region: str | None = None
    auth_token: str | None = None
    user_id: str | None = None
    cli_sysprompt_prefix: str = DEFAULT_CLI_SYSPROMPT_PREFIX
    request_timeout_s: float | None = None
    benchmark_mode: bool | None = None
    prompt_caching: bool | None = None
    raw_log_path: str | None = None

    def __post_init__(self) -> None:
        """Resolve environment fallbacks and validate."""
        if self.provider not in _PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'anthropic', 'bedrock', 'vertex', 'openai'",
            )
        for name in ("large_model_name", "small_model_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(
                    f"{name} must be a non-empty string",
                    hint="Pass the provider's model identifier, e.g. 'claude-3-7-sonnet-latest'.",
                )
        for name in ("large_max_tokens", "small_max_tokens", "max_tokens"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise ConfigurationError(
                    f"{name} must be a positive integer, got {value!r}",
                )

        # Tuples keep the frozen instance hashable; accept lists from callers.
        object.__setattr__(self, "large_api_keys", tuple(self.large_api_keys))
        object.__setattr__(self, "small_api_keys", tuple(self.small_api_keys))

        env_var = _API_KEY_ENV_VARS.get(self.provider)
        if env_var is not None:
            env_key = os.environ.get(env_var)
            if env_key:
                if not self.large_api_keys:
                    object.__setattr__(self, "large_api_keys", (env_key,))
                if not self.small_api_keys:
                    object.__setattr__(self, "small_api_keys", (env_key,))

        if self.vertex_project_id is None:
            object.__setattr__(
                self, "vertex_project_id", os.environ.get("ANTHROPIC_VERTEX_PROJECT_ID")
            )
        if self.auth_token is None:
            object.__setattr__(
                self, "auth_token", os.environ.get("ANTHROPIC_AUTH_TOKEN") or None
            )
        if self.raw_log_path is None:
            object.__setattr__(
                self, "raw_log_path", os.environ.get("CONDUIT_RAW_LOG") or None
            )

        object.__setattr__(
            self,
            "request_timeout_s",
            _flags.request_timeout_s(override=self.request_timeout_s),
        )
        object.__setattr__(
            self,
            "benchmark_mode",
            _flags.benchmark_mode_enabled(override=self.benchmark_mode),
        )
        object.__setattr__(
            self,
            "prompt_caching",
            _flags.prompt_caching_enabled(override=self.prompt_caching),
        )

    @property
    def is_native(self) -> bool:
        """Whether requests use the native Messages API (any non-OpenAI provider)."""
        return self.provider != "openai"

    def model_for(self, tier: Tier) -> str:
        """Return the configured model name for *tier*."""
        return self.large_model_name if tier == "large" else self.small_model_name

    def api_keys_for(self, tier: Tier) -> tuple[str, ...]:
        """Return candidate credentials for *tier*, in selection order."""
        return self.large_api_keys if tier == "large" else self.small_api_keys

    def base_url_for(self, tier: Tier) -> str:
        """Return the endpoint base used for requests and error messages."""
        configured = self.large_base_url if tier == "large" else self.small_base_url
        if configured:
            return configured
        if self.provider == "openai":
            return DEFAULT_OPENAI_BASE_URL
        if self.provider == "bedrock":
            return "bedrock"
        if self.provider == "vertex":
            return "vertex"
        return DEFAULT_ANTHROPIC_BASE_URL

    def max_tokens_for(self, tier: Tier) -> int:
        """Per-tier limit, falling back to ``max_tokens`` and then 8000."""
        value = self.large_max_tokens if tier == "large" else self.small_max_tokens
        if not value:
            value = self.max_tokens
        return value or DEFAULT_MAX_TOKENS

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, "
            f"large_model_name={self.large_model_name!r}, "
            f"small_model_name={self.small_model_name!r}, "
            f"large_api_keys={_redact_keys(self.large_api_keys)}, "
            f"small_api_keys={_redact_keys(self.small_api_keys)}, "
            f"auth_token={'[REDACTED]' if self.auth_token else None}, "
            f"benchmark_mode={self.benchmark_mode}, "
            f"prompt_caching={self.prompt_caching})"
        )

    __repr__ = __str__


def _redact_keys(keys: tuple[str, ...]) -> str:
    return f"[{len(keys)} REDACTED]" if keys else "[]"
