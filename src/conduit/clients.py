"""Client registry: one long-lived SDK client per provider configuration.

Handles move through ``Unbuilt -> Building -> Ready``. Concurrent first users
of a key await a single build (single-flight) instead of racing to construct
duplicate clients. The build runs in its own task, so a waiter that is
cancelled leaves it running for the others. ``reset()`` bumps a generation counter so a build that was
in flight during the reset is returned to its callers but never cached.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
import inspect
import logging
import os
import re
from typing import TYPE_CHECKING, Any

from conduit._http import DEFAULT_HEADERS
from conduit.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from conduit.config import Config, ProviderName, Tier
    from conduit.session import SessionState

logger = logging.getLogger(__name__)

FALLBACK_VERTEX_REGION = "us-east5"

# Model families with a dedicated Vertex region override variable.
_VERTEX_REGION_ENV_VARS: tuple[tuple[str, str], ...] = (
    ("claude-3-5-haiku", "VERTEX_REGION_CLAUDE_3_5_HAIKU"),
    ("claude-3-5-sonnet", "VERTEX_REGION_CLAUDE_3_5_SONNET"),
    ("claude-3-7-sonnet", "VERTEX_REGION_CLAUDE_3_7_SONNET"),
)
_HAIKU_RE = re.compile(r"haiku", re.IGNORECASE)


def model_tier(model: str | None) -> Tier:
    """Coarse capability tier of *model*: small for Haiku-class models."""
    if model and _HAIKU_RE.search(model):
        return "small"
    return "large"


def resolve_vertex_region(
    model: str | None,
    *,
    default_region: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the Vertex region for *model*.

    Priority: model-specific env var, then ``CLOUD_ML_REGION``, then the
    configured default, then ``us-east5``.
    """
    env = os.environ if environ is None else environ
    if model:
        for prefix, var in _VERTEX_REGION_ENV_VARS:
            if model.startswith(prefix) and env.get(var):
                return env[var]
    return env.get("CLOUD_ML_REGION") or default_region or FALLBACK_VERTEX_REGION


@dataclass(frozen=True)
class ClientSpec:
    """Everything a factory needs to construct one SDK client."""

    provider: ProviderName
    tier: Tier
    model: str | None
    api_key: str | None
    base_url: str | None
    timeout_s: float
    region: str | None = None
    project_id: str | None = None
    auth_token: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"ClientSpec(provider={self.provider!r}, tier={self.tier!r}, "
            f"model={self.model!r}, api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, region={self.region!r})"
        )


def build_sdk_client(spec: ClientSpec) -> Any:
    """Construct the SDK client described by *spec*.

    Transport-level retries are disabled; ``conduit.retry`` owns retrying.
    """
    common: dict[str, Any] = {
        "max_retries": 0,
        "timeout": spec.timeout_s,
        "default_headers": spec.default_headers,
    }

    if spec.provider == "openai":
        if not spec.api_key:
            raise ConfigurationError(
                f"No API key configured for the {spec.tier} model",
                hint="Set OPENAI_API_KEY or pass Config(large_api_keys=...).",
            )
        from openai import AsyncOpenAI

        return AsyncOpenAI(api_key=spec.api_key, base_url=spec.base_url, **common)

    if spec.provider == "bedrock":
        try:
            from anthropic import AsyncAnthropicBedrock
        except ImportError as e:
            raise ConfigurationError(
                "Bedrock support is not installed",
                hint="pip install 'anthropic[bedrock]'",
            ) from e
        return AsyncAnthropicBedrock(**common)

    if spec.provider == "vertex":
        try:
            from anthropic import AsyncAnthropicVertex
        except ImportError as e:
            raise ConfigurationError(
                "Vertex support is not installed",
                hint="pip install 'anthropic[vertex]'",
            ) from e
        return AsyncAnthropicVertex(
            region=spec.region or FALLBACK_VERTEX_REGION,
            project_id=spec.project_id,
            **common,
        )

    if not spec.api_key and not spec.auth_token:
        raise ConfigurationError(
            "No API key found for Anthropic",
            hint="Set ANTHROPIC_API_KEY or pass Config(large_api_keys=...).",
        )
    from anthropic import AsyncAnthropic

    return AsyncAnthropic(
        api_key=spec.api_key,
        auth_token=spec.auth_token,
        base_url=spec.base_url,
        **common,
    )


@dataclass
class _Handle:
    provider: ProviderName
    client: Any


class ClientRegistry:
    """Lazily builds and caches SDK clients keyed by ``(provider, tier)``."""

    def __init__(
        self,
        config: Config,
        session: SessionState,
        *,
        factory: Callable[[ClientSpec], Any | Awaitable[Any]] = build_sdk_client,
    ) -> None:
        self._config = config
        self._session = session
        self._factory = factory
        self._handles: dict[tuple[ProviderName, Tier], _Handle] = {}
        self._inflight: dict[tuple[ProviderName, Tier], asyncio.Future[Any]] = {}
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def config(self) -> Config:
        return self._config

    def is_cached(self, tier: Tier) -> bool:
        handle = self._handles.get((self._config.provider, tier))
        return handle is not None and handle.provider == self._config.provider

    async def get_client(self, tier: Tier, model: str | None = None) -> Any:
        """Return the client for *tier* under the active provider, building it once."""
        provider = self._config.provider
        key = (provider, tier)
        handle = self._handles.get(key)
        if handle is not None and handle.provider == provider:
            return handle.client

        async with self._lock:
            handle = self._handles.get(key)
            if handle is not None and handle.provider == self._config.provider:
                return handle.client
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(
                    self._build_and_store(key, self.describe(tier, model), self._generation)
                )
                task.add_done_callback(_consume_future_exception)
                task.add_done_callback(functools.partial(self._forget_inflight, key))
                self._inflight[key] = task

        # Cancelling one caller must leave the shared build running for the rest.
        return await asyncio.shield(task)

    async def _build_and_store(
        self, key: tuple[ProviderName, Tier], spec: ClientSpec, generation: int
    ) -> Any:
        client = await self._build(spec)
        async with self._lock:
            if generation == self._generation:
                self._handles[key] = _Handle(provider=key[0], client=client)
        return client

    def _forget_inflight(
        self, key: tuple[ProviderName, Tier], task: asyncio.Future[Any]
    ) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _build(self, spec: ClientSpec) -> Any:
        logger.debug("Building %s client for %s tier", spec.provider, spec.tier)
        result = self._factory(spec)
        if inspect.isawaitable(result):
            result = await result
        return result

    def describe(self, tier: Tier, model: str | None = None) -> ClientSpec:
        """Resolve credentials, endpoint and region for a client build."""
        config = self._config
        api_key: str | None = None
        if config.provider in ("anthropic", "openai"):
            api_key = self._session.select_api_key(tier, config.api_keys_for(tier))
            if api_key is None:
                logger.error(
                    "No usable API key for the %s tier of provider %s",
                    tier,
                    config.provider,
                )

        base_url: str | None = None
        if config.provider == "openai":
            base_url = config.base_url_for(tier)
        elif config.provider == "anthropic":
            base_url = config.large_base_url if tier == "large" else config.small_base_url

        region = None
        if config.provider == "vertex":
            region = resolve_vertex_region(
                model or config.model_for(tier), default_region=config.vertex_region
            )

        return ClientSpec(
            provider=config.provider,
            tier=tier,
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout_s=float(config.request_timeout_s or 60.0),
            region=region,
            project_id=config.vertex_project_id,
            auth_token=config.auth_token if config.provider == "anthropic" else None,
            default_headers=dict(DEFAULT_HEADERS),
        )

    async def reset(self) -> None:
        """Discard every handle; the next ``get_client`` rebuilds."""
        async with self._lock:
            self._generation += 1
            self._handles.clear()
            self._inflight.clear()

    async def configure(self, config: Config) -> None:
        """Swap configuration, invalidating handles when the provider changed."""
        changed = config.provider != self._config.provider or config != self._config
        self._config = config
        if changed:
            await self.reset()

    async def aclose(self) -> None:
        """Close every cached client and clear the registry."""
        async with self._lock:
            handles = list(self._handles.values())
            self._generation += 1
            self._handles.clear()
        for handle in handles:
            close = getattr(handle.client, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result


def _consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    _ = fut.exception()
