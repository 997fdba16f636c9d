"""Query façade: the two public entry points and their shared execution path.

Every query moves through
``Idle -> Building Request -> Awaiting Response -> Normalizing | Error-Mapping -> Done``
and always ends in a ``ProviderResponse``. Transport failures become a
synthetic assistant response; only cancellation escapes as an exception.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import hashlib
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any

from conduit.cancel import run_cancellable
from conduit.clients import ClientRegistry, ClientSpec, build_sdk_client, model_tier
from conduit.config import Config
from conduit.constants import (
    API_ERROR_MESSAGE_PREFIX,
    CREDIT_BALANCE_MARKER,
    CREDIT_BALANCE_TOO_LOW_ERROR_MESSAGE,
    INVALID_API_KEY_ERROR_MESSAGE,
    INVALID_API_KEY_MARKER,
    MAIN_QUERY_TEMPERATURE,
    NO_CONTENT_MESSAGE,
    PROMPT_TOO_LONG_ERROR_MESSAGE,
    PROMPT_TOO_LONG_MARKER,
    SMALL_QUERY_MAX_TOKENS,
    SMALL_QUERY_TEMPERATURE,
    VERIFY_API_KEY_MAX_RETRIES,
    VERIFY_API_KEY_PROMPT,
)
from conduit.cost import CostTracker, compute_cost
from conduit.errors import (
    AuthenticationError,
    ConduitError,
    InternalError,
    QueryAborted,
)
from conduit.messages import (
    AssistantMessage,
    ProviderResponse,
    TextBlock,
    UserMessage,
    new_uuid,
)
from conduit.providers._errors import wrap_provider_error
from conduit.providers.anthropic import (
    AnthropicProvider,
    native_max_tokens,
    split_sys_prompt_prefix,
)
from conduit.providers.base import ProviderRequest
from conduit.providers.openai import OpenAIProvider
from conduit.rawlog import RawApiLogger, guarded
from conduit.retry import RetryPolicy, retry_async
from conduit.session import ApiErrorRecord, SessionState
from conduit.telemetry import (
    API_ERROR,
    API_QUERY,
    API_RETRY,
    API_SUCCESS,
    KEY_MARKED_FAILED,
    SYSPROMPT_BLOCK,
    Telemetry,
)
from conduit.tools import resolve_tools

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from conduit.cancel import CancelSignal
    from conduit.config import Tier
    from conduit.cost import CostSink
    from conduit.messages import ConversationMessage
    from conduit.providers.base import Provider, ProviderResult
    from conduit.rawlog import ApiLogSink
    from conduit.retry import RetryAttempt
    from conduit.tools import ToolSpec

logger = logging.getLogger(__name__)

_CONTEXT_INTRO = (
    "\nAs you answer the user's questions, you can use the following context:\n"
)


@dataclass(frozen=True)
class QueryOptions:
    """Per-call options for ``query_large``."""

    #: Overrides the configured large model.
    model: str | None = None
    #: Inject the provider-identifying prefix as the first system block.
    prepend_cli_sysprompt: bool = False
    dangerously_skip_permissions: bool = False
    #: OpenAI-compatible path only.
    reasoning_effort: str | None = None


def format_system_prompt_with_context(
    system_prompt: Sequence[str], context: Mapping[str, str]
) -> list[str]:
    """Append ``<context name="...">`` blocks for each *context* entry."""
    if not context:
        return list(system_prompt)
    return [
        *system_prompt,
        _CONTEXT_INTRO,
        *(f'<context name="{key}">{value}</context>' for key, value in context.items()),
    ]


def api_error_message(error: BaseException, base_url: str) -> str:
    """Return the user-facing text for a failed query."""
    message = str(error)
    lowered = message.lower()
    if PROMPT_TOO_LONG_MARKER in lowered:
        return f"{PROMPT_TOO_LONG_ERROR_MESSAGE} ({base_url})"
    if CREDIT_BALANCE_MARKER in lowered:
        return f"{CREDIT_BALANCE_TOO_LOW_ERROR_MESSAGE} ({base_url})"
    if isinstance(error, AuthenticationError) or INVALID_API_KEY_MARKER in lowered:
        return f"{INVALID_API_KEY_ERROR_MESSAGE} ({base_url})"
    if message:
        return f"{API_ERROR_MESSAGE_PREFIX} from {base_url}: {message}"
    return f"{API_ERROR_MESSAGE_PREFIX} from {base_url}"


class Orchestrator:
    """Routes queries to the configured provider and normalizes the outcome.

    All collaborators are injectable; anything omitted is constructed per
    instance, so two orchestrators never share session or client state.

    Example:
        orchestrator = Orchestrator(Config(provider="anthropic"))
        response = await orchestrator.query_small(
            system_prompt=["Answer tersely."], user_prompt="2 + 2?"
        )
        print(response.text)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        session: SessionState | None = None,
        costs: CostSink | None = None,
        telemetry: Telemetry | None = None,
        raw_log: ApiLogSink | None = None,
        clients: ClientRegistry | None = None,
        providers: Mapping[str, Provider] | None = None,
        client_factory: Callable[[ClientSpec], Any] = build_sdk_client,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._config = config if config is not None else Config()
        self.session = session if session is not None else SessionState()
        self.costs: CostSink = costs if costs is not None else CostTracker()
        self.telemetry = telemetry if telemetry is not None else Telemetry.from_env()
        self.raw_log: ApiLogSink = (
            raw_log if raw_log is not None else RawApiLogger(self._config.raw_log_path)
        )
        self._client_factory = client_factory
        self.clients = (
            clients
            if clients is not None
            else ClientRegistry(self._config, self.session, factory=client_factory)
        )
        self._providers: dict[str, Provider] = (
            dict(providers)
            if providers is not None
            else {
                "native": AnthropicProvider(raw_log=self.raw_log),
                "openai": OpenAIProvider(raw_log=self.raw_log, telemetry=self.telemetry),
            }
        )
        self._retry_policy = retry_policy
        self._sleep = sleep
        self.session_id = new_uuid()

    @property
    def config(self) -> Config:
        return self._config

    async def update_config(self, config: Config) -> None:
        """Swap configuration; cached clients are rebuilt on next use."""
        self._config = config
        await self.clients.configure(config)

    async def aclose(self) -> None:
        await self.clients.aclose()

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def query_large(
        self,
        messages: Sequence[ConversationMessage],
        system_prompt: Sequence[str],
        thinking_budget: int = 0,
        tools: Sequence[ToolSpec] = (),
        cancel: CancelSignal | None = None,
        options: QueryOptions | None = None,
    ) -> ProviderResponse:
        """Query the flagship model with the full conversation and tools."""
        options = options or QueryOptions()
        config = self._config
        model = options.model or config.large_model_name

        system = list(system_prompt)
        if options.prepend_cli_sysprompt:
            self._report_sysprompt_block(system)
            system = [config.cli_sysprompt_prefix, *system]

        resolved = await run_cancellable(
            resolve_tools(
                tools,
                dangerously_skip_permissions=options.dangerously_skip_permissions,
            ),
            cancel,
        )

        if config.is_native:
            # Direct API keys are chosen by model family.
            tier: Tier = (
                model_tier(model) if config.provider == "anthropic" else "large"
            )
            request = ProviderRequest(
                tier=tier,
                model=model,
                system=tuple(system),
                messages=tuple(messages),
                tools=resolved,
                max_tokens=native_max_tokens(thinking_budget),
                temperature=MAIN_QUERY_TEMPERATURE,
                thinking_budget=thinking_budget,
                prompt_caching=bool(config.prompt_caching),
                metadata=self._metadata(),
            )
        else:
            request = ProviderRequest(
                tier="large",
                model=model,
                system=tuple(system),
                messages=tuple(messages),
                tools=resolved,
                max_tokens=config.max_tokens_for("large"),
                temperature=MAIN_QUERY_TEMPERATURE,
                thinking_budget=thinking_budget,
                prompt_caching=bool(config.prompt_caching),
                reasoning_effort=options.reasoning_effort,
                stream=config.stream,
            )
        return await self._execute(request, cancel=cancel)

    async def query_small(
        self,
        *,
        system_prompt: Sequence[str] = (),
        user_prompt: str,
        assistant_prompt: str | None = None,
        enable_caching: bool = False,
        cancel: CancelSignal | None = None,
    ) -> ProviderResponse:
        """Query the fast model with a single prompt (and optional assistant prefill)."""
        config = self._config
        model = config.small_model_name

        if config.is_native:
            messages: tuple[ConversationMessage, ...] = (UserMessage(user_prompt),)
            if assistant_prompt:
                messages = (*messages, AssistantMessage(assistant_prompt))
            request = ProviderRequest(
                tier="small",
                model=model,
                system=tuple(system_prompt),
                messages=messages,
                max_tokens=SMALL_QUERY_MAX_TOKENS,
                temperature=SMALL_QUERY_TEMPERATURE,
                prompt_caching=bool(config.prompt_caching) and enable_caching,
                cache_messages=False,
                metadata=self._metadata(),
            )
        else:
            request = ProviderRequest(
                tier="small",
                model=model,
                system=tuple(system_prompt),
                messages=(UserMessage(user_prompt),),
                max_tokens=config.max_tokens_for("small"),
                temperature=MAIN_QUERY_TEMPERATURE,
                prompt_caching=False,
                stream=config.stream,
            )
        return await self._execute(request, cancel=cancel)

    async def verify_api_key(self, api_key: str) -> bool:
        """Send a minimal request with *api_key*.

        Returns False when the key is rejected; any other failure propagates.
        """
        config = self._config
        provider = "openai" if config.provider == "openai" else "anthropic"
        spec = ClientSpec(
            provider=provider,
            tier="small",
            model=config.small_model_name,
            api_key=api_key,
            base_url=config.small_base_url if provider == "openai" else None,
            timeout_s=float(config.request_timeout_s or 60.0),
        )
        client = self._client_factory(spec)
        if inspect.isawaitable(client):
            client = await client

        async def attempt(_: int) -> bool:
            try:
                if provider == "openai":
                    await client.chat.completions.create(
                        model=config.small_model_name,
                        max_tokens=1,
                        messages=[{"role": "user", "content": VERIFY_API_KEY_PROMPT}],
                        temperature=0,
                    )
                else:
                    await client.messages.create(
                        model=config.small_model_name,
                        max_tokens=1,
                        messages=[{"role": "user", "content": VERIFY_API_KEY_PROMPT}],
                        temperature=0,
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(e, provider=provider) from e
            return True

        try:
            return await retry_async(
                attempt,
                policy=RetryPolicy(max_retries=VERIFY_API_KEY_MAX_RETRIES),
                benchmark_mode=bool(config.benchmark_mode),
                sleep=self._sleep,
            )
        except AuthenticationError as e:
            logger.info("API key verification rejected: %s", e)
            return False
        finally:
            close = getattr(client, "close", None)
            if close is not None:
                result = close()
                if inspect.isawaitable(result):
                    await result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _provider_for(self, config: Config) -> Provider:
        route = "native" if config.is_native else "openai"
        provider = self._providers.get(route)
        if provider is None:
            raise InternalError(
                f"No provider registered for the {route!r} route",
                hint="Pass providers={'native': ..., 'openai': ...} to Orchestrator.",
            )
        return provider

    def _metadata(self) -> dict[str, Any] | None:
        user_id = self._config.user_id
        if not user_id:
            return None
        return {"user_id": f"{user_id}_{self.session_id}"}

    def _report_sysprompt_block(self, system: Sequence[str]) -> None:
        parts = split_sys_prompt_prefix(system)
        first = parts[0] if parts else ""
        self.telemetry.emit(
            SYSPROMPT_BLOCK,
            length=len(first),
            hash=hashlib.sha256(first.encode("utf-8")).hexdigest() if first else "",
        )

    async def _execute(
        self, request: ProviderRequest, *, cancel: CancelSignal | None
    ) -> ProviderResponse:
        config = self._config
        provider = self._provider_for(config)
        base_url = config.base_url_for(request.tier)
        self.telemetry.emit(
            API_QUERY,
            model=request.model,
            tier=request.tier,
            provider=config.provider,
            message_count=len(request.messages),
            temperature=request.temperature,
        )

        policy = self._retry_policy or RetryPolicy.for_mode(bool(config.benchmark_mode))
        started = time.monotonic()
        attempt_started = started
        attempt_number = 0
        request_id: str | None = None

        async def attempt(n: int) -> ProviderResult:
            nonlocal attempt_started, attempt_number, request_id
            attempt_number = n
            attempt_started = time.monotonic()
            rid = request_id = new_uuid()

            async def call() -> ProviderResult:
                client = await self.clients.get_client(request.tier, request.model)
                return await provider.complete(
                    client, request, request_id=rid, cancel=cancel
                )

            return await run_cancellable(call(), cancel)

        def on_retry(retry: RetryAttempt) -> None:
            logger.warning(
                "API %s (%s) · Retrying in %d seconds… (attempt %d/%d)",
                type(retry.error).__name__,
                retry.error,
                round(retry.delay_s),
                retry.attempt,
                retry.max_retries,
            )
            self.telemetry.emit(
                API_RETRY,
                attempt=retry.attempt,
                delay_ms=retry.delay_s * 1000,
                error=str(retry.error),
                status=retry.error.status_code,
                provider=config.provider,
            )

        try:
            result = await retry_async(
                attempt,
                policy=policy,
                benchmark_mode=bool(config.benchmark_mode),
                cancel=cancel,
                on_retry=on_retry,
                sleep=self._sleep,
            )
        except (QueryAborted, asyncio.CancelledError):
            raise
        except ConduitError as e:
            now = time.monotonic()
            logger.error("Query to %s failed: %s", base_url, e)
            self.telemetry.emit(
                API_ERROR,
                model=request.model,
                error=str(e),
                status=getattr(e, "status_code", None),
                message_count=len(request.messages),
                duration_ms=(now - attempt_started) * 1000,
                duration_including_retries_ms=(now - started) * 1000,
                attempt=attempt_number,
                provider=config.provider,
                request_id=request_id,
            )
            await self._handle_auth_failure(e, request.tier)
            return self._error_response(
                e, config=config, base_url=base_url, model=request.model
            )

        now = time.monotonic()
        duration_ms = (now - attempt_started) * 1000
        duration_including_retries_ms = (now - started) * 1000
        cost_usd = compute_cost(result.usage, request.tier)
        guarded(self.costs.add_cost, cost_usd, duration_including_retries_ms)

        self.telemetry.emit(
            API_SUCCESS,
            model=request.model,
            message_count=len(request.messages),
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            cached_input_tokens=result.usage.cache_read_input_tokens,
            uncached_input_tokens=result.usage.cache_creation_input_tokens,
            duration_ms=duration_ms,
            duration_including_retries_ms=duration_including_retries_ms,
            attempt=attempt_number,
            ttft_ms=result.ttft_ms,
            provider=config.provider,
            request_id=request_id,
            stop_reason=result.stop_reason,
        )

        content = result.content or (TextBlock(NO_CONTENT_MESSAGE),)
        return ProviderResponse(
            content=content,
            stop_reason=result.stop_reason,
            usage=result.usage,
            duration_ms=duration_ms,
            ttft_ms=result.ttft_ms,
            cost_usd=cost_usd,
            model=result.model or request.model,
        )

    async def _handle_auth_failure(self, error: BaseException, tier: Tier) -> None:
        """Retire the rejected key so the next query selects another one."""
        if not isinstance(error, AuthenticationError):
            return
        if self._config.provider not in ("anthropic", "openai"):
            return
        index = self.session.current_key_index(tier)
        if self.session.mark_key_failed(tier, index):
            self.telemetry.emit(
                KEY_MARKED_FAILED,
                tier=tier,
                key_index=index,
                provider=self._config.provider,
            )
            await self.clients.reset()

    def _error_response(
        self, error: BaseException, *, config: Config, base_url: str, model: str
    ) -> ProviderResponse:
        self.session.record_api_error(
            ApiErrorRecord.from_error(error, provider=config.provider, base_url=base_url)
        )
        return ProviderResponse(
            content=(TextBlock(api_error_message(error, base_url)),),
            stop_reason="stop_sequence",
            model=model,
            is_api_error=True,
        )
