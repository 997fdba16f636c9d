"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import TYPE_CHECKING, Any

from conduit._http import DEFAULT_OPENAI_BASE_URL
from conduit.cancel import run_cancellable
from conduit.errors import QueryAborted, StreamAssemblyError
from conduit.providers._errors import wrap_provider_error
from conduit.providers.anthropic import split_sys_prompt_prefix
from conduit.providers.base import ProviderRequest, ProviderResult
from conduit.providers.bridge import (
    from_chat_completion,
    system_to_chat,
    to_chat_messages,
    tools_to_chat,
)
from conduit.providers.streaming import as_dict, reconcile_chat_stream
from conduit.rawlog import guarded, redact_headers

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from conduit.cancel import CancelSignal
    from conduit.rawlog import ApiLogSink
    from conduit.telemetry import Telemetry


def build_chat_params(request: ProviderRequest) -> dict[str, Any]:
    """Build ``chat.completions.create`` keyword arguments for *request*."""
    params: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens,
        "messages": [
            *system_to_chat(split_sys_prompt_prefix(request.system)),
            *to_chat_messages(request.messages),
        ],
        "temperature": request.temperature,
    }
    if request.stream:
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}
    if request.tools:
        params["tools"] = tools_to_chat(request.tools)
        params["tool_choice"] = "auto"
    if request.reasoning_effort:
        params["reasoning_effort"] = request.reasoning_effort
    return params


async def close_stream(stream: Any) -> None:
    """Release the HTTP response behind an SDK stream when it exposes ``close``."""
    close = getattr(stream, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


class OpenAIProvider:
    """Runs one chat completion, streamed or not, and bridges the result back."""

    name = "openai"

    def __init__(
        self,
        *,
        raw_log: ApiLogSink,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._raw_log = raw_log
        self._telemetry = telemetry

    def _endpoint(self, client: Any) -> str:
        base = str(getattr(client, "base_url", "") or DEFAULT_OPENAI_BASE_URL)
        return f"{base.rstrip('/')}/chat/completions"

    async def _logged_chunks(
        self, stream: Any, request_id: str
    ) -> AsyncGenerator[Any, None]:
        """Yield *stream* chunks, buffering each into the raw API log.

        The buffer is flushed however iteration ends, including cancellation.
        """
        index = 0
        try:
            async for chunk in stream:
                guarded(
                    self._raw_log.log_stream_chunk, self.name, request_id, chunk, index
                )
                index += 1
                yield chunk
        finally:
            guarded(self._raw_log.log_stream_complete, self.name, request_id)

    async def _consume(self, response: Any, request_id: str, started_at: float) -> Any:
        chunks = self._logged_chunks(response, request_id)
        try:
            return await reconcile_chat_stream(chunks, started_at=started_at)
        finally:
            await chunks.aclose()
            await close_stream(response)

    async def complete(
        self,
        client: Any,
        request: ProviderRequest,
        *,
        request_id: str,
        cancel: CancelSignal | None = None,
    ) -> ProviderResult:
        """Run one attempt.

        Firing *cancel* aborts the pending call and closes any open stream.
        """
        params = build_chat_params(request)
        endpoint = self._endpoint(client)
        guarded(
            self._raw_log.log_request,
            self.name,
            request_id,
            endpoint,
            redact_headers(
                {"Content-Type": "application/json", "X-Base-URL": endpoint}
            ),
            {**params, "_debug": {"provider": self.name, "tier": request.tier}},
        )

        started_at = time.monotonic()
        ttft_ms: float | None = None
        try:
            response = await run_cancellable(
                client.chat.completions.create(**params), cancel
            )
            if request.stream:
                guarded(self._raw_log.log_stream_start, self.name, request_id)
                reconciled = await run_cancellable(
                    self._consume(response, request_id, started_at), cancel
                )
                completion = reconciled.response
                ttft_ms = reconciled.ttft_ms
            else:
                completion = as_dict(response)
        except (asyncio.CancelledError, QueryAborted) as e:
            guarded(
                self._raw_log.log_error,
                self.name,
                request_id,
                e,
                (time.monotonic() - started_at) * 1000,
                cancelled=True,
            )
            raise
        except StreamAssemblyError as e:
            guarded(
                self._raw_log.log_error,
                self.name,
                request_id,
                e,
                (time.monotonic() - started_at) * 1000,
            )
            raise
        except Exception as e:
            error = wrap_provider_error(e, provider=self.name)
            guarded(
                self._raw_log.log_error,
                self.name,
                request_id,
                error,
                (time.monotonic() - started_at) * 1000,
                endpoint=endpoint,
                model=request.model,
                tier=request.tier,
            )
            if error is e:
                raise
            raise error from e

        guarded(
            self._raw_log.log_response,
            self.name,
            request_id,
            completion,
            (time.monotonic() - started_at) * 1000,
        )
        result = from_chat_completion(completion, self._telemetry)
        return ProviderResult(
            content=result.content,
            stop_reason=result.stop_reason,
            usage=result.usage,
            ttft_ms=ttft_ms,
            model=result.model or request.model,
        )
