"""Native Messages API provider (direct, Bedrock and Vertex clients)."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from conduit._http import ANTHROPIC_API_VERSION, DEFAULT_ANTHROPIC_BASE_URL, USER_AGENT
from conduit.cancel import run_cancellable
from conduit.errors import QueryAborted, StreamAssemblyError
from conduit.messages import (
    RedactedThinkingBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    content_blocks,
)
from conduit.providers._errors import wrap_provider_error
from conduit.providers.base import ProviderRequest, ProviderResult
from conduit.providers.streaming import reconcile_native_stream
from conduit.rawlog import guarded, redact_headers, to_jsonable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conduit.cancel import CancelSignal
    from conduit.messages import ContentBlock, ConversationMessage
    from conduit.rawlog import ApiLogSink
    from conduit.tools import ResolvedTool

NATIVE_MAX_TOKENS = 8192
_EPHEMERAL = {"type": "ephemeral"}
# Cache breakpoints go on the trailing messages only.
_CACHED_TAIL = 2
_THINKING_TYPES = frozenset({"thinking", "redacted_thinking"})


def native_max_tokens(thinking_budget: int) -> int:
    """Output limit for large queries: room for the thinking budget plus one token."""
    return max(thinking_budget + 1, NATIVE_MAX_TOKENS)


def split_sys_prompt_prefix(system: Sequence[str]) -> list[str]:
    """Split into ``[first block, remaining blocks joined by newlines]``, dropping empties."""
    if not system:
        return []
    first = system[0] or ""
    rest = "\n".join(system[1:])
    return [part for part in (first, rest) if part]


def block_to_param(block: ContentBlock) -> dict[str, Any]:
    """Serialize one content block into the Messages API shape."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": dict(block.input),
        }
    if isinstance(block, ToolResultBlock):
        content: Any = (
            block.content
            if isinstance(block.content, str)
            else [{"type": "text", "text": b.text} for b in block.content]
        )
        param: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": content,
        }
        if block.is_error:
            param["is_error"] = True
        return param
    if isinstance(block, ThinkingBlock):
        return {
            "type": "thinking",
            "thinking": block.thinking,
            "signature": block.signature,
        }
    if isinstance(block, RedactedThinkingBlock):
        return {"type": "redacted_thinking", "data": block.data}
    raise TypeError(f"Unsupported content block: {type(block).__name__}")


def message_to_param(message: ConversationMessage, *, cache: bool) -> dict[str, Any]:
    """Serialize a message, marking its last block as a cache breakpoint when *cache*.

    Thinking blocks never carry a marker.
    """
    if isinstance(message.content, str) and not cache:
        return {"role": message.role, "content": message.content}

    blocks = [block_to_param(b) for b in content_blocks(message)]
    if cache and blocks and blocks[-1]["type"] not in _THINKING_TYPES:
        blocks[-1] = {**blocks[-1], "cache_control": dict(_EPHEMERAL)}
    return {"role": message.role, "content": blocks}


def add_cache_breakpoints(
    messages: Sequence[ConversationMessage], *, enabled: bool
) -> list[dict[str, Any]]:
    """Serialize *messages*, marking the last two when caching is *enabled*."""
    cutoff = len(messages) - _CACHED_TAIL
    return [
        message_to_param(message, cache=enabled and index >= cutoff)
        for index, message in enumerate(messages)
    ]


def system_to_params(system: Sequence[str], *, cache: bool) -> list[dict[str, Any]]:
    params: list[dict[str, Any]] = []
    for text in split_sys_prompt_prefix(system):
        block: dict[str, Any] = {"type": "text", "text": text}
        if cache:
            block["cache_control"] = dict(_EPHEMERAL)
        params.append(block)
    return params


def tools_to_params(tools: Sequence[ResolvedTool]) -> list[dict[str, Any]]:
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.input_schema,
        }
        for tool in tools
    ]


def build_message_params(request: ProviderRequest) -> dict[str, Any]:
    """Build ``messages.stream`` keyword arguments for *request*."""
    caching = request.prompt_caching
    params: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens,
        "messages": add_cache_breakpoints(
            request.messages, enabled=caching and request.cache_messages
        ),
        "temperature": request.temperature,
        "system": system_to_params(
            request.system, cache=caching and request.cache_system
        ),
    }
    if request.tools:
        params["tools"] = tools_to_params(request.tools)
    if request.metadata:
        params["metadata"] = dict(request.metadata)
    if request.thinking_budget > 0:
        params["thinking"] = {
            "type": "enabled",
            "budget_tokens": request.thinking_budget,
        }
    return params


def parse_message(message: Any) -> ProviderResult:
    """Convert an SDK ``Message`` into a ``ProviderResult``.

    A response whose ``content`` is not a list yields ``content=None``.
    """
    raw_content = getattr(message, "content", None)
    content: tuple[ContentBlock, ...] | None = None
    if isinstance(raw_content, list):
        content = tuple(
            block for block in (_parse_block(b) for b in raw_content) if block is not None
        )
    return ProviderResult(
        content=content,
        stop_reason=getattr(message, "stop_reason", None),
        usage=Usage.from_object(getattr(message, "usage", None)),
        model=getattr(message, "model", None),
    )


def _parse_block(block: Any) -> ContentBlock | None:
    block_type = getattr(block, "type", None)
    if block_type == "text":
        return TextBlock(getattr(block, "text", "") or "")
    if block_type == "tool_use":
        raw_input = getattr(block, "input", None)
        return ToolUseBlock(
            id=getattr(block, "id", ""),
            name=getattr(block, "name", ""),
            input=dict(raw_input) if isinstance(raw_input, dict) else {},
        )
    if block_type == "thinking":
        return ThinkingBlock(
            thinking=getattr(block, "thinking", "") or "",
            signature=getattr(block, "signature", "") or "",
        )
    if block_type == "redacted_thinking":
        return RedactedThinkingBlock(data=getattr(block, "data", "") or "")
    return None


class AnthropicProvider:
    """Streams one Messages API call and reports it to the raw API log."""

    name = "anthropic"

    def __init__(self, *, raw_log: ApiLogSink) -> None:
        self._raw_log = raw_log

    def _endpoint(self, client: Any) -> str:
        base = str(getattr(client, "base_url", "") or DEFAULT_ANTHROPIC_BASE_URL)
        return f"{base.rstrip('/')}/v1/messages"

    def _headers(self, client: Any) -> dict[str, str]:
        """Request headers as sent, with credentials masked for logging."""
        return redact_headers(
            {
                "Content-Type": "application/json",
                "x-api-key": str(getattr(client, "api_key", "") or ""),
                "anthropic-version": ANTHROPIC_API_VERSION,
                "User-Agent": USER_AGENT,
            }
        )

    async def complete(
        self,
        client: Any,
        request: ProviderRequest,
        *,
        request_id: str,
        cancel: CancelSignal | None = None,
    ) -> ProviderResult:
        """Run one streamed attempt.

        Firing *cancel* aborts the stream consumer and closes the SDK stream.
        """
        params = build_message_params(request)
        guarded(
            self._raw_log.log_request,
            self.name,
            request_id,
            self._endpoint(client),
            self._headers(client),
            {**params, "_debug": {"provider": self.name, "tier": request.tier}},
        )

        started_at = time.monotonic()
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            async with client.messages.stream(**params) as stream:
                guarded(self._raw_log.log_stream_start, self.name, request_id)
                reconciled = await run_cancellable(
                    reconcile_native_stream(stream, started_at=started_at), cancel
                )
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
        except StreamAssemblyError:
            raise
        except Exception as e:
            error = wrap_provider_error(e, provider=self.name)
            guarded(
                self._raw_log.log_error,
                self.name,
                request_id,
                error,
                (time.monotonic() - started_at) * 1000,
                model=request.model,
                message_count=len(request.messages),
            )
            if error is e:
                raise
            raise error from e

        guarded(
            self._raw_log.log_response,
            self.name,
            request_id,
            to_jsonable(reconciled.response),
            (time.monotonic() - started_at) * 1000,
        )
        result = parse_message(reconciled.response)
        return ProviderResult(
            content=result.content,
            stop_reason=result.stop_reason,
            usage=result.usage,
            ttft_ms=reconciled.ttft_ms,
            model=result.model or request.model,
        )

