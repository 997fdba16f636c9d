"""Test helpers (small, reusable doubles).

Fake SDK clients mirror only the surface the providers touch:
``client.messages.stream(...)`` / ``messages.create(...)`` for the native
path and ``client.chat.completions.create(...)`` for the chat path.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import openai

from conduit.messages import TextBlock, Usage
from conduit.providers.base import ProviderRequest, ProviderResult

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"


# =============================================================================
# SDK exceptions
# =============================================================================


def anthropic_status_error(
    status: int,
    *,
    error_type: str = "api_error",
    message: str = "boom",
    headers: dict[str, str] | None = None,
) -> anthropic.APIStatusError:
    """Build a real SDK status error as the SDK would raise it."""
    response = httpx.Response(
        status,
        headers=headers or {},
        request=httpx.Request("POST", ANTHROPIC_URL),
    )
    body = {"type": "error", "error": {"type": error_type, "message": message}}
    return anthropic.APIStatusError(
        f"Error code: {status} - {body}", response=response, body=body
    )


def anthropic_connection_error() -> anthropic.APIConnectionError:
    return anthropic.APIConnectionError(request=httpx.Request("POST", ANTHROPIC_URL))


def openai_status_error(
    status: int, *, message: str = "boom", headers: dict[str, str] | None = None
) -> openai.APIStatusError:
    response = httpx.Response(
        status,
        headers=headers or {},
        request=httpx.Request("POST", OPENAI_URL),
    )
    body = {"message": message, "type": "invalid_request_error"}
    return openai.APIStatusError(
        f"Error code: {status} - {message}", response=response, body=body
    )


# =============================================================================
# Native (Messages API) fakes
# =============================================================================


def native_message(
    content: list[Any] | None = None,
    *,
    stop_reason: str = "end_turn",
    usage: dict[str, Any] | None = None,
    model: str = "claude-3-7-sonnet-latest",
) -> SimpleNamespace:
    """Stand-in for an SDK ``Message``; blocks are SimpleNamespaces with ``type``."""
    return SimpleNamespace(
        content=content if content is not None else [text_block("hi")],
        stop_reason=stop_reason,
        usage=SimpleNamespace(
            **{
                "input_tokens": 10,
                "output_tokens": 5,
                "cache_read_input_tokens": None,
                "cache_creation_input_tokens": None,
                **(usage or {}),
            }
        ),
        model=model,
    )


def text_block(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def tool_use_block(id: str, name: str, input: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=id, name=name, input=input)


class FakeMessageStream:
    """Async context manager and iterator shaped like the SDK's message stream."""

    def __init__(
        self,
        message: Any,
        *,
        events: tuple[str, ...] = ("message_start", "content_block_delta", "message_stop"),
        fail_with: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self._message = message
        self._events = events
        self._fail_with = fail_with
        self._gate = gate
        self.started = asyncio.Event()
        self.closed = False

    async def __aenter__(self) -> FakeMessageStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed = True

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for i, name in enumerate(self._events):
            if i == 1:
                self.started.set()
                if self._gate is not None:
                    await self._gate.wait()
                if self._fail_with is not None:
                    raise self._fail_with
            yield SimpleNamespace(type=name)

    async def get_final_message(self) -> Any:
        return self._message


@dataclass
class _FakeMessages:
    owner: FakeAnthropicClient

    def stream(self, **params: Any) -> FakeMessageStream:
        self.owner.stream_calls.append(params)
        item = self.owner.script.pop(0) if self.owner.script else native_message()
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, FakeMessageStream):
            return item
        return FakeMessageStream(item)

    async def create(self, **params: Any) -> Any:
        self.owner.create_calls.append(params)
        item = self.owner.script.pop(0) if self.owner.script else native_message()
        if isinstance(item, BaseException):
            raise item
        return item


@dataclass
class FakeAnthropicClient:
    """Scripted native client; script items are messages, streams or exceptions."""

    script: list[Any] = field(default_factory=list)
    api_key: str = "sk-ant-test"
    base_url: str = "https://api.anthropic.com"
    stream_calls: list[dict[str, Any]] = field(default_factory=list)
    create_calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def __post_init__(self) -> None:
        self.messages = _FakeMessages(self)

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Chat completion fakes
# =============================================================================


def chat_chunk(
    delta: dict[str, Any] | None = None,
    *,
    finish_reason: str | None = None,
    usage: dict[str, Any] | None = None,
    id: str = "chatcmpl-1",
    model: str = "gpt-4.1",
) -> dict[str, Any]:
    chunk: dict[str, Any] = {
        "id": id,
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": model,
        "choices": [],
    }
    if delta is not None or finish_reason is not None:
        chunk["choices"] = [
            {"index": 0, "delta": delta or {}, "finish_reason": finish_reason}
        ]
    if usage is not None:
        chunk["usage"] = usage
    return chunk


async def aiter_chunks(chunks: list[Any], fail_with: BaseException | None = None) -> Any:
    for chunk in chunks:
        yield chunk
    if fail_with is not None:
        raise fail_with


class FakeChatStream:
    """Chunk iterator shaped like the SDK's ``AsyncStream``, with ``close()``.

    With a *gate*, iteration parks before chunk *gate_after* until it is set.
    """

    def __init__(
        self,
        chunks: list[Any],
        *,
        fail_with: BaseException | None = None,
        gate: asyncio.Event | None = None,
        gate_after: int = 1,
    ) -> None:
        self._chunks = chunks
        self._fail_with = fail_with
        self._gate = gate
        self._gate_after = gate_after
        self.parked = asyncio.Event()
        self.closed = False

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for i, chunk in enumerate(self._chunks):
            if self._gate is not None and i == self._gate_after:
                self.parked.set()
                await self._gate.wait()
            yield chunk
        if self._fail_with is not None:
            raise self._fail_with

    async def close(self) -> None:
        self.closed = True


@dataclass
class _FakeCompletions:
    owner: FakeOpenAIClient

    async def create(self, **params: Any) -> Any:
        self.owner.calls.append(params)
        item = self.owner.script.pop(0) if self.owner.script else {}
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, list):
            return FakeChatStream(item)
        return item


@dataclass
class FakeOpenAIClient:
    """Scripted chat client; list items stream as chunks, dicts return as-is."""

    script: list[Any] = field(default_factory=list)
    base_url: str = "https://api.openai.com/v1/"
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def __post_init__(self) -> None:
        self.chat = SimpleNamespace(completions=_FakeCompletions(self))

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Orchestrator collaborators
# =============================================================================


@dataclass
class ClientFactory:
    """Records every ``ClientSpec`` and returns a fresh token object per build.

    ``started`` is set once a build begins; a *gate* holds builds until set.
    """

    specs: list[Any] = field(default_factory=list)
    delay_s: float = 0.0
    client: Any = None
    gate: asyncio.Event | None = None
    started: asyncio.Event = field(default_factory=asyncio.Event)

    async def __call__(self, spec: Any) -> Any:
        self.specs.append(spec)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.client is not None:
            return self.client
        return SimpleNamespace(spec=spec)


@dataclass
class RecordingLogSink:
    """Raw API log sink that keeps every call in memory."""

    calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = field(default_factory=list)

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))

    def log_request(self, *args: Any) -> None:
        self._record("request", *args)

    def log_stream_start(self, *args: Any) -> None:
        self._record("stream_start", *args)

    def log_stream_chunk(self, *args: Any) -> None:
        self._record("stream_chunk", *args)

    def log_stream_complete(self, *args: Any) -> None:
        self._record("stream_complete", *args)

    def log_response(self, *args: Any) -> None:
        self._record("response", *args)

    def log_error(self, *args: Any, **kwargs: Any) -> None:
        self._record("error", *args, **kwargs)

    def named(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args, _ in self.calls if call == name]


@dataclass
class ScriptedProvider:
    """Provider double returning scripted results or raising scripted errors."""

    name: str = "scripted"
    script: list[Any] = field(default_factory=list)
    requests: list[ProviderRequest] = field(default_factory=list)
    clients: list[Any] = field(default_factory=list)
    gate: asyncio.Event | None = None
    entered: asyncio.Event = field(default_factory=asyncio.Event)

    async def complete(
        self,
        client: Any,
        request: ProviderRequest,
        *,
        request_id: str,
        cancel: Any = None,
    ) -> ProviderResult:
        _ = request_id, cancel
        self.requests.append(request)
        self.clients.append(client)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if self.script else ok_result()
        if isinstance(item, BaseException):
            raise item
        return item


def ok_result(
    text: str = "ok", *, usage: Usage | None = None, ttft_ms: float | None = 12.0
) -> ProviderResult:
    return ProviderResult(
        content=(TextBlock(text),),
        stop_reason="end_turn",
        usage=usage or Usage(input_tokens=100, output_tokens=10),
        ttft_ms=ttft_ms,
    )


@dataclass
class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay_s: float) -> None:
        self.delays.append(delay_s)
