"""Provider protocol and the request/result records exchanged with it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from conduit.messages import Usage

if TYPE_CHECKING:
    from conduit.cancel import CancelSignal
    from conduit.config import Tier
    from conduit.messages import ContentBlock, ConversationMessage
    from conduit.tools import ResolvedTool


@dataclass(frozen=True)
class ProviderRequest:
    """Provider-neutral description of one model call.

    ``system`` holds the system prompt blocks as the caller supplied them.
    ``cache_system`` and ``cache_messages`` control where ephemeral cache
    markers go when prompt caching is enabled.
    """

    tier: Tier
    model: str
    system: tuple[str, ...]
    messages: tuple[ConversationMessage, ...]
    tools: tuple[ResolvedTool, ...] = ()
    max_tokens: int = 8192
    temperature: float = 1.0
    thinking_budget: int = 0
    prompt_caching: bool = True
    cache_system: bool = True
    cache_messages: bool = True
    metadata: dict[str, Any] | None = None
    reasoning_effort: str | None = None
    #: Chat path only; the native path always streams.
    stream: bool = True


@dataclass(frozen=True)
class ProviderResult:
    """A completed model call before cost and timing are attached."""

    content: tuple[ContentBlock, ...] | None
    stop_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    ttft_ms: float | None = None
    model: str | None = None


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: one attempt of one request."""

    name: str

    async def complete(
        self,
        client: Any,
        request: ProviderRequest,
        *,
        request_id: str,
        cancel: CancelSignal | None = None,
    ) -> ProviderResult:
        """Run a single attempt; retrying is the caller's concern."""
        ...
