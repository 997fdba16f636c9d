"""Internal conversation model and the normalized provider response.

Provider wire shapes never appear here: the native path and the
OpenAI-compatible path both translate into these types at their boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal
import uuid


def new_uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TextBlock:
    """Plain text content."""

    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    """The result of a tool invocation, keyed by the originating ``tool_use`` id."""

    tool_use_id: str
    content: str | tuple[TextBlock, ...] = ""
    is_error: bool = False
    type: Literal["tool_result"] = field(default="tool_result", init=False)

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(block.text for block in self.content)


@dataclass(frozen=True)
class ThinkingBlock:
    """Model reasoning. ``signature`` is empty for non-native providers."""

    thinking: str
    signature: str = ""
    type: Literal["thinking"] = field(default="thinking", init=False)


@dataclass(frozen=True)
class RedactedThinkingBlock:
    """Reasoning the provider returned in encrypted form."""

    data: str = ""
    type: Literal["redacted_thinking"] = field(default="redacted_thinking", init=False)


ContentBlock = (
    TextBlock | ToolUseBlock | ToolResultBlock | ThinkingBlock | RedactedThinkingBlock
)


@dataclass(frozen=True)
class UserMessage:
    """A user turn. Tool results travel in user turns."""

    content: str | tuple[ContentBlock, ...]
    uuid: str = field(default_factory=new_uuid)
    role: ClassVar[Literal["user"]] = "user"


@dataclass(frozen=True)
class AssistantMessage:
    """An assistant turn."""

    content: str | tuple[ContentBlock, ...]
    uuid: str = field(default_factory=new_uuid)
    role: ClassVar[Literal["assistant"]] = "assistant"


ConversationMessage = UserMessage | AssistantMessage


def content_blocks(message: ConversationMessage) -> tuple[ContentBlock, ...]:
    """Return the message content as blocks, wrapping plain text."""
    if isinstance(message.content, str):
        return (TextBlock(message.content),)
    return tuple(message.content)


@dataclass(frozen=True)
class Usage:
    """Token counters for one completed call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> Usage:
        """Build from a provider usage mapping; missing or null fields count as 0."""
        if not data:
            return cls()
        return cls(
            input_tokens=_as_int(data.get("input_tokens")),
            output_tokens=_as_int(data.get("output_tokens")),
            cache_read_input_tokens=_as_int(data.get("cache_read_input_tokens")),
            cache_creation_input_tokens=_as_int(
                data.get("cache_creation_input_tokens")
            ),
        )

    @classmethod
    def from_object(cls, usage: Any) -> Usage:
        """Build from an SDK usage object (attribute access)."""
        if usage is None:
            return cls()
        if isinstance(usage, Mapping):
            return cls.from_mapping(usage)
        return cls(
            input_tokens=_as_int(getattr(usage, "input_tokens", 0)),
            output_tokens=_as_int(getattr(usage, "output_tokens", 0)),
            cache_read_input_tokens=_as_int(
                getattr(usage, "cache_read_input_tokens", 0)
            ),
            cache_creation_input_tokens=_as_int(
                getattr(usage, "cache_creation_input_tokens", 0)
            ),
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read_input_tokens": self.cache_read_input_tokens,
            "cache_creation_input_tokens": self.cache_creation_input_tokens,
        }


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


@dataclass(frozen=True)
class ProviderResponse:
    """Normalized result of one query, created once and never mutated.

    Failed queries also produce a ``ProviderResponse``: ``is_api_error`` is set
    and the content holds a single user-facing error text block.
    """

    content: tuple[ContentBlock, ...]
    stop_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    duration_ms: float = 0.0
    ttft_ms: float | None = None
    cost_usd: float = 0.0
    model: str | None = None
    is_api_error: bool = False
    uuid: str = field(default_factory=new_uuid)
    role: Literal["assistant"] = "assistant"

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> tuple[ToolUseBlock, ...]:
        return tuple(b for b in self.content if isinstance(b, ToolUseBlock))

    def to_message(self) -> AssistantMessage:
        """Return the response as a conversation turn for the next query."""
        return AssistantMessage(content=self.content, uuid=self.uuid)
