"""Translation between content-block messages and chat-completion messages.

The OpenAI-compatible path is the only place chat shapes exist. Everything
crossing this module's boundary in the inward direction is a
``ConversationMessage`` or a ``ProviderResult``.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from typing import TYPE_CHECKING, Any

from conduit.messages import (
    AssistantMessage,
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserMessage,
    content_blocks,
    new_uuid,
)
from conduit.providers.base import ProviderResult
from conduit.telemetry import MALFORMED_RESPONSE

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from conduit.messages import ConversationMessage
    from conduit.telemetry import Telemetry
    from conduit.tools import ResolvedTool

logger = logging.getLogger(__name__)

ChatMessage = dict[str, Any]

_FINISH_REASONS: dict[str, str] = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
}

# Providers disagree on where reasoning text lives; first non-empty wins.
_REASONING_FIELDS = ("reasoning", "reasoning_content")


def to_chat_messages(messages: Iterable[ConversationMessage]) -> list[ChatMessage]:
    """Translate conversation messages into chat-completion messages.

    Tool results are held back and emitted directly after the assistant
    message that carries the matching call. Results with no matching call
    are dropped. Thinking blocks are not forwarded.
    """
    expanded: list[ChatMessage] = []
    results: dict[str, ChatMessage] = {}

    for message in messages:
        for block in content_blocks(message):
            if isinstance(block, TextBlock):
                expanded.append({"role": message.role, "content": block.text})
            elif isinstance(block, ToolUseBlock):
                expanded.append(
                    {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": block.id,
                                "type": "function",
                                "function": {
                                    "name": block.name,
                                    "arguments": json.dumps(block.input),
                                },
                            }
                        ],
                    }
                )
            elif isinstance(block, ToolResultBlock):
                results[block.tool_use_id] = {
                    "role": "tool",
                    "content": block.text,
                    "tool_call_id": block.tool_use_id,
                }

    ordered: list[ChatMessage] = []
    for entry in expanded:
        ordered.append(entry)
        for call in entry.get("tool_calls") or ():
            result = results.pop(call["id"], None)
            if result is not None:
                ordered.append(result)

    for orphan in results:
        logger.debug("Dropping tool result %s with no preceding tool call", orphan)
    return ordered


def chat_messages_to_conversation(
    chat: Iterable[Mapping[str, Any]],
) -> list[ConversationMessage]:
    """Translate chat-completion messages back into conversation messages.

    Consecutive assistant entries merge into one assistant message; ``tool``
    entries become tool results inside a user message. System entries are
    skipped.
    """
    turns: list[tuple[str, list[ContentBlock]]] = []

    def push(role: str, block: ContentBlock) -> None:
        if turns and turns[-1][0] == role:
            turns[-1][1].append(block)
        else:
            turns.append((role, [block]))

    for entry in chat:
        role = entry.get("role")
        if role == "tool":
            push(
                "user",
                ToolResultBlock(
                    tool_use_id=str(entry.get("tool_call_id") or ""),
                    content=_text_of(entry.get("content")),
                ),
            )
        elif role == "assistant":
            for block in _message_blocks(entry):
                push("assistant", block)
        elif role == "user":
            push("user", TextBlock(_text_of(entry.get("content"))))

    return [
        AssistantMessage(content=tuple(blocks))
        if role == "assistant"
        else UserMessage(content=tuple(blocks))
        for role, blocks in turns
    ]


def from_chat_completion(
    completion: Mapping[str, Any], telemetry: Telemetry | None = None
) -> ProviderResult:
    """Decompose the first choice of a chat completion into content blocks."""
    choices = completion.get("choices") or []
    choice: Mapping[str, Any] = choices[0] if choices else {}
    stop_reason = normalize_finish_reason(choice.get("finish_reason"))
    usage = usage_from_chat(completion.get("usage"))
    model = completion.get("model")

    message = choice.get("message")
    if not message:
        logger.warning("Chat completion has no message; returning empty content")
        if telemetry is not None:
            telemetry.emit(
                MALFORMED_RESPONSE,
                response=json.dumps(completion, default=repr)[:2000],
            )
        return ProviderResult(content=(), stop_reason=stop_reason, usage=usage, model=model)

    return ProviderResult(
        content=tuple(_message_blocks(message)),
        stop_reason=stop_reason,
        usage=usage,
        model=model,
    )


def _message_blocks(message: Mapping[str, Any]) -> list[ContentBlock]:
    """Tool calls first, then reasoning, then text."""
    blocks: list[ContentBlock] = []
    for call in message.get("tool_calls") or ():
        function = call.get("function") or {}
        call_id = call.get("id") or ""
        blocks.append(
            ToolUseBlock(
                id=call_id if call_id else new_uuid(),
                name=str(function.get("name") or ""),
                input=_parse_arguments(function.get("arguments")),
            )
        )

    for name in _REASONING_FIELDS:
        reasoning = message.get(name)
        if isinstance(reasoning, str) and reasoning:
            blocks.append(ThinkingBlock(thinking=reasoning))
            break

    text = _text_of(message.get("content"))
    if text:
        blocks.append(TextBlock(text))
    return blocks


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Unparsable tool call arguments: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _text_of(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        return "".join(
            part.get("text", "") if isinstance(part, Mapping) else str(part)
            for part in content
        )
    return str(content)


def normalize_finish_reason(reason: str | None) -> str | None:
    """Map chat-completion finish reasons onto content-block stop reasons."""
    if reason is None:
        return None
    return _FINISH_REASONS.get(reason, reason)


def usage_from_chat(usage: Mapping[str, Any] | None) -> Usage:
    """Map chat usage counters; cached prompt tokens count as cache reads."""
    if not usage:
        return Usage()
    details = usage.get("prompt_tokens_details") or usage.get("prompt_token_details")
    cached = details.get("cached_tokens") if isinstance(details, Mapping) else None
    return Usage.from_mapping(
        {
            "input_tokens": usage.get("prompt_tokens"),
            "output_tokens": usage.get("completion_tokens"),
            "cache_read_input_tokens": cached,
        }
    )


def tools_to_chat(tools: Sequence[ResolvedTool]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def system_to_chat(system: Sequence[str]) -> list[ChatMessage]:
    return [{"role": "system", "content": text} for text in system if text]
