from __future__ import annotations

import json

import pytest

from conduit.messages import (
    AssistantMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from conduit.providers.bridge import (
    chat_messages_to_conversation,
    from_chat_completion,
    normalize_finish_reason,
    system_to_chat,
    to_chat_messages,
    tools_to_chat,
    usage_from_chat,
)
from conduit.telemetry import MALFORMED_RESPONSE, MemoryReporter, Telemetry
from conduit.tools import ResolvedTool

pytestmark = pytest.mark.unit


def _conversation() -> list[UserMessage | AssistantMessage]:
    return [
        UserMessage("List the files"),
        AssistantMessage(
            (
                TextBlock("Sure."),
                ToolUseBlock(id="call_1", name="Ls", input={"path": "."}),
            )
        ),
        UserMessage((ToolResultBlock(tool_use_id="call_1", content="a.py\nb.py"),)),
        AssistantMessage("Two files."),
    ]


def test_tool_results_follow_their_call() -> None:
    chat = to_chat_messages(_conversation())

    assert [m["role"] for m in chat] == ["user", "assistant", "assistant", "tool", "assistant"]
    call = chat[2]
    assert call["content"] is None
    assert call["tool_calls"][0]["id"] == "call_1"
    assert json.loads(call["tool_calls"][0]["function"]["arguments"]) == {"path": "."}
    assert chat[3] == {"role": "tool", "content": "a.py\nb.py", "tool_call_id": "call_1"}


def test_tool_result_before_its_call_is_reordered() -> None:
    messages = [
        UserMessage((ToolResultBlock(tool_use_id="t", content="out"),)),
        AssistantMessage((ToolUseBlock(id="t", name="Run"),)),
    ]
    chat = to_chat_messages(messages)
    assert [m["role"] for m in chat] == ["assistant", "tool"]


def test_orphan_tool_results_and_thinking_are_dropped() -> None:
    messages = [
        UserMessage((ToolResultBlock(tool_use_id="nope", content="x"),)),
        AssistantMessage((ThinkingBlock("hmm"), TextBlock("done"))),
    ]
    assert to_chat_messages(messages) == [{"role": "assistant", "content": "done"}]


def test_round_trip_preserves_tool_pairing() -> None:
    back = chat_messages_to_conversation(to_chat_messages(_conversation()))

    assert [type(m) for m in back] == [UserMessage, AssistantMessage, UserMessage, AssistantMessage]
    assistant_blocks = back[1].content
    assert isinstance(assistant_blocks, tuple)
    assert assistant_blocks[0] == TextBlock("Sure.")
    tool_use = assistant_blocks[1]
    assert isinstance(tool_use, ToolUseBlock)
    assert (tool_use.id, tool_use.name, tool_use.input) == ("call_1", "Ls", {"path": "."})

    result_blocks = back[2].content
    assert isinstance(result_blocks, tuple)
    assert result_blocks[0] == ToolResultBlock(tool_use_id="call_1", content="a.py\nb.py")


def test_chat_to_conversation_skips_system_entries() -> None:
    back = chat_messages_to_conversation(
        [{"role": "system", "content": "be nice"}, {"role": "user", "content": "hi"}]
    )
    assert len(back) == 1
    assert back[0].content == (TextBlock("hi"),)


def test_from_chat_completion_orders_blocks() -> None:
    completion = {
        "model": "gpt-4.1",
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": "Running it.",
                    "reasoning_content": "should run ls",
                    "tool_calls": [
                        {
                            "id": "call_9",
                            "type": "function",
                            "function": {"name": "Ls", "arguments": '{"path": "/"}'},
                        }
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ],
        "usage": {
            "prompt_tokens": 50,
            "completion_tokens": 7,
            "prompt_tokens_details": {"cached_tokens": 40},
        },
    }

    result = from_chat_completion(completion)

    assert result.content == (
        ToolUseBlock(id="call_9", name="Ls", input={"path": "/"}),
        ThinkingBlock("should run ls"),
        TextBlock("Running it."),
    )
    assert result.stop_reason == "tool_use"
    assert result.model == "gpt-4.1"
    assert result.usage.input_tokens == 50
    assert result.usage.output_tokens == 7
    assert result.usage.cache_read_input_tokens == 40
    assert result.usage.cache_creation_input_tokens == 0


def test_reasoning_prefers_reasoning_field() -> None:
    completion = {
        "choices": [
            {"message": {"reasoning": "a", "reasoning_content": "b", "content": ""}}
        ]
    }
    assert from_chat_completion(completion).content == (ThinkingBlock("a"),)


def test_tool_call_without_id_gets_generated_id_and_bad_args_become_empty() -> None:
    completion = {
        "choices": [
            {
                "message": {
                    "tool_calls": [{"function": {"name": "X", "arguments": "{not json"}}]
                }
            }
        ]
    }
    (block,) = from_chat_completion(completion).content or ()
    assert isinstance(block, ToolUseBlock)
    assert block.id
    assert block.input == {}


def test_missing_message_reports_malformed_response() -> None:
    reporter = MemoryReporter()
    result = from_chat_completion({"choices": []}, Telemetry(reporter))

    assert result.content == ()
    assert len(reporter.named(MALFORMED_RESPONSE)) == 1


@pytest.mark.parametrize(
    ("reason", "expected"),
    [
        ("stop", "end_turn"),
        ("length", "max_tokens"),
        ("tool_calls", "tool_use"),
        ("function_call", "tool_use"),
        ("content_filter", "content_filter"),
        (None, None),
    ],
)
def test_normalize_finish_reason(reason: str | None, expected: str | None) -> None:
    assert normalize_finish_reason(reason) == expected


def test_usage_accepts_alternate_details_spelling() -> None:
    usage = usage_from_chat(
        {"prompt_tokens": 5, "prompt_token_details": {"cached_tokens": 2}}
    )
    assert usage.cache_read_input_tokens == 2
    assert usage.output_tokens == 0


def test_tools_and_system_to_chat() -> None:
    tool = ResolvedTool(name="Ls", description="List", input_schema={"type": "object"})
    assert tools_to_chat([tool]) == [
        {
            "type": "function",
            "function": {
                "name": "Ls",
                "description": "List",
                "parameters": {"type": "object"},
            },
        }
    ]
    assert system_to_chat(["a", "", "b"]) == [
        {"role": "system", "content": "a"},
        {"role": "system", "content": "b"},
    ]
