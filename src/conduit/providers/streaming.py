"""Stream reconciliation: fold incremental events into one complete response.

The chat path folds deltas by hand with ``merge_delta``. The native path only
observes timing and lets the SDK assemble the final message.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import time
from typing import TYPE_CHECKING, Any

from conduit.errors import StreamAssemblyError

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Callable

_UNMERGED_KEYS = frozenset({"role"})


@dataclass(frozen=True)
class ReconciledStream:
    """A fully assembled response and its time-to-first-token."""

    response: Any
    ttft_ms: float | None


def as_dict(obj: Any) -> dict[str, Any]:
    """Return SDK models as plain dicts; mappings are copied."""
    if obj is None:
        return {}
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(exclude_none=True)
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to a dict")


def merge_delta(acc: Mapping[str, Any], delta: Mapping[str, Any]) -> dict[str, Any]:
    """Fold *delta* into a copy of *acc*.

    Unset fields take the delta value. Strings concatenate, except ``role``
    which is set once. Numbers are replaced. Lists merge element-wise by each
    element's ``index``. Nested mappings merge recursively. ``None`` in a
    delta never clears an accumulated value.
    """
    merged = dict(acc)
    for key, value in delta.items():
        if value is None:
            continue
        current = merged.get(key)
        if current is None:
            merged[key] = _fresh(value)
        elif isinstance(current, str) and isinstance(value, str):
            if key not in _UNMERGED_KEYS:
                merged[key] = current + value
        elif isinstance(current, list) and isinstance(value, list):
            merged[key] = _merge_indexed(key, current, value)
        elif isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_delta(current, value)
        else:
            merged[key] = _fresh(value)
    return merged


def _fresh(value: Any) -> Any:
    if isinstance(value, Mapping):
        return merge_delta({}, value)
    if isinstance(value, list):
        return _merge_indexed("", [], value)
    return value


def _merge_indexed(key: str, current: list[Any], items: list[Any]) -> list[Any]:
    result = list(current)
    for item in items:
        if isinstance(item, Mapping) and isinstance(item.get("index"), int):
            index: int = item["index"]
            fragment: Any = {k: v for k, v in item.items() if k != "index"}
        else:
            index = len(result)
            fragment = item

        if index < 0 or index > len(result):
            raise StreamAssemblyError(
                f"Stream delta for {key or 'list'!r} skips to index {index} "
                f"but only {len(result)} element(s) have been assembled",
            )
        if index == len(result):
            result.append(_fresh(fragment))
        elif isinstance(result[index], Mapping) and isinstance(fragment, Mapping):
            result[index] = merge_delta(result[index], fragment)
        else:
            result[index] = _fresh(fragment)
    return result


def reduce_chunk(message: Mapping[str, Any], chunk: Mapping[str, Any]) -> dict[str, Any]:
    """Apply the first choice's delta; usage-only chunks leave *message* unchanged."""
    choices = chunk.get("choices") or []
    if not choices:
        return dict(message)
    delta = choices[0].get("delta") or {}
    return merge_delta(message, delta)


def _first_delta_content(chunk: Mapping[str, Any]) -> Any:
    choices = chunk.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content")


async def reconcile_chat_stream(
    chunks: AsyncIterable[Any],
    *,
    started_at: float,
    clock: Callable[[], float] = time.monotonic,
) -> ReconciledStream:
    """Fold chat-completion chunks into a chat-completion dict.

    Envelope fields (``id``, ``model``, ``created``, ``object``) keep their
    first value; ``usage`` and ``finish_reason`` keep their last non-null one.
    """
    message: dict[str, Any] = {}
    envelope: dict[str, Any] = {}
    usage: Any = None
    finish_reason: str | None = None
    ttft_ms: float | None = None

    async for raw in chunks:
        if raw is None:
            continue
        chunk = as_dict(raw)
        for key in ("id", "model", "created", "object"):
            if envelope.get(key) is None and chunk.get(key) is not None:
                envelope[key] = chunk[key]
        if chunk.get("usage") is not None:
            usage = chunk["usage"]

        choices = chunk.get("choices") or []
        if choices and choices[0].get("finish_reason"):
            finish_reason = choices[0]["finish_reason"]

        message = reduce_chunk(message, chunk)
        if ttft_ms is None and _first_delta_content(chunk):
            ttft_ms = (clock() - started_at) * 1000

    completion = {
        **envelope,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": finish_reason or "stop",
            }
        ],
        "usage": usage,
    }
    return ReconciledStream(response=completion, ttft_ms=ttft_ms)


async def reconcile_native_stream(
    stream: Any,
    *,
    started_at: float,
    clock: Callable[[], float] = time.monotonic,
) -> ReconciledStream:
    """Time ``message_start`` and delegate assembly to ``get_final_message()``."""
    ttft_ms: float | None = None
    async for event in stream:
        if ttft_ms is None and getattr(event, "type", None) == "message_start":
            ttft_ms = (clock() - started_at) * 1000
    final = await stream.get_final_message()
    return ReconciledStream(response=final, ttft_ms=ttft_ms)
