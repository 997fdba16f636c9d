"""Raw API log: a JSON-lines record of every request attempt.

Streamed chunks are buffered per request id and written as one entry when the
stream ends, so a long stream produces one log line instead of hundreds.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
import json
import logging
from pathlib import Path
import threading
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from conduit._http import CREDENTIAL_HEADERS, REDACTED

if TYPE_CHECKING:
    from collections.abc import Callable
    import os

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ApiLogSink(Protocol):
    """Receives per-attempt request lifecycle events."""

    def log_request(  # noqa: D102
        self,
        provider: str,
        request_id: str,
        endpoint: str,
        headers: Mapping[str, str],
        body: Any,
    ) -> None: ...

    def log_stream_start(self, provider: str, request_id: str) -> None: ...  # noqa: D102

    def log_stream_chunk(  # noqa: D102
        self, provider: str, request_id: str, chunk: Any, index: int
    ) -> None: ...

    def log_stream_complete(self, provider: str, request_id: str) -> None: ...  # noqa: D102

    def log_response(  # noqa: D102
        self, provider: str, request_id: str, body: Any, duration_ms: float
    ) -> None: ...

    def log_error(  # noqa: D102
        self,
        provider: str,
        request_id: str,
        error: BaseException,
        duration_ms: float,
        **details: Any,
    ) -> None: ...


def guarded(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    """Call a logging sink method; report failures on the module logger instead of raising."""
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.warning(
            "API log sink call %s failed: %s",
            getattr(fn, "__name__", repr(fn)),
            e,
            exc_info=True,
        )
        return None


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of *headers* with credential values replaced."""
    return {
        k: (REDACTED if str(k).lower() in CREDENTIAL_HEADERS else v)
        for k, v in headers.items()
    }


def to_jsonable(value: Any) -> Any:
    """Best-effort conversion of SDK objects into JSON-compatible data."""
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return repr(value)


class RawApiLogger:
    """JSON-lines ``ApiLogSink``. Disabled (a no-op) when *path* is None."""

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._chunks: dict[str, list[dict[str, Any]]] = {}

    @property
    def enabled(self) -> bool:
        return self._path is not None

    def _write(self, entry: dict[str, Any]) -> None:
        if self._path is None:
            return
        line = json.dumps(to_jsonable(entry), default=repr)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    @staticmethod
    def _now() -> str:
        return datetime.now(UTC).isoformat()

    def log_request(
        self,
        provider: str,
        request_id: str,
        endpoint: str,
        headers: Mapping[str, str],
        body: Any,
    ) -> None:
        if not self.enabled:
            return
        # A retry reuses nothing from an earlier attempt's buffer.
        with self._lock:
            self._chunks.pop(request_id, None)
        self._write(
            {
                "timestamp": self._now(),
                "type": "api_request",
                "provider": provider,
                "request_id": request_id,
                "data": {
                    "endpoint": endpoint,
                    "method": "POST",
                    "headers": redact_headers(headers),
                    "body": body,
                },
            }
        )

    def log_stream_start(self, provider: str, request_id: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._chunks[request_id] = []
        self._write(
            {
                "timestamp": self._now(),
                "type": "api_stream_start",
                "provider": provider,
                "request_id": request_id,
                "data": {"status": "connected"},
            }
        )

    def log_stream_chunk(
        self, provider: str, request_id: str, chunk: Any, index: int
    ) -> None:
        if not self.enabled:
            return
        _ = provider
        entry = {"timestamp": self._now(), "index": index, "data": to_jsonable(chunk)}
        with self._lock:
            self._chunks.setdefault(request_id, []).append(entry)

    def log_stream_complete(self, provider: str, request_id: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            chunks = self._chunks.pop(request_id, None)
        if not chunks:
            return
        self._write(
            {
                "timestamp": self._now(),
                "type": "api_stream_chunks",
                "provider": provider,
                "request_id": request_id,
                "chunk_count": len(chunks),
                "chunks": chunks,
            }
        )

    def log_response(
        self, provider: str, request_id: str, body: Any, duration_ms: float
    ) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._chunks.pop(request_id, None)
        self._write(
            {
                "timestamp": self._now(),
                "type": "api_response",
                "provider": provider,
                "request_id": request_id,
                "data": {"body": body, "duration_ms": duration_ms},
            }
        )

    def log_error(
        self,
        provider: str,
        request_id: str,
        error: BaseException,
        duration_ms: float,
        **details: Any,
    ) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._chunks.pop(request_id, None)
        self._write(
            {
                "timestamp": self._now(),
                "type": "api_error",
                "provider": provider,
                "request_id": request_id,
                "data": {
                    "error": str(error),
                    "error_class": type(error).__name__,
                    "status_code": getattr(error, "status_code", None),
                    "duration_ms": duration_ms,
                    **details,
                },
            }
        )
