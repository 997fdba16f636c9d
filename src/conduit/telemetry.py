"""Structured event emission with pluggable reporters.

Reporters are duck-typed. A reporter that raises is logged and skipped; it
never changes the outcome of the query that emitted the event.
"""

from __future__ import annotations

from collections import deque
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from conduit._flags import telemetry_enabled

if TYPE_CHECKING:
    from collections.abc import Iterable

log = logging.getLogger(__name__)

# Event names emitted by the orchestrator.
API_QUERY = "api_query"
API_RETRY = "api_retry"
API_SUCCESS = "api_success"
API_ERROR = "api_error"
SYSPROMPT_BLOCK = "sysprompt_block"
MALFORMED_RESPONSE = "malformed_response"
KEY_MARKED_FAILED = "key_marked_failed"


@runtime_checkable
class EventReporter(Protocol):
    """Duck-typed protocol for event reporters."""

    def record_event(self, name: str, **fields: Any) -> None: ...  # noqa: D102


class Telemetry:
    """Fan events out to reporters."""

    __slots__ = ("reporters",)

    def __init__(self, *reporters: EventReporter) -> None:
        self.reporters: tuple[EventReporter, ...] = reporters

    @classmethod
    def from_env(cls, reporters: Iterable[EventReporter] = ()) -> Telemetry:
        """Build with *reporters*, adding a logging reporter when ``CONDUIT_TELEMETRY=1``."""
        reps = tuple(reporters)
        if not reps and telemetry_enabled():
            reps = (LoggingReporter(),)
        return cls(*reps)

    @property
    def is_enabled(self) -> bool:
        return bool(self.reporters)

    def emit(self, name: str, **fields: Any) -> None:
        for reporter in self.reporters:
            try:
                reporter.record_event(name, **fields)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )


class LoggingReporter:
    """Write every event to the ``conduit.telemetry`` logger at INFO."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def record_event(self, name: str, **fields: Any) -> None:
        log.log(self.level, "%s %s", name, fields)


class MemoryReporter:
    """Bounded in-memory reporter for development and tests."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.events: deque[tuple[str, dict[str, Any]]] = deque(maxlen=max_entries)

    def record_event(self, name: str, **fields: Any) -> None:
        self.events.append((name, {**fields, "recorded_at": time.time()}))

    def named(self, name: str) -> list[dict[str, Any]]:
        """Return the fields of every recorded event called *name*."""
        return [fields for event, fields in self.events if event == name]

    def reset(self) -> None:
        self.events.clear()
