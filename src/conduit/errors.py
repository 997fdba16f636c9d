"""Exception hierarchy for Conduit."""

from __future__ import annotations

from typing import TYPE_CHECKING

from conduit._http import RETRY_AFTER_HEADER, SHOULD_RETRY_HEADER

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class ConduitError(Exception):
    """Base exception for all Conduit errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ConduitError):
    """Configuration validation or credential resolution failed."""


class InternalError(ConduitError):
    """A Conduit internal error (bug) or invariant violation."""


class StreamAssemblyError(ConduitError):
    """A streamed response could not be reassembled.

    Raised when chunk deltas are inconsistent (for example a tool-call index
    that skips ahead of the accumulated array). Never retried.
    """


class QueryAborted(ConduitError):
    """The caller's cancel signal fired while a query was in flight."""

    def __init__(self, message: str = "Query aborted", *, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class APIError(ConduitError):
    """Provider API call failed.

    Providers attach transport metadata (status, headers, error kind) so the
    retry classifier can decide without re-inspecting SDK exception types.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
        error_type: str | None = None,
        connection_error: bool = False,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.headers: dict[str, str] = {
            str(k).lower(): str(v) for k, v in (headers or {}).items()
        }
        self.error_type = error_type
        self.connection_error = connection_error
        self.provider = provider

    @property
    def should_retry_header(self) -> bool | None:
        """Server retry hint from ``x-should-retry``; None when absent."""
        value = self.headers.get(SHOULD_RETRY_HEADER)
        if value == "true":
            return True
        if value == "false":
            return False
        return None

    @property
    def retry_after_s(self) -> int | None:
        """Whole seconds from ``retry-after`` when it parses as an integer."""
        raw = self.headers.get(RETRY_AFTER_HEADER)
        if raw is None:
            return None
        try:
            seconds = int(raw.strip())
        except ValueError:
            return None
        return seconds if seconds >= 0 else None


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class AuthenticationError(APIError):
    """Credential rejected by the provider (HTTP 401/403)."""


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
