"""Shared provider-side error helpers.

Providers attach retry metadata to ``APIError`` so the classifier in
``conduit.retry`` decides from structured fields, not SDK exception types.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import anthropic
import httpx
import openai

from conduit.errors import (
    APIError,
    AuthenticationError,
    RateLimitError,
    walk_exception_chain,
)

# Raised when no HTTP response was received; SDK connection errors cover timeouts.
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.RequestError,
    anthropic.APIConnectionError,
    openai.APIConnectionError,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_headers(exc: BaseException) -> dict[str, str]:
    """Return response headers from the first exception in the chain that has them."""
    for e in walk_exception_chain(exc):
        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            headers = getattr(e, "headers", None)
        if headers is None:
            continue
        try:
            return {str(k): str(v) for k, v in headers.items()}
        except Exception:
            continue
    return {}


def extract_error_type(exc: BaseException) -> str | None:
    """Read the provider error kind from ``body["error"]["type"]``."""
    for e in walk_exception_chain(exc):
        body: Any = getattr(e, "body", None)
        if not isinstance(body, Mapping):
            continue
        error: Any = body.get("error")
        if isinstance(error, Mapping) and isinstance(error.get("type"), str):
            return error["type"]
        if isinstance(body.get("type"), str) and body.get("type") != "error":
            return body["type"]
    return None


def is_connection_error(exc: BaseException) -> bool:
    """Whether no HTTP response was received (refused, reset, timed out)."""
    return any(isinstance(e, _CONNECTION_ERRORS) for e in walk_exception_chain(exc))


def _auth_hint(provider: str) -> str:
    env_var = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"
    return f"Check credentials/permissions (try setting {env_var} or Config.large_api_keys)."


def wrap_provider_error(exc: BaseException, *, provider: str) -> APIError:
    """Map provider SDK exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        return exc

    status_code = extract_status_code(exc)
    connection_error = status_code is None and is_connection_error(exc)

    err_cls: type[APIError] = APIError
    hint: str | None = None
    if status_code == 429:
        err_cls = RateLimitError
    elif status_code in (401, 403):
        err_cls = AuthenticationError
        hint = _auth_hint(provider)

    message = str(exc) or type(exc).__name__
    return err_cls(
        message,
        hint=hint,
        status_code=status_code,
        headers=extract_headers(exc),
        error_type=extract_error_type(exc),
        connection_error=connection_error,
        provider=provider,
    )
