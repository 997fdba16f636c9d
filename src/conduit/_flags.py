"""Internal helpers for environment-driven behavior toggles.

Centralizes how the process environment is read so semantics stay consistent
between configuration defaults and tests. Every helper accepts an
``override`` that takes precedence over the environment.
"""

from __future__ import annotations

import os

__all__ = [
    "benchmark_mode_enabled",
    "prompt_caching_enabled",
    "request_timeout_s",
    "telemetry_enabled",
]

_DEFAULT_TIMEOUT_MS = 60_000


def benchmark_mode_enabled(*, override: bool | None = None) -> bool:
    """Return True when running under the benchmark execution mode.

    Enabled by ``CONDUIT_BENCHMARK_MODE=1`` or the legacy ``USER_TYPE=SWE_BENCH``.
    """
    if override is not None:
        return bool(override)
    return (
        os.getenv("CONDUIT_BENCHMARK_MODE") == "1"
        or os.getenv("USER_TYPE") == "SWE_BENCH"
    )


def prompt_caching_enabled(*, override: bool | None = None) -> bool:
    """Return False when ``DISABLE_PROMPT_CACHING`` is set to any non-empty value."""
    if override is not None:
        return bool(override)
    return not os.getenv("DISABLE_PROMPT_CACHING")


def request_timeout_s(*, override: float | None = None) -> float:
    """Return the per-request timeout in seconds (``API_TIMEOUT_MS``, default 60s)."""
    if override is not None:
        return float(override)
    raw = os.getenv("API_TIMEOUT_MS")
    if not raw:
        return _DEFAULT_TIMEOUT_MS / 1000
    try:
        millis = int(raw)
    except ValueError:
        return _DEFAULT_TIMEOUT_MS / 1000
    return max(millis, 1) / 1000


def telemetry_enabled() -> bool:
    """Return True when ``CONDUIT_TELEMETRY`` is exactly ``"1"``."""
    return os.getenv("CONDUIT_TELEMETRY") == "1"
