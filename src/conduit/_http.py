"""Small HTTP-related constants shared across Conduit.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Header names are compared lower-cased.
SHOULD_RETRY_HEADER = "x-should-retry"
RETRY_AFTER_HEADER = "retry-after"

# Headers whose values never reach a log sink.
CREDENTIAL_HEADERS: frozenset[str] = frozenset(
    {"authorization", "x-api-key", "api-key", "proxy-authorization"}
)
REDACTED = "[REDACTED]"

USER_AGENT = "conduit-orchestrator"
DEFAULT_HEADERS: dict[str, str] = {"x-app": "cli", "User-Agent": USER_AGENT}

DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"
