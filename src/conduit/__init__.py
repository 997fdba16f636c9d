"""Conduit: provider query orchestration for LLM-backed assistants.

Public API:
    - Orchestrator: query_large() / query_small() against the configured provider
    - Config: Configuration dataclass
    - Conversation types: UserMessage, AssistantMessage and content blocks
    - ToolSpec: Tool name, description and input schema
    - CancelSignal: Cooperative cancellation for in-flight queries
"""

from __future__ import annotations

import logging

from conduit.cancel import CancelSignal
from conduit.config import Config
from conduit.cost import CostTracker, compute_cost
from conduit.errors import (
    APIError,
    AuthenticationError,
    ConduitError,
    ConfigurationError,
    InternalError,
    QueryAborted,
    RateLimitError,
    StreamAssemblyError,
)
from conduit.messages import (
    AssistantMessage,
    ProviderResponse,
    RedactedThinkingBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserMessage,
)
from conduit.query import Orchestrator, QueryOptions, format_system_prompt_with_context
from conduit.retry import RetryPolicy
from conduit.session import SessionState
from conduit.telemetry import MemoryReporter, Telemetry
from conduit.tools import ToolSpec

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("conduit-orchestrator")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("conduit").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AssistantMessage",
    "AuthenticationError",
    "CancelSignal",
    "ConduitError",
    "Config",
    "ConfigurationError",
    "CostTracker",
    "InternalError",
    "MemoryReporter",
    "Orchestrator",
    "ProviderResponse",
    "QueryAborted",
    "QueryOptions",
    "RateLimitError",
    "RedactedThinkingBlock",
    "RetryPolicy",
    "SessionState",
    "StreamAssemblyError",
    "Telemetry",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolSpec",
    "ToolUseBlock",
    "Usage",
    "UserMessage",
    "compute_cost",
    "format_system_prompt_with_context",
]
