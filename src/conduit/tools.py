"""Tool specifications read when building a request.

The tool registry owns its tools; the orchestrator only resolves each tool's
description and JSON schema per call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from conduit.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

DescriptionFn = Callable[..., Awaitable[str]]
InputSchema = type[BaseModel] | dict[str, Any]


@dataclass(frozen=True)
class ResolvedTool:
    """A tool with its description resolved for one request."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True)
class ToolSpec:
    """Name, description and input schema of one tool.

    ``description`` may be an async callable because the text can depend on
    runtime permission state; it is called with
    ``dangerously_skip_permissions=<bool>``.
    """

    name: str
    description: str | DescriptionFn
    input_schema: InputSchema

    def __post_init__(self) -> None:
        """Validate shapes early for clear errors."""
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("ToolSpec.name must be a non-empty string")
        if not (isinstance(self.description, str) or callable(self.description)):
            raise ConfigurationError(
                f"ToolSpec {self.name!r}: description must be a string or async callable",
            )
        if not (
            isinstance(self.input_schema, dict)
            or (
                isinstance(self.input_schema, type)
                and issubclass(self.input_schema, BaseModel)
            )
        ):
            raise ConfigurationError(
                f"ToolSpec {self.name!r}: input_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )

    def input_json_schema(self) -> dict[str, Any]:
        """Return the JSON Schema sent to providers."""
        schema = self.input_schema
        if isinstance(schema, dict):
            return schema
        return schema.model_json_schema()

    async def resolve_description(
        self, *, dangerously_skip_permissions: bool = False
    ) -> str:
        if isinstance(self.description, str):
            return self.description
        return await self.description(
            dangerously_skip_permissions=dangerously_skip_permissions
        )

    async def resolve(
        self, *, dangerously_skip_permissions: bool = False
    ) -> ResolvedTool:
        description = await self.resolve_description(
            dangerously_skip_permissions=dangerously_skip_permissions
        )
        return ResolvedTool(
            name=self.name,
            description=description,
            input_schema=self.input_json_schema(),
        )


async def resolve_tools(
    tools: Sequence[ToolSpec], *, dangerously_skip_permissions: bool = False
) -> tuple[ResolvedTool, ...]:
    """Resolve every tool description concurrently, preserving order."""
    if not tools:
        return ()
    resolved = await asyncio.gather(
        *(
            t.resolve(dangerously_skip_permissions=dangerously_skip_permissions)
            for t in tools
        )
    )
    return tuple(resolved)
