from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator

import mcp.types as mcp_types
from pydantic import BaseModel

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


def dump_model(model: BaseModel) -> dict:
    """JSON-ready dict of an `mcp.types` model, wire aliases and no nulls."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def text_result(text: str, *, is_error: bool = False) -> dict:
    """`CallToolResult` with a single text item."""
    return dump_model(
        mcp_types.CallToolResult(
            content=[mcp_types.TextContent(type="text", text=text)],
            isError=is_error,
        )
    )


def as_tool_result(payload: Any) -> dict:
    """Validate ready-made envelopes; render anything else as JSON text."""
    if isinstance(payload, dict) and isinstance(payload.get("content"), list):
        return dump_model(mcp_types.CallToolResult.model_validate(payload))
    if isinstance(payload, str):
        return text_result(payload)
    return text_result(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def object_schema(properties: dict[str, dict] | None = None, required: list[str] | None = None) -> dict:
    return {"type": "object", "properties": dict(properties or {}), "required": list(required or [])}


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: ToolHandler
    input_schema: dict = field(default_factory=object_schema)

    def describe(self) -> dict:
        return dump_model(
            mcp_types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)
        )


class ToolCatalog:
    """Named, schema-described operations the router can dispatch to."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> Tool:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        return tool

    def tool(self, name: str, description: str, *, properties: dict | None = None, required: list[str] | None = None):
        """Decorator form of `register` for async handlers taking the arguments dict."""

        def decorator(fn: ToolHandler) -> ToolHandler:
            self.register(Tool(name=name, description=description, handler=fn, input_schema=object_schema(properties, required)))
            return fn

        return decorator

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def describe_all(self) -> list[dict]:
        return [t.describe() for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
