"""
Tool registry: definitions and handlers, validated once at startup.
"""

from typing import Any, Iterable, Mapping

import structlog

from ..errors import ConfigurationError, ToolExecutionError
from ..llm.base import ToolDefinition
from .base import Tool, ToolHandler, ToolInvocation

logger = structlog.get_logger()


class ToolRegistry:
    """Registry mapping tool names to their definitions and handlers.

    Built once from a complete tool list; dispatch is a dict lookup, never a
    string-match fallback.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    @classmethod
    def from_handlers(
        cls,
        definitions: Iterable[ToolDefinition],
        handlers: Mapping[str, ToolHandler],
    ) -> "ToolRegistry":
        """Pair definitions with handlers, failing on any mismatch."""
        definitions = list(definitions)
        defined = {d.name for d in definitions}

        missing_handlers = sorted(defined - set(handlers))
        orphan_handlers = sorted(set(handlers) - defined)
        if missing_handlers or orphan_handlers:
            problems = []
            if missing_handlers:
                problems.append(f"no handler for: {', '.join(missing_handlers)}")
            if orphan_handlers:
                problems.append(f"no definition for: {', '.join(orphan_handlers)}")
            raise ConfigurationError("Tool registry is incomplete; " + "; ".join(problems))

        return cls(Tool(definition=d, handler=handlers[d.name]) for d in definitions)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ConfigurationError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions, in registration order."""
        return [tool.definition for tool in self._tools.values()]

    async def execute_tool(self, invocation: ToolInvocation, context: Any = None) -> str:
        """Execute a tool by name.

        Raises ToolExecutionError for unknown tools; handler exceptions
        propagate to the caller unchanged.
        """
        tool = self.get(invocation.tool)
        if tool is None:
            raise ToolExecutionError(invocation.tool, f"Unknown tool: {invocation.tool}")

        logger.info("Executing tool", tool_name=invocation.tool, params=invocation.params)
        result = await tool.execute(invocation.params, context)
        logger.info("Tool executed", tool_name=invocation.tool, result_chars=len(result))
        return result
