"""
Base classes for tools.

Concrete integrations live outside the core; they plug in as handlers that
receive the call parameters plus an opaque context and return text.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Protocol

from ..llm.base import ToolDefinition, ToolParameter

ToolHandler = Callable[[dict[str, Any], Any], Coroutine[Any, Any, str]]


@dataclass
class ToolInvocation:
    """A request to run one tool."""

    tool: str
    params: dict[str, Any] = field(default_factory=dict)


class ToolExecutor(Protocol):
    """Anything that can run a tool invocation and return its text result."""

    async def execute_tool(self, invocation: ToolInvocation, context: Any = None) -> str:
        ...


@dataclass
class Tool:
    """
    A tool definition paired with the handler that implements it.
    """

    definition: ToolDefinition
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name

    @classmethod
    def create(
        cls,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: dict[str, ToolParameter] | None = None,
    ) -> "Tool":
        return cls(
            definition=ToolDefinition(
                name=name,
                description=description,
                parameters=parameters or {},
            ),
            handler=handler,
        )

    async def execute(self, params: dict[str, Any], context: Any = None) -> str:
        """Execute the tool handler."""
        return await self.handler(params, context)
