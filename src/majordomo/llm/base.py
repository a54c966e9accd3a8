"""
Base classes for completion backends.

Every backend speaks the same canonical model: messages made of content
blocks, tool definitions, and a stream of text/tool_use/error/done events.
"""

import json
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Union

import structlog

from ..errors import MalformedStreamError, TransportError

logger = structlog.get_logger()

StopReason = Literal["end_turn", "tool_use", "max_tokens", "error"]


@dataclass
class TextBlock:
    """Plain text content."""

    text: str
    type: Literal["text"] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    """A tool call recorded in an assistant message."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = "tool_use"

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """The outcome of a tool call, sent back in a user message."""

    tool_use_id: str
    content: str
    is_error: bool = False
    type: Literal["tool_result"] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            data["is_error"] = True
        return data


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def content_block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Rebuild a content block from its dict form."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text", ""))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=data["id"],
            name=data["name"],
            input=dict(data.get("input") or {}),
        )
    if block_type == "tool_result":
        content = data.get("content", "")
        if isinstance(content, list):
            content = "\n".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        return ToolResultBlock(
            tool_use_id=data["tool_use_id"],
            content=str(content),
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unknown content block type: {block_type}")


@dataclass
class Message:
    """A message in the conversation."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]

    @property
    def text(self) -> str:
        """Concatenated text content."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        if isinstance(self.content, str):
            return []
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        if isinstance(self.content, str):
            return []
        return [b for b in self.content if isinstance(b, ToolResultBlock)]

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.to_dict() for block in self.content]
        return {"role": self.role, "content": content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content", "")
        if isinstance(content, list):
            content = [content_block_from_dict(block) for block in content]
        return cls(role=data["role"], content=content)


@dataclass
class ToolParameter:
    """Definition of a single tool parameter."""

    type: str
    description: str
    required: bool = False


@dataclass
class ToolDefinition:
    """Definition of a tool that the backend can ask for."""

    name: str
    description: str
    parameters: dict[str, ToolParameter] = field(default_factory=dict)

    def input_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        return {
            "type": "object",
            "properties": {
                name: {"type": param.type, "description": param.description}
                for name, param in self.parameters.items()
            },
            "required": [name for name, param in self.parameters.items() if param.required],
        }


@dataclass
class ToolCall:
    """A tool call made by the backend."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamEvent:
    """A canonical unit of streamed output."""

    type: Literal["text", "tool_use", "error", "done"]
    text: str | None = None
    tool_call: ToolCall | None = None
    error: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(type="text", text=text)

    @classmethod
    def tool_use(cls, tool_call: ToolCall) -> "StreamEvent":
        return cls(type="tool_use", tool_call=tool_call)

    @classmethod
    def failure(cls, error: str) -> "StreamEvent":
        return cls(type="error", error=error)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(type="done")


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class CompletionRequest:
    """Canonical request sent to any backend."""

    messages: list[Message]
    system_prompt: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    max_tokens: int | None = None


@dataclass
class CompletionResponse:
    """Canonical buffered response from any backend."""

    content: list[ContentBlock]
    stop_reason: StopReason = "end_turn"
    usage: Usage | None = None

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [
            ToolCall(id=b.id, name=b.name, input=b.input)
            for b in self.content
            if isinstance(b, ToolUseBlock)
        ]


def decode_tool_arguments(raw: str) -> dict[str, Any]:
    """Decode a complete tool-call argument buffer.

    Raises MalformedStreamError when the buffer is not a JSON object.
    """
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedStreamError(f"Invalid tool arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedStreamError(f"Tool arguments are a {type(parsed).__name__}, not an object")
    return parsed


def parse_tool_arguments(raw: str | None, tool_name: str = "") -> dict[str, Any]:
    """Parse buffered tool-call arguments, degrading to an empty dict."""
    if not raw:
        return {}
    try:
        return decode_tool_arguments(raw)
    except MalformedStreamError as e:
        logger.warning("Malformed tool arguments, using empty input", tool=tool_name, error=str(e))
        return {}


def extract_text_tool_call(text: str, tools: list[ToolDefinition]) -> tuple[str, dict[str, Any]] | None:
    """Find a `{"tool": ..., "params": ...}` request in plain reply text.

    Used by backends without a native tool protocol. Only names from the
    offered tool list are accepted.
    """
    if not tools or '"tool"' not in text:
        return None

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None

    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None

    if not isinstance(payload, dict):
        return None

    name = payload.get("tool")
    if name not in {tool.name for tool in tools}:
        return None

    params = payload.get("params")
    return name, params if isinstance(params, dict) else {}


class BaseLLM(ABC):
    """Base class for completion backend adapters.

    Subclasses implement `_complete` and `_stream`; this class turns their
    transport failures into `TransportError` and guarantees every stream
    ends with exactly one `done` event.
    """

    transport_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, model: str, max_tokens: int = 8192):
        self.model = model
        self.max_tokens = max_tokens

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @abstractmethod
    async def is_configured(self) -> bool:
        """Probe whether the backend is usable. Never raises."""
        pass

    @abstractmethod
    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        pass

    @abstractmethod
    def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        pass

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run a buffered completion."""
        try:
            return await self._complete(request)
        except TransportError:
            raise
        except self.transport_errors as e:
            logger.error("Completion failed", provider=self.provider_name, error=str(e))
            raise TransportError(f"{self.provider_name} request failed: {e}") from e

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Run a streaming completion."""
        try:
            async with aclosing(self._stream(request)) as events:
                async for event in events:
                    if event.type == "done":
                        continue
                    yield event
        except TransportError as e:
            logger.error("Streaming failed", provider=self.provider_name, error=str(e))
            yield StreamEvent.failure(str(e))
        except self.transport_errors as e:
            logger.error("Streaming failed", provider=self.provider_name, error=str(e))
            yield StreamEvent.failure(f"{self.provider_name} stream failed: {e}")
        yield StreamEvent.done()

    def _max_tokens(self, request: CompletionRequest) -> int:
        return request.max_tokens or self.max_tokens
