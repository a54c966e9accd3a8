"""
Anthropic Claude completion backend.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from .base import (
    BaseLLM,
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    Message,
    StopReason,
    StreamEvent,
    TextBlock,
    ToolCall,
    ToolDefinition,
    ToolUseBlock,
    Usage,
    parse_tool_arguments,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _map_stop_reason(stop_reason: str | None) -> StopReason:
    if stop_reason == "tool_use":
        return "tool_use"
    if stop_reason == "max_tokens":
        return "max_tokens"
    return "end_turn"


class AnthropicLLM(BaseLLM):
    """Anthropic Claude backend using the Messages API."""

    transport_errors = (anthropic.APIError,)

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 8192,
    ):
        super().__init__(model or DEFAULT_MODEL, max_tokens)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    async def is_configured(self) -> bool:
        try:
            await self.client.with_options(timeout=10.0).messages.create(
                model=self.model,
                max_tokens=1,
                messages=[{"role": "user", "content": "hi"}],
            )
            return True
        except anthropic.APIError as e:
            logger.debug("Anthropic probe failed", error=str(e))
            return False

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert canonical messages to Anthropic format."""
        return [msg.to_dict() for msg in messages]

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema(),
            }
            for tool in tools
        ]

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(request),
            "messages": self._convert_messages(request.messages),
        }

        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        response = await self.client.messages.create(**self._build_kwargs(request))

        content: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                content.append(ToolUseBlock(
                    id=block.id,
                    name=block.name,
                    input=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        return CompletionResponse(
            content=content,
            stop_reason=_map_stop_reason(response.stop_reason),
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        stream = await self.client.messages.create(**self._build_kwargs(request), stream=True)

        # content block index -> {"id", "name", "json"}
        pending: dict[int, dict[str, str]] = {}

        async for event in stream:
            if event.type == "content_block_start":
                block = event.content_block
                if block.type == "tool_use":
                    pending[event.index] = {"id": block.id, "name": block.name, "json": ""}

            elif event.type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    if delta.text:
                        yield StreamEvent.text_delta(delta.text)
                elif delta.type == "input_json_delta" and event.index in pending:
                    pending[event.index]["json"] += delta.partial_json

            elif event.type == "content_block_stop":
                tool = pending.pop(event.index, None)
                if tool is not None:
                    yield StreamEvent.tool_use(ToolCall(
                        id=tool["id"],
                        name=tool["name"],
                        input=parse_tool_arguments(tool["json"], tool["name"]),
                    ))
