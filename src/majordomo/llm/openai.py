"""
OpenAI GPT completion backend (also works with compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
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
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    parse_tool_arguments,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "gpt-4o"

_STOP_REASON_MAP: dict[str, StopReason] = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "length": "max_tokens",
}


class OpenAILLM(BaseLLM):
    """OpenAI GPT backend using Chat Completions."""

    transport_errors = (openai.APIError,)

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
    ):
        super().__init__(model or DEFAULT_MODEL, max_tokens)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    async def is_configured(self) -> bool:
        try:
            await self.client.with_options(timeout=10.0).models.list()
            return True
        except openai.APIError as e:
            logger.debug("OpenAI probe failed", error=str(e))
            return False

    def _convert_messages(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> list[dict[str, Any]]:
        """Convert canonical messages to OpenAI format."""
        converted: list[dict[str, Any]] = []

        if system_prompt:
            converted.append({"role": "system", "content": system_prompt})

        for msg in messages:
            if isinstance(msg.content, str):
                converted.append({"role": msg.role, "content": msg.content})
                continue

            text_parts: list[str] = []
            tool_calls: list[dict[str, Any]] = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    if block.text:
                        text_parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    tool_calls.append({
                        "id": block.id,
                        "type": "function",
                        "function": {
                            "name": block.name,
                            "arguments": json.dumps(block.input),
                        },
                    })
                elif isinstance(block, ToolResultBlock):
                    converted.append({
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": block.content,
                    })

            if tool_calls:
                converted.append({
                    "role": msg.role,
                    "content": "".join(text_parts) or None,
                    "tool_calls": tool_calls,
                })
            elif text_parts:
                converted.append({"role": msg.role, "content": "".join(text_parts)})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema(),
                },
            }
            for tool in tools
        ]

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(request),
            "messages": self._convert_messages(request.messages, request.system_prompt),
        }

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        response = await self.client.chat.completions.create(**self._build_kwargs(request))

        choice = response.choices[0]
        message = choice.message

        content: list[ContentBlock] = []
        if message.content:
            content.append(TextBlock(text=message.content))

        for tc in message.tool_calls or []:
            content.append(ToolUseBlock(
                id=tc.id,
                name=tc.function.name,
                input=parse_tool_arguments(tc.function.arguments, tc.function.name),
            ))

        return CompletionResponse(
            content=content,
            stop_reason=_STOP_REASON_MAP.get(choice.finish_reason or "", "end_turn"),
            usage=Usage(
                input_tokens=response.usage.prompt_tokens if response.usage else 0,
                output_tokens=response.usage.completion_tokens if response.usage else 0,
            ),
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        stream = await self.client.chat.completions.create(
            **self._build_kwargs(request),
            stream=True,
        )

        # Tool calls arrive incrementally, keyed by index
        pending: dict[int, dict[str, str]] = {}

        async for chunk in stream:
            if not chunk.choices:
                continue

            delta = chunk.choices[0].delta
            if delta is None:
                continue

            if delta.content:
                yield StreamEvent.text_delta(delta.content)

            for tc in delta.tool_calls or []:
                entry = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    entry["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function.arguments:
                        entry["arguments"] += tc.function.arguments

        for index in sorted(pending):
            entry = pending[index]
            if not (entry["id"] and entry["name"]):
                logger.warning("Dropping incomplete streamed tool call", index=index)
                continue
            yield StreamEvent.tool_use(ToolCall(
                id=entry["id"],
                name=entry["name"],
                input=parse_tool_arguments(entry["arguments"], entry["name"]),
            ))
