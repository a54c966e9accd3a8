"""
Ollama completion backend.

Talks to a local Ollama daemon over its native /api/chat endpoint, which
streams newline-delimited JSON objects.
"""

import json
from typing import Any, AsyncIterator
from uuid import uuid4

import httpx
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
    extract_text_tool_call,
    parse_tool_arguments,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "llama3.2"
DEFAULT_BASE_URL = "http://localhost:11434"
PROBE_TIMEOUT = 1.0


def _new_tool_call_id() -> str:
    return f"call_{uuid4().hex[:16]}"


def _map_stop_reason(done_reason: str | None, has_tool_calls: bool) -> StopReason:
    if has_tool_calls:
        return "tool_use"
    if done_reason == "length":
        return "max_tokens"
    return "end_turn"


class OllamaLLM(BaseLLM):
    """Local Ollama backend. No API key required."""

    transport_errors = (httpx.HTTPError,)

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model or DEFAULT_MODEL, max_tokens)
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def provider_name(self) -> str:
        return "ollama"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_configured(self) -> bool:
        try:
            response = await self._http().get(f"{self.base_url}/api/tags", timeout=PROBE_TIMEOUT)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Ollama probe failed", base_url=self.base_url, error=str(e))
            return False

    def _convert_messages(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> list[dict[str, Any]]:
        """Convert canonical messages to Ollama format."""
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
                    text_parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    tool_calls.append({
                        "function": {"name": block.name, "arguments": block.input},
                    })
                elif isinstance(block, ToolResultBlock):
                    converted.append({"role": "tool", "content": block.content})

            if tool_calls:
                converted.append({
                    "role": msg.role,
                    "content": "".join(text_parts),
                    "tool_calls": tool_calls,
                })
            elif text_parts:
                converted.append({"role": msg.role, "content": "".join(text_parts)})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
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

    def _build_payload(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request.messages, request.system_prompt),
            "stream": stream,
            "options": {"num_predict": self._max_tokens(request)},
        }
        if request.tools:
            payload["tools"] = self._convert_tools(request.tools)
        return payload

    def _parse_tool_calls(
        self,
        raw_calls: list[dict[str, Any]] | None,
        text: str,
        tools: list[ToolDefinition],
    ) -> list[ToolCall]:
        calls = []
        for raw in raw_calls or []:
            function = raw.get("function") or {}
            name = function.get("name")
            if not name:
                continue
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                arguments = parse_tool_arguments(arguments, name)
            calls.append(ToolCall(
                id=_new_tool_call_id(),
                name=name,
                input=arguments if isinstance(arguments, dict) else {},
            ))

        if not calls:
            fallback = extract_text_tool_call(text, tools)
            if fallback is not None:
                name, params = fallback
                calls.append(ToolCall(id=_new_tool_call_id(), name=name, input=params))

        return calls

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        response = await self._http().post(
            f"{self.base_url}/api/chat",
            json=self._build_payload(request, stream=False),
        )
        response.raise_for_status()
        data = response.json()

        message = data.get("message") or {}
        text = message.get("content") or ""
        tool_calls = self._parse_tool_calls(message.get("tool_calls"), text, request.tools)

        # A tool request parsed out of the reply text replaces that text
        parsed_from_text = bool(tool_calls) and not message.get("tool_calls")

        content: list[ContentBlock] = []
        if text and not parsed_from_text:
            content.append(TextBlock(text=text))
        for call in tool_calls:
            content.append(ToolUseBlock(id=call.id, name=call.name, input=call.input))

        return CompletionResponse(
            content=content,
            stop_reason=_map_stop_reason(data.get("done_reason"), bool(tool_calls)),
            usage=Usage(
                input_tokens=data.get("prompt_eval_count", 0),
                output_tokens=data.get("eval_count", 0),
            ),
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        full_text = ""
        raw_calls: list[dict[str, Any]] = []

        async with self._http().stream(
            "POST",
            f"{self.base_url}/api/chat",
            json=self._build_payload(request, stream=True),
        ) as response:
            response.raise_for_status()

            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping unparseable Ollama stream line")
                    continue

                if chunk.get("error"):
                    yield StreamEvent.failure(f"Ollama error: {chunk['error']}")
                    return

                message = chunk.get("message") or {}
                if message.get("content"):
                    full_text += message["content"]
                    yield StreamEvent.text_delta(message["content"])
                if message.get("tool_calls"):
                    raw_calls.extend(message["tool_calls"])

                if chunk.get("done"):
                    break

        for call in self._parse_tool_calls(raw_calls, full_text, request.tools):
            yield StreamEvent.tool_use(call)
