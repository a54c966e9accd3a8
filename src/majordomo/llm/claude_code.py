"""
Claude Code CLI completion backend.

Runs the local `claude` CLI in print mode. Works with whatever
authentication the CLI already has (API key or subscription). The CLI only
returns a finished result, so streaming replays that result.
"""

import asyncio
import json
from typing import AsyncIterator
from uuid import uuid4

import structlog

from ..errors import TransportError
from .base import (
    BaseLLM,
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    Message,
    StreamEvent,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    extract_text_tool_call,
)

logger = structlog.get_logger()

VERSION_PROBE_TIMEOUT = 5.0

TOOL_PROMPT_TEMPLATE = """## Conversation History
{conversation}

---

## External Tools

You have access to external tools through Majordomo. These are separate from your built-in tools.

To use an external tool, respond with ONLY this JSON format (nothing else):
{{"tool": "tool_name", "params": {{...}}}}

Available external tools:
{tools}

## Instructions

1. For Slack, Email, Calendar, Linear, Notion, Discord, Jira and iMessage use the external tools above
2. To call an external tool, output only the JSON. The tool will run and you will get the result.
3. Read operations are safe to call directly
4. For write operations (sending messages, creating issues), confirm with the user first

Now respond to the user's latest message:"""


class ClaudeCodeLLM(BaseLLM):
    """Backend that shells out to the `claude` CLI."""

    def __init__(self, cli_path: str = "claude", max_tokens: int = 8192):
        super().__init__("claude-code", max_tokens)
        self.cli_path = cli_path

    @property
    def provider_name(self) -> str:
        return "claude-code"

    async def is_configured(self) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli_path,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.debug("claude CLI not available", cli_path=self.cli_path, error=str(e))
            return False

        try:
            await asyncio.wait_for(proc.communicate(), timeout=VERSION_PROBE_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            logger.debug("claude CLI version probe timed out", cli_path=self.cli_path)
            return False

        return proc.returncode == 0

    def _build_conversation_prompt(self, messages: list[Message]) -> str:
        """Render the conversation as a plain transcript."""
        parts = []

        for msg in messages:
            role = "User" if msg.role == "user" else "Assistant"

            if isinstance(msg.content, str):
                content = msg.content
            else:
                pieces = []
                for block in msg.content:
                    if isinstance(block, TextBlock) and block.text:
                        pieces.append(block.text)
                    elif isinstance(block, ToolUseBlock):
                        pieces.append(json.dumps({"tool": block.name, "params": block.input}))
                    elif isinstance(block, ToolResultBlock) and block.content:
                        pieces.append(f"[Tool Result: {block.content}]")
                content = "\n".join(pieces)

            if content:
                parts.append(f"{role}: {content}")

        return "\n\n".join(parts)

    def _build_tool_prompt(self, tools: list[ToolDefinition], conversation: str) -> str:
        tool_lines = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)
        return TOOL_PROMPT_TEMPLATE.format(conversation=conversation, tools=tool_lines)

    def _build_args(self, request: CompletionRequest) -> list[str]:
        prompt = self._build_conversation_prompt(request.messages)
        if request.tools:
            prompt = self._build_tool_prompt(request.tools, prompt)

        args = ["-p", "--output-format", "json"]
        if request.system_prompt:
            args.extend(["--append-system-prompt", request.system_prompt])
        args.append(prompt)
        return args

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli_path,
                *self._build_args(request),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"Failed to spawn Claude Code: {e}") from e

        stdout_bytes, stderr_bytes = await proc.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            logger.error("claude CLI failed", returncode=proc.returncode, stderr=stderr[:500])
            raise TransportError(f"Claude Code exited with code {proc.returncode}: {stderr.strip()}")

        try:
            payload = json.loads(stdout)
            text = payload.get("result") if isinstance(payload, dict) else None
            text = text if isinstance(text, str) and text else stdout.strip()
        except json.JSONDecodeError:
            text = stdout.strip()

        tool_request = extract_text_tool_call(text, request.tools)
        if tool_request is not None:
            name, params = tool_request
            return CompletionResponse(
                content=[ToolUseBlock(id=f"tool_{uuid4().hex[:16]}", name=name, input=params)],
                stop_reason="tool_use",
            )

        content: list[ContentBlock] = [TextBlock(text=text)]
        return CompletionResponse(content=content, stop_reason="end_turn")

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        response = await self._complete(request)

        if response.text:
            yield StreamEvent.text_delta(response.text)
        for call in response.tool_calls:
            yield StreamEvent.tool_use(call)
