"""
Shared test helpers.
"""

import os
from typing import AsyncIterator
from unittest.mock import patch

import pytest

from majordomo.config import Settings
from majordomo.llm.base import (
    BaseLLM,
    CompletionRequest,
    CompletionResponse,
    StreamEvent,
    TextBlock,
    ToolCall,
    ToolUseBlock,
)


class ScriptedLLM(BaseLLM):
    """Backend stub replaying one scripted turn per call.

    Each turn is a list of StreamEvents (without the trailing done). When
    the script runs out the last turn repeats.
    """

    def __init__(self, turns: list[list[StreamEvent]]):
        super().__init__("scripted-model")
        self.turns = turns
        self.requests: list[CompletionRequest] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def is_configured(self) -> bool:
        return True

    def _next_turn(self, request: CompletionRequest) -> list[StreamEvent]:
        index = min(len(self.requests), len(self.turns) - 1)
        self.requests.append(request)
        return self.turns[index]

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        content = []
        for event in self._next_turn(request):
            if event.type == "text":
                content.append(TextBlock(text=event.text))
            elif event.type == "tool_use":
                call = event.tool_call
                content.append(ToolUseBlock(id=call.id, name=call.name, input=call.input))
        stop = "tool_use" if any(isinstance(b, ToolUseBlock) for b in content) else "end_turn"
        return CompletionResponse(content=content, stop_reason=stop)

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        for event in self._next_turn(request):
            yield event


def tool_turn(name: str, call_id: str = "toolu_1", text: str = "", **params) -> list[StreamEvent]:
    events = [StreamEvent.text_delta(text)] if text else []
    events.append(StreamEvent.tool_use(ToolCall(id=call_id, name=name, input=params)))
    return events


def text_turn(text: str) -> list[StreamEvent]:
    return [StreamEvent.text_delta(text)]


@pytest.fixture
def settings(tmp_path):
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, sessions_dir=tmp_path / "sessions")
