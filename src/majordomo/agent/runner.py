"""
Agent runner - the multi-turn completion loop.

For each user message it:
1. Loads (or creates) the session and appends the message
2. Asks the completion backend for a reply, with tool definitions
3. Runs any requested tools one after another and feeds results back
4. Repeats until the backend answers without tools or max_turns is hit
5. Saves the session and returns the final text
"""

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

import structlog

from ..config import Settings, get_settings
from ..errors import TransportError
from ..llm.base import (
    BaseLLM,
    CompletionRequest,
    ContentBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from ..tools.base import ToolExecutor, ToolInvocation
from .compaction import llm_summarizer
from .session import SessionStore

logger = structlog.get_logger()

TOOL_RESULT_PREVIEW_CHARS = 500

RunEvent = Literal["text", "tool_start", "tool_done", "error", "done"]


@dataclass
class AgentResponse:
    """Outcome of one run."""

    text: str
    tools_used: list[str]
    session_id: str


@dataclass
class TurnResult:
    """What the backend produced in a single turn."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def assistant_blocks(self) -> list[ContentBlock]:
        blocks: list[ContentBlock] = []
        if self.text:
            blocks.append(TextBlock(text=self.text))
        blocks.extend(
            ToolUseBlock(id=call.id, name=call.name, input=call.input)
            for call in self.tool_calls
        )
        return blocks


def _truncate(text: str, limit: int = TOOL_RESULT_PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class AgentRunner:
    """Drives the ask-model / run-tools / feed-back loop.

    Progress is reported through listeners registered with `on`:
    `text(chunk)`, `tool_start(name, input)`, `tool_done(name, result)`,
    `error(exc)` and `done(response)`. Listeners never affect the loop.
    """

    def __init__(
        self,
        llm: BaseLLM,
        tool_executor: ToolExecutor,
        tool_definitions: list[ToolDefinition] | None = None,
        session_store: SessionStore | None = None,
        settings: Settings | None = None,
        system_prompt: str | None = None,
        tool_context: Any = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.tool_executor = tool_executor
        if tool_definitions is None and hasattr(tool_executor, "get_definitions"):
            tool_definitions = tool_executor.get_definitions()
        self.tool_definitions = list(tool_definitions or [])
        self.session_store = session_store or SessionStore(self.settings.sessions_dir)
        self.system_prompt = system_prompt if system_prompt is not None else self.settings.system_prompt
        self.tool_context = tool_context
        self._listeners: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: RunEvent, handler: Callable[..., Any]) -> None:
        """Register a progress listener."""
        self._listeners.setdefault(event, []).append(handler)

    def _emit(self, event: RunEvent, *args: Any) -> None:
        for handler in self._listeners.get(event, []):
            try:
                handler(*args)
            except Exception:
                logger.exception("Run listener failed", run_event=event)

    async def compact_session(self, session_id: str) -> bool:
        """Summarize older history of a session with the backend."""
        return await self.session_store.compact(
            session_id,
            llm_summarizer(self.llm),
            keep_recent=self.settings.compaction_keep_recent,
            min_messages=self.settings.compaction_threshold,
        )

    async def run(
        self,
        user_message: str,
        session_id: str | None = None,
        max_turns: int | None = None,
        stream: bool = True,
    ) -> AgentResponse:
        """Process a user message and return the final response.

        Raises TransportError when the backend fails; nothing is saved then.
        """
        if max_turns is None:
            max_turns = self.settings.max_turns
        if session_id is None:
            session_id = self.session_store.create()

        session = self.session_store.get(session_id)

        if self.settings.auto_compact and len(session.messages) >= self.settings.compaction_threshold:
            await self.compact_session(session_id)
            session = self.session_store.get(session_id)

        session.messages.append(Message(role="user", content=user_message))

        log = logger.bind(session_id=session_id, backend=self.llm.provider_name)
        log.info("Run started", max_turns=max_turns, history=len(session.messages))

        final_text = ""
        tools_used: list[str] = []
        known_tools = {d.name for d in self.tool_definitions}
        turns = 0

        while turns < max_turns:
            turns += 1

            request = CompletionRequest(
                messages=list(session.messages),
                system_prompt=self.system_prompt,
                tools=self.tool_definitions,
                max_tokens=self.settings.max_tokens,
            )

            try:
                if stream:
                    turn = await self._streaming_turn(request)
                else:
                    turn = await self._buffered_turn(request)
            except TransportError as e:
                log.error("Run aborted by transport failure", turn=turns, error=str(e))
                self._emit("error", e)
                raise

            final_text = turn.text

            if not turn.tool_calls:
                log.debug("Turn finished without tool calls", turn=turns)
                break

            session.messages.append(Message(role="assistant", content=turn.assistant_blocks()))

            results: list[ContentBlock] = []
            for call in turn.tool_calls:
                tools_used.append(call.name)
                results.append(await self._run_tool(call, known_tools))

            session.messages.append(Message(role="user", content=results))
        else:
            log.warning("Max turns reached", max_turns=max_turns)

        if final_text:
            session.messages.append(Message(role="assistant", content=final_text))

        self.session_store.save(session_id)

        response = AgentResponse(text=final_text, tools_used=tools_used, session_id=session_id)
        log.info("Run finished", turns=turns, tools_used=tools_used)
        self._emit("done", response)
        return response

    async def _streaming_turn(self, request: CompletionRequest) -> TurnResult:
        turn = TurnResult()
        text_parts: list[str] = []

        async with aclosing(self.llm.stream(request)) as events:
            async for event in events:
                if event.type == "text" and event.text:
                    text_parts.append(event.text)
                    self._emit("text", event.text)
                elif event.type == "tool_use" and event.tool_call is not None:
                    turn.tool_calls.append(event.tool_call)
                elif event.type == "error":
                    raise TransportError(event.error or "Backend stream failed")
                elif event.type == "done":
                    break

        turn.text = "".join(text_parts)
        return turn

    async def _buffered_turn(self, request: CompletionRequest) -> TurnResult:
        response = await self.llm.complete(request)
        if response.stop_reason == "error":
            raise TransportError("Backend reported an error stop reason")

        turn = TurnResult(text=response.text, tool_calls=response.tool_calls)
        if turn.text:
            self._emit("text", turn.text)
        return turn

    async def _run_tool(self, call: ToolCall, known_tools: set[str]) -> ToolResultBlock:
        """Run one tool call; failures become error results."""
        self._emit("tool_start", call.name, call.input)

        if call.name not in known_tools:
            message = f"Error: Unknown tool: {call.name}"
            logger.warning("Backend requested unknown tool", tool=call.name)
            self._emit("tool_done", call.name, message)
            return ToolResultBlock(tool_use_id=call.id, content=message, is_error=True)

        try:
            result = await self.tool_executor.execute_tool(
                ToolInvocation(tool=call.name, params=call.input),
                self.tool_context,
            )
        except Exception as e:
            message = f"Error: {e}"
            logger.error("Tool execution failed", tool=call.name, error=str(e))
            self._emit("tool_done", call.name, _truncate(message))
            return ToolResultBlock(tool_use_id=call.id, content=message, is_error=True)

        self._emit("tool_done", call.name, _truncate(result))
        return ToolResultBlock(tool_use_id=call.id, content=result)
