"""
Conversation compaction - summarizers for SessionStore.compact.

When a transcript grows long, older messages are replaced by a summary.
The summary comes from the completion backend; if the backend fails, a
heuristic summary built from the transcript itself is used instead.
"""

import structlog

from ..errors import TransportError
from ..llm.base import BaseLLM, CompletionRequest, Message
from .session import Summarizer

logger = structlog.get_logger()

MAX_CHARS_PER_MESSAGE = 300
MAX_KEY_FACTS = 10

SUMMARY_SYSTEM_PROMPT = (
    "You are a conversation summarizer. Create concise but comprehensive summaries "
    "that preserve all important facts, decisions, tool results, and action items."
)

FACT_PHRASES = (
    "my name is", "i work", "i live", "i prefer",
    "remember that", "don't forget", "important:",
)


def _message_text(msg: Message) -> str:
    """Flatten a message, including tool activity, into plain text."""
    if isinstance(msg.content, str):
        return msg.content

    parts = [msg.text] if msg.text else []
    for block in msg.tool_uses:
        parts.append(f"[called {block.name}]")
    for block in msg.tool_results:
        prefix = "Tool error" if block.is_error else "Tool result"
        parts.append(f"[{prefix}]: {block.content}")
    return "\n".join(parts)


def extract_key_facts(messages: list[Message]) -> list[str]:
    """Extract key facts and information from messages for the summary."""
    facts = []

    for msg in messages:
        for result in msg.tool_results:
            preview = result.content[:200].strip()
            if preview:
                facts.append(f"[Tool result]: {preview}")

        if msg.role == "user" and msg.text:
            content_lower = msg.text.lower()
            if any(phrase in content_lower for phrase in FACT_PHRASES):
                facts.append(f"[User stated]: {msg.text[:200]}")

    return facts[:MAX_KEY_FACTS]


def build_transcript(messages: list[Message]) -> str:
    """Condensed ROLE: text transcript, long messages truncated."""
    lines = []
    for msg in messages:
        text = _message_text(msg)
        if text:
            lines.append(f"{msg.role.upper()}: {text[:MAX_CHARS_PER_MESSAGE]}")
    return "\n".join(lines)


def fallback_summary(messages: list[Message], key_facts: list[str] | None = None) -> str:
    """Generate a basic summary without the backend."""
    user_messages = [m.text for m in messages if m.role == "user" and m.text]

    parts = [f"Earlier conversation had {len(messages)} messages ({len(user_messages)} user messages)."]

    if user_messages:
        topics = "; ".join(text[:80] for text in user_messages[:5])
        parts.append(f"Topics discussed: {topics}")

    if key_facts:
        parts.append("Key facts:\n" + "\n".join(f"- {fact}" for fact in key_facts))

    return "\n".join(parts)


def llm_summarizer(llm: BaseLLM, max_tokens: int = 1024) -> Summarizer:
    """Build a summarizer backed by a completion backend."""

    async def summarize(messages: list[Message]) -> str:
        key_facts = extract_key_facts(messages)

        facts_section = ""
        if key_facts:
            facts_section = "\n\nKey facts to preserve:\n" + "\n".join(f"- {f}" for f in key_facts)

        prompt = (
            "Summarize this conversation concisely, preserving:\n"
            "1. Key facts, names, dates, and numbers mentioned\n"
            "2. Decisions made and action items\n"
            "3. User preferences expressed\n"
            "4. Important tool results\n\n"
            f"Conversation:\n{build_transcript(messages)}{facts_section}\n\n"
            "Provide a concise summary (max 500 words):"
        )

        try:
            response = await llm.complete(CompletionRequest(
                messages=[Message(role="user", content=prompt)],
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                max_tokens=max_tokens,
            ))
        except TransportError as e:
            logger.error("Compaction summarization failed, using fallback", error=str(e))
            return fallback_summary(messages, key_facts)

        summary = response.text.strip()
        return summary or fallback_summary(messages, key_facts)

    return summarize
