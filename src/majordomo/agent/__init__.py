"""
Agent module - the orchestration core.

Includes:
- AgentRunner: bounded multi-turn loop over a completion backend + tools
- SessionStore: persistent JSONL conversation sessions
- Compaction: backend-generated summaries of older history
"""

from .runner import AgentResponse, AgentRunner
from .session import Session, SessionStore, SessionSummary
from .compaction import fallback_summary, llm_summarizer

__all__ = [
    "AgentResponse",
    "AgentRunner",
    "Session",
    "SessionStore",
    "SessionSummary",
    "fallback_summary",
    "llm_summarizer",
]
