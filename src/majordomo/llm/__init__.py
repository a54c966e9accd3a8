"""
LLM module: completion backends behind one canonical contract.

Backends:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- Ollama (local daemon)
- Claude Code CLI (local subprocess)
"""

from .base import (
    BaseLLM,
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    Message,
    StreamEvent,
    TextBlock,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .ollama import OllamaLLM
from .claude_code import ClaudeCodeLLM
from .factory import create_llm, select_backend

__all__ = [
    "BaseLLM",
    "CompletionRequest",
    "CompletionResponse",
    "ContentBlock",
    "Message",
    "StreamEvent",
    "TextBlock",
    "ToolCall",
    "ToolDefinition",
    "ToolParameter",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "AnthropicLLM",
    "OpenAILLM",
    "OllamaLLM",
    "ClaudeCodeLLM",
    "create_llm",
    "select_backend",
]
