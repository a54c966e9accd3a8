"""
Tools module: the seam between the agent loop and external integrations.
"""

from .base import Tool, ToolExecutor, ToolHandler, ToolInvocation
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolExecutor",
    "ToolHandler",
    "ToolInvocation",
    "ToolRegistry",
]
