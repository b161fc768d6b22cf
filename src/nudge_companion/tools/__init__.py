# src/nudge_companion/tools/__init__.py

from __future__ import annotations

from . import goal_tools, memory_tools, meta_tools, routine_tools, task_tools
from .registry import ToolContext, ToolName, ToolRegistry, ToolResult, ToolSpec


def build_registry() -> ToolRegistry:
    """Registry with every built-in tool."""
    return ToolRegistry(
        [
            *task_tools.SPECS,
            *routine_tools.SPECS,
            *memory_tools.SPECS,
            *goal_tools.SPECS,
            *meta_tools.SPECS,
        ]
    )


__all__ = [
    "ToolContext",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "build_registry",
]
