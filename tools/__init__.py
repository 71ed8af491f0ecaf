"""Tool registry — re-exports from tools.registry."""

from tools.registry import (  # noqa: F401
    TOOLSET_GENERATION,
    TOOLSET_PLANNING,
    TOOLSET_REPAIR,
    get_tool_names,
    get_tools,
)
