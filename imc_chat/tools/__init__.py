"""Tool identity helpers."""

from .name_resolver import UNKNOWN_TOOL_NAME, ToolNameResolver, camel_to_snake

__all__ = ["UNKNOWN_TOOL_NAME", "ToolNameResolver", "camel_to_snake"]
