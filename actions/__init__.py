"""Actions the model may invoke: registry, executor and handlers."""

from .registry import ToolDefinition, ToolRegistry, MEMORY_TOOL_NAMES, RESOLUTION_TOOL_NAMES
from .context import ActionContext
from .scope import TurnScope
from .executor import ActionExecutor, decode_arguments
from .catalog import build_default_registry

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "MEMORY_TOOL_NAMES",
    "RESOLUTION_TOOL_NAMES",
    "ActionContext",
    "TurnScope",
    "ActionExecutor",
    "decode_arguments",
    "build_default_registry",
]
