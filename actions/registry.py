"""Tool definitions and the registry the model's tool lists are derived from."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]

MEMORY_TOOL_NAMES = frozenset({"retrieve_memory_items", "retrieve_memory_objects", "semantic_query"})
RESOLUTION_TOOL_NAMES = frozenset({"resolve_token_addresses"})


class ToolDefinition(BaseModel):
    """An invocable action: schema for the model plus the handler that runs it."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: Handler
    category: str = "general"
    active: bool = True

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))

    def get_definition(self) -> Dict:
        """Get OpenAI-compatible tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class ToolRegistry:
    """
    Flat catalog of ToolDefinitions.

    Filtered views are computed on every call, never cached:
    memory-only, resolution-only, and main (everything else).
    """

    def __init__(self, tools: Optional[List[ToolDefinition]] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition):
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name} already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        tool = self._tools.get(name)
        return tool if tool and tool.active else None

    def names(self) -> List[str]:
        return [t.name for t in self.all()]

    def all(self) -> List[ToolDefinition]:
        return [t for t in self._tools.values() if t.active]

    def memory_only(self) -> List[ToolDefinition]:
        return [t for t in self.all() if t.name in MEMORY_TOOL_NAMES]

    def resolution_only(self) -> List[ToolDefinition]:
        return [t for t in self.all() if t.name in RESOLUTION_TOOL_NAMES]

    def main(self) -> List[ToolDefinition]:
        excluded = MEMORY_TOOL_NAMES | RESOLUTION_TOOL_NAMES
        return [t for t in self.all() if t.name not in excluded]

    @staticmethod
    def definitions(tools: List[ToolDefinition]) -> List[Dict]:
        return [t.get_definition() for t in tools]

    def __len__(self) -> int:
        return len(self.all())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None
