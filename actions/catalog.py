"""Default tool catalog."""

from . import market_actions, memory_actions, onchain_actions, semantic_actions, token_actions
from .registry import ToolRegistry


def build_default_registry() -> ToolRegistry:
    """Registry with every built-in action, built once at startup."""
    return ToolRegistry(
        memory_actions.TOOLS
        + semantic_actions.TOOLS
        + token_actions.TOOLS
        + market_actions.TOOLS
        + onchain_actions.TOOLS
    )
