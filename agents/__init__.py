"""Phase agents for the token chat assistant."""

from .memory_resolver import MemoryResolver
from .entity_resolver import EntityResolver
from .context_builder import ContextBuilder
from .synthesizer import Synthesizer, canonical_action_data, contains

__all__ = [
    "MemoryResolver",
    "EntityResolver",
    "ContextBuilder",
    "Synthesizer",
    "canonical_action_data",
    "contains",
]
