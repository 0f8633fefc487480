"""Pydantic schemas for pipeline results."""

from .results import (
    ActionResult,
    MemoryResolution,
    TokenCandidate,
    EntityResolution,
    SynthesisResult,
    TurnResult,
)

__all__ = [
    "ActionResult",
    "MemoryResolution",
    "TokenCandidate",
    "EntityResolution",
    "SynthesisResult",
    "TurnResult",
]
