"""Result models passed between pipeline phases."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from memory.models import ActionInvocation, Conversation, ConversationMessage


class ActionResult(BaseModel):
    """Uniform envelope for one action execution."""
    action_name: str
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration_ms: float = 0.0
    invocation_id: Optional[str] = None

    def to_prompt_payload(self) -> Dict[str, Any]:
        """What the synthesis model sees for this action."""
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error, "error_kind": self.error_kind}


class MemoryResolution(BaseModel):
    """Recalled memory for the current turn."""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    objects: List[Dict[str, Any]] = Field(default_factory=list)
    semantic_hits: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.objects and not self.semantic_hits


class TokenCandidate(BaseModel):
    """A resolved token; the first candidate of a list is the one to try first."""
    token_name: str = "Unknown"
    token_symbol: str = "Unknown"
    token_address: Optional[str] = None


class EntityResolution(BaseModel):
    """Tokens identified in the user's message."""
    candidates: List[TokenCandidate] = Field(default_factory=list)
    query: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.candidates


class SynthesisResult(BaseModel):
    """Final reply with its structured payload."""
    reply: str
    action_data: Any = None
    source: Dict[str, Any] = Field(default_factory=dict)
    contract_ok: bool = True
    action_data_verified: bool = False


class TurnResult(BaseModel):
    """Everything returned to the messaging front-end for one turn."""
    conversation: Conversation
    user_message: ConversationMessage
    assistant_message: ConversationMessage
    executed_actions: List[ActionInvocation] = Field(default_factory=list)
    structured_data: Optional[Any] = None
    memory_items: Dict[str, Any] = Field(default_factory=dict)
    memory_objects: List[Dict[str, Any]] = Field(default_factory=list)
