"""Memory data models."""

import json
import math
import re
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple
from pydantic import BaseModel, Field

# plain decimal literals; leading-zero integers such as zip codes stay strings
NUMBER_PATTERN = re.compile(r"^-?(0|[1-9]\d*)(\.\d+)?([eE][+-]?\d+)?$")
INTEGER_PATTERN = re.compile(r"^-?(0|[1-9]\d*)$")


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class InvocationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Conversation(BaseModel):
    """A conversation owned by one user."""
    conversation_id: str
    user_id: str
    title: str = "New conversation"
    platform: str = "web"  # "web" or "telegram"
    status: ConversationStatus = ConversationStatus.ACTIVE
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class ActionInvocation(BaseModel):
    """Record of one requested action, its arguments and outcome."""
    invocation_id: str
    action_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_arguments: Optional[str] = None
    status: InvocationStatus = InvocationStatus.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    tool_call_id: Optional[str] = None
    chained_from: Optional[str] = None  # invocation that triggered this one
    message_id: Optional[int] = None
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    duration_ms: Optional[float] = None


class ConversationMessage(BaseModel):
    """A persisted user or assistant message."""
    message_id: int
    conversation_id: str
    role: str  # "user" or "assistant"
    text: str
    token_estimate: int = 0
    structured_data: Optional[Any] = None
    created_at: datetime = Field(default_factory=datetime.now)
    invocations: List[ActionInvocation] = Field(default_factory=list)


class MemoryItem(BaseModel):
    """A single keyed fact or preference for a conversation."""
    conversation_id: str
    key: str
    value: Any
    value_type: str = "string"  # string, number, boolean, json
    source: str = "llm"  # "user" (stated) or "llm" (inferred)
    confidence: float = 1.0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class MemoryObject(BaseModel):
    """A named structured document (strategy, watchlist, ...) for a conversation."""
    object_id: str
    conversation_id: str
    object_type: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


def infer_value_type(value: Any) -> Tuple[str, str]:
    """
    Determine the storage type of a memory value.

    Returns:
        (stored_text, value_type) where value_type is one of
        number, boolean, json, string
    """
    if isinstance(value, bool):
        return ("true" if value else "false"), "boolean"
    if isinstance(value, int):
        return str(value), "number"
    if isinstance(value, float):
        return (repr(value), "number") if math.isfinite(value) else (str(value), "string")
    if isinstance(value, (dict, list)):
        return json.dumps(value), "json"

    text = str(value)
    trimmed = text.strip()
    if NUMBER_PATTERN.match(trimmed):
        return trimmed, "number"
    if trimmed.lower() in ("true", "false"):
        return text, "boolean"
    if (trimmed.startswith("{") and trimmed.endswith("}")) or (trimmed.startswith("[") and trimmed.endswith("]")):
        try:
            json.loads(trimmed)
            return text, "json"
        except json.JSONDecodeError:
            pass
    return text, "string"


def decode_stored_value(text: str, value_type: str) -> Any:
    """Convert a stored value back to its typed form, falling back to the raw text."""
    try:
        if value_type == "json":
            return json.loads(text)
        if value_type == "number":
            text = text.strip()
            return int(text) if INTEGER_PATTERN.match(text) else float(text)
        if value_type == "boolean":
            return text.strip().lower() == "true"
    except (ValueError, TypeError):
        return text
    return text
