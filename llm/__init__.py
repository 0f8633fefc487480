"""LLM client abstraction layer."""

from .base_client import BaseLLMClient, ChatRequest, Message, LLMResponse, ToolCall
from .context_window import ContextWindowTrimmer, TrimResult, estimate_tokens
from .json_output import DecodeResult, decode_json_object
from .factory import create_llm_client, LLMProvider

__all__ = [
    "BaseLLMClient",
    "ChatRequest",
    "Message",
    "LLMResponse",
    "ToolCall",
    "ContextWindowTrimmer",
    "TrimResult",
    "estimate_tokens",
    "DecodeResult",
    "decode_json_object",
    "create_llm_client",
    "LLMProvider",
]
