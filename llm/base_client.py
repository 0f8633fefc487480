"""Base LLM client interface."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from utils.retry import RetryPolicy
from .context_window import ContextWindowTrimmer, estimate_tokens, resolve_model_info

logger = logging.getLogger(__name__)

JSON_MODE_MAX_TOKENS = 4096


class ToolCall(BaseModel):
    """Tool call requested by the LLM. Arguments are kept as raw JSON text."""
    id: str
    name: str
    arguments_json: str = "{}"


class Message(BaseModel):
    """Chat message."""
    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_call_id: Optional[str] = None  # For tool responses
    tool_calls: Optional[List[ToolCall]] = None  # For assistant messages with tool calls


class ChatRequest(BaseModel):
    """A single chat completion request."""
    system_prompt: str = ""
    user_prompt: str
    history: List[Message] = Field(default_factory=list)
    temperature: float = 0.7
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[str] = None  # "auto", "none", "required"
    response_format: Optional[str] = None  # "json_object" forces structured output
    max_tokens: Optional[int] = None

    @property
    def json_mode(self) -> bool:
        return self.response_format == "json_object"


class LLMResponse(BaseModel):
    """Response from LLM."""
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    `chat` is the single entry point: it fits the request into the model's
    context window, sizes max_tokens, and sends it through the retry policy.
    Providers only implement `_send`.
    """

    def __init__(
        self,
        model: str,
        retry_policy: Optional[RetryPolicy] = None,
        context_window: Optional[int] = None,
        trim_floor: int = 100,
        safety_margin: int = 50
    ):
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        model_info = resolve_model_info(model)
        self.context_window = context_window or model_info.context_window
        self.max_output_tokens = model_info.max_output_tokens
        self.trimmer = ContextWindowTrimmer(
            token_budget=self.context_window,
            floor_chars=trim_floor,
            safety_margin=safety_margin
        )

    async def chat(self, request: ChatRequest) -> LLMResponse:
        """
        Send chat completion request.

        Args:
            request: Prompt, history, tools and sampling options

        Returns:
            LLMResponse with content and optional tool calls
        """
        trimmed = self.trimmer.trim(request.system_prompt, request.history, request.user_prompt)

        messages: List[Message] = []
        if trimmed.system:
            messages.append(Message(role="system", content=trimmed.system))
        messages.extend(trimmed.history)
        messages.append(Message(role="user", content=trimmed.prompt))

        max_tokens = self._resolve_max_tokens(request, messages)
        logger.debug(
            f"{self.get_provider_name()} chat: {len(messages)} messages, "
            f"{len(request.tools or [])} tools, max_tokens={max_tokens}"
        )
        return await self.retry_policy.run(self._send, messages, request, max_tokens)

    def _resolve_max_tokens(self, request: ChatRequest, messages: List[Message]) -> int:
        if request.max_tokens and request.max_tokens > 0:
            return request.max_tokens
        if request.json_mode:
            return JSON_MODE_MAX_TOKENS
        remaining = self.context_window - estimate_tokens(messages) - 10
        if remaining < 1:
            remaining = 100
        return min(remaining, self.max_output_tokens)

    @abstractmethod
    async def _send(
        self,
        messages: List[Message],
        request: ChatRequest,
        max_tokens: int
    ) -> LLMResponse:
        """Perform the provider call for an already-trimmed message list."""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of the LLM provider."""
        pass

    def get_model_name(self) -> str:
        """Get the name of the model being used."""
        return self.model
