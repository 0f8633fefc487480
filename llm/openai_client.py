"""OpenAI LLM client implementation."""

import os
import logging
from typing import Optional, List

import openai
from openai import AsyncOpenAI

from utils.errors import ExternalServiceError
from utils.retry import RetryPolicy, is_retryable_error
from .base_client import BaseLLMClient, ChatRequest, Message, LLMResponse, ToolCall

logger = logging.getLogger(__name__)

RETRYABLE_OPENAI_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


def wrap_openai_error(error: Exception) -> ExternalServiceError:
    """Map an SDK exception onto the service error taxonomy."""
    retryable = isinstance(error, RETRYABLE_OPENAI_ERRORS) or is_retryable_error(error)
    return ExternalServiceError(
        "openai",
        str(error),
        retryable=retryable,
        status_code=getattr(error, "status_code", None)
    )


class OpenAIClient(BaseLLMClient):
    """OpenAI GPT client implementation."""

    DEFAULT_MODEL = "gpt-4.1-nano"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        context_window: Optional[int] = None,
        timeout: float = 60.0,
        trim_floor: int = 100,
        safety_margin: int = 50
    ):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY env var)
            model: Model to use (default: gpt-4.1-nano)
            retry_policy: Retry policy applied to every request
            context_window: Override the model's context window size
            timeout: Per-request timeout in seconds
            trim_floor: Minimum characters kept of the system prompt and user prompt
            safety_margin: Tokens held back from the budget when trimming
        """
        super().__init__(
            model=model or self.DEFAULT_MODEL,
            retry_policy=retry_policy,
            context_window=context_window,
            trim_floor=trim_floor,
            safety_margin=safety_margin
        )
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.client: Optional[AsyncOpenAI] = None

        if self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)
            logger.info(f"OpenAI client initialized with model: {self.model}")
        else:
            logger.warning("No OpenAI API key provided")

    @staticmethod
    def _to_openai_messages(messages: List[Message]) -> List[dict]:
        openai_messages = []
        for msg in messages:
            openai_msg = {"role": msg.role, "content": msg.content}
            if msg.tool_call_id:
                openai_msg["tool_call_id"] = msg.tool_call_id
            if msg.tool_calls:
                openai_msg["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments_json}
                    }
                    for tc in msg.tool_calls
                ]
            openai_messages.append(openai_msg)
        return openai_messages

    async def _send(
        self,
        messages: List[Message],
        request: ChatRequest,
        max_tokens: int
    ) -> LLMResponse:
        """Send chat completion request to OpenAI."""
        if not self.client:
            raise ExternalServiceError("openai", "client not initialized, check API key")

        kwargs = {
            "model": self.model,
            "messages": self._to_openai_messages(messages),
            "temperature": request.temperature,
            "max_completion_tokens": max_tokens,
        }

        if request.tools:
            kwargs["tools"] = request.tools
            kwargs["tool_choice"] = request.tool_choice or "auto"

        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise wrap_openai_error(e) from e

        choice = response.choices[0]
        content = choice.message.content or ""

        # Arguments stay as the raw string; the executor owns parsing
        tool_calls = None
        if choice.message.tool_calls:
            tool_calls = [
                ToolCall(id=tc.id, name=tc.function.name, arguments_json=tc.function.arguments or "")
                for tc in choice.message.tool_calls
            ]

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=choice.finish_reason
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "openai"
