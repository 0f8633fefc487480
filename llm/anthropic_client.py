"""Anthropic Claude LLM client implementation."""

import os
import json
import logging
from typing import Optional, List

import anthropic

from utils.errors import ExternalServiceError
from utils.retry import RetryPolicy, is_retryable_error
from .base_client import BaseLLMClient, ChatRequest, Message, LLMResponse, ToolCall

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = "Respond with a single valid JSON object and nothing else."

RETRYABLE_ANTHROPIC_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude client implementation."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

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
        Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY env var)
            model: Model to use (default: claude-sonnet-4-20250514)
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
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.client: Optional[anthropic.AsyncAnthropic] = None

        if self.api_key:
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=timeout, max_retries=0)
            logger.info(f"Anthropic client initialized with model: {self.model}")
        else:
            logger.warning("No Anthropic API key provided")

    @staticmethod
    def _to_anthropic_messages(messages: List[Message]):
        system_content = ""
        conversation_messages = []

        for msg in messages:
            if msg.role == "system":
                system_content += msg.content + "\n"
            elif msg.role == "tool":
                conversation_messages.append({
                    "role": "user",
                    "content": [{
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id,
                        "content": msg.content
                    }]
                })
            elif msg.role == "assistant" and msg.tool_calls:
                content_blocks = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    try:
                        tool_input = json.loads(tc.arguments_json or "{}")
                    except json.JSONDecodeError:
                        tool_input = {}
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tool_input
                    })
                conversation_messages.append({"role": "assistant", "content": content_blocks})
            else:
                conversation_messages.append({"role": msg.role, "content": msg.content})

        return system_content.strip(), conversation_messages

    @staticmethod
    def _to_anthropic_tools(tools: List[dict]) -> List[dict]:
        anthropic_tools = []
        for tool in tools:
            if tool.get("type") == "function":
                func = tool["function"]
                anthropic_tools.append({
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {})
                })
        return anthropic_tools

    async def _send(
        self,
        messages: List[Message],
        request: ChatRequest,
        max_tokens: int
    ) -> LLMResponse:
        """Send chat completion request to Anthropic."""
        if not self.client:
            raise ExternalServiceError("anthropic", "client not initialized, check API key")

        system_content, conversation_messages = self._to_anthropic_messages(messages)
        if request.json_mode:
            system_content = f"{system_content}\n\n{JSON_ONLY_INSTRUCTION}".strip()

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": request.temperature,
            "messages": conversation_messages,
        }
        if system_content:
            kwargs["system"] = system_content

        if request.tools and request.tool_choice != "none":
            anthropic_tools = self._to_anthropic_tools(request.tools)
            if anthropic_tools:
                kwargs["tools"] = anthropic_tools
                choice = "any" if request.tool_choice == "required" else "auto"
                kwargs["tool_choice"] = {"type": choice}

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic API error: {e}")
            retryable = isinstance(e, RETRYABLE_ANTHROPIC_ERRORS) or is_retryable_error(e)
            raise ExternalServiceError(
                "anthropic", str(e), retryable=retryable,
                status_code=getattr(e, "status_code", None)
            ) from e

        content = ""
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments_json=json.dumps(block.input)
                ))

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }

        return LLMResponse(
            content=content,
            tool_calls=tool_calls if tool_calls else None,
            usage=usage,
            finish_reason=response.stop_reason
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "anthropic"
