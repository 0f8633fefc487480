"""LLM client factory."""

from enum import Enum
from typing import Optional

from utils.retry import RetryPolicy
from .base_client import BaseLLMClient
from .openai_client import OpenAIClient
from .anthropic_client import AnthropicClient


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


def create_llm_client(
    provider: LLMProvider,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    retry_policy: Optional[RetryPolicy] = None,
    context_window: Optional[int] = None,
    trim_floor: int = 100,
    safety_margin: int = 50
) -> BaseLLMClient:
    """
    Create an LLM client for the specified provider.

    Args:
        provider: LLM provider (openai or anthropic)
        api_key: API key for the provider
        model: Optional model override
        retry_policy: Optional retry policy shared by all calls
        context_window: Optional context window override
        trim_floor: Minimum characters the trimmer keeps of each prompt
        safety_margin: Tokens held back from the context window when trimming

    Returns:
        Configured LLM client

    Raises:
        ValueError: If provider is not supported
    """
    kwargs = dict(
        api_key=api_key,
        model=model,
        retry_policy=retry_policy,
        context_window=context_window,
        trim_floor=trim_floor,
        safety_margin=safety_margin,
    )
    if provider == LLMProvider.OPENAI:
        return OpenAIClient(**kwargs)
    elif provider == LLMProvider.ANTHROPIC:
        return AnthropicClient(**kwargs)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
