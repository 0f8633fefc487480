"""Tests for the provider clients with the SDK calls mocked out."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from llm.anthropic_client import JSON_ONLY_INSTRUCTION, AnthropicClient
from llm.base_client import ChatRequest, Message, ToolCall
from llm.factory import LLMProvider, create_llm_client
from llm.openai_client import OpenAIClient, wrap_openai_error
from retrieval.embeddings import EmbeddingClient
from utils.errors import ExternalServiceError
from utils.retry import NO_RETRY

TOOLS = [{
    "type": "function",
    "function": {
        "name": "fetch_token_data",
        "description": "Token details",
        "parameters": {"type": "object", "properties": {"token_address": {"type": "string"}}},
    },
}]


class TestFactory:

    def test_creates_configured_clients(self):
        client = create_llm_client(LLMProvider.OPENAI, api_key="test-key", retry_policy=NO_RETRY, context_window=8000)
        assert isinstance(client, OpenAIClient)
        assert client.get_model_name() == OpenAIClient.DEFAULT_MODEL
        assert client.context_window == 8000
        assert client.retry_policy is NO_RETRY

        client = create_llm_client(LLMProvider("anthropic"), api_key="test-key", model="claude-3-5-haiku-latest")
        assert isinstance(client, AnthropicClient)
        assert client.get_provider_name() == "anthropic"

    def test_trim_limits_are_forwarded(self):
        for provider in (LLMProvider.OPENAI, LLMProvider.ANTHROPIC):
            client = create_llm_client(
                provider, api_key="test-key", context_window=8000, trim_floor=500, safety_margin=400
            )
            assert client.trimmer.floor_chars == 500
            assert client.trimmer.target_tokens == 7600

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_llm_client("gemini", api_key="x")


class TestOpenAIClient:
    """Test request building and response parsing for OpenAI."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = OpenAIClient(api_key="test-key", retry_policy=NO_RETRY)
        self.create = AsyncMock()
        self.client.client = Mock()
        self.client.client.chat.completions.create = self.create

    def _completion(self, content=None, tool_calls=None, finish_reason="stop"):
        message = SimpleNamespace(content=content, tool_calls=tool_calls)
        usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)], usage=usage)

    def test_tool_calls_keep_raw_arguments(self):
        raw = '{"token_address": "So1'
        self.create.return_value = self._completion(
            tool_calls=[SimpleNamespace(id="call_1", function=SimpleNamespace(name="fetch_token_data", arguments=raw))],
            finish_reason="tool_calls",
        )
        response = asyncio.run(self.client.chat(ChatRequest(
            system_prompt="sys", user_prompt="price of SOL?", tools=TOOLS, tool_choice="auto"
        )))

        assert response.has_tool_calls
        assert response.tool_calls[0].arguments_json == raw
        assert response.content == ""
        assert response.usage["total_tokens"] == 15

        kwargs = self.create.call_args.kwargs
        assert kwargs["tools"] == TOOLS
        assert kwargs["tool_choice"] == "auto"
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]
        assert "response_format" not in kwargs

    def test_json_mode(self):
        self.create.return_value = self._completion(content='{"query": "sol"}')
        response = asyncio.run(self.client.chat(ChatRequest(
            user_prompt="optimize", response_format="json_object"
        )))
        kwargs = self.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_completion_tokens"] == 4096
        assert response.content == '{"query": "sol"}'

    def test_history_tool_messages(self):
        messages = OpenAIClient._to_openai_messages([
            Message(role="assistant", content="", tool_calls=[ToolCall(id="c1", name="x", arguments_json="{}")]),
            Message(role="tool", content="{}", tool_call_id="c1"),
        ])
        assert messages[0]["tool_calls"][0]["function"] == {"name": "x", "arguments": "{}"}
        assert messages[1]["tool_call_id"] == "c1"

    def test_missing_key(self):
        client = OpenAIClient(api_key=None, retry_policy=NO_RETRY)
        client.api_key = None
        client.client = None
        with pytest.raises(ExternalServiceError):
            asyncio.run(client.chat(ChatRequest(user_prompt="hi")))

    def test_error_classification(self):
        assert wrap_openai_error(Exception("Rate limit reached for requests")).retryable is True
        assert wrap_openai_error(Exception("Invalid schema for function")).retryable is False


class TestAnthropicClient:
    """Test request building and response parsing for Anthropic."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = AnthropicClient(api_key="test-key", retry_policy=NO_RETRY)
        self.create = AsyncMock()
        self.client.client = Mock()
        self.client.client.messages.create = self.create

    def _message(self, *blocks, stop_reason="end_turn"):
        usage = SimpleNamespace(input_tokens=12, output_tokens=3)
        return SimpleNamespace(content=list(blocks), usage=usage, stop_reason=stop_reason)

    def test_tool_use_blocks(self):
        self.create.return_value = self._message(
            SimpleNamespace(type="text", text="Looking it up."),
            SimpleNamespace(type="tool_use", id="tu_1", name="fetch_token_data", input={"token_address": "So1"}),
            stop_reason="tool_use",
        )
        response = asyncio.run(self.client.chat(ChatRequest(
            system_prompt="sys", user_prompt="price?", tools=TOOLS, tool_choice="auto"
        )))

        assert response.content == "Looking it up."
        assert json.loads(response.tool_calls[0].arguments_json) == {"token_address": "So1"}
        assert response.usage["total_tokens"] == 15

        kwargs = self.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["tools"][0]["input_schema"] == TOOLS[0]["function"]["parameters"]
        assert kwargs["tool_choice"] == {"type": "auto"}
        assert kwargs["messages"] == [{"role": "user", "content": "price?"}]

    def test_json_mode_adds_instruction(self):
        self.create.return_value = self._message(SimpleNamespace(type="text", text="{}"))
        asyncio.run(self.client.chat(ChatRequest(system_prompt="sys", user_prompt="x", response_format="json_object")))
        assert self.create.call_args.kwargs["system"].endswith(JSON_ONLY_INSTRUCTION)

    def test_tools_dropped_when_disabled(self):
        self.create.return_value = self._message(SimpleNamespace(type="text", text="ok"))
        asyncio.run(self.client.chat(ChatRequest(user_prompt="x", tools=TOOLS, tool_choice="none")))
        assert "tools" not in self.create.call_args.kwargs


class TestEmbeddingClient:

    def setup_method(self):
        """Set up test fixtures."""
        self.client = EmbeddingClient(openai_api_key="test-key", retry_policy=NO_RETRY)
        self.create = AsyncMock(side_effect=lambda model, input: SimpleNamespace(
            data=[SimpleNamespace(embedding=[float(len(text)), 1.0]) for text in input]
        ))
        self.client.client = Mock()
        self.client.client.embeddings.create = self.create

    def test_batches_requests(self):
        self.client.BATCH_SIZE = 2
        vectors = asyncio.run(self.client.embed(["a", "bb", "ccc"]))
        assert [v.tolist() for v in vectors] == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]
        assert self.create.call_count == 2

    def test_unavailable_without_client(self):
        self.client.client = None
        assert not self.client.is_available()
        with pytest.raises(ExternalServiceError):
            asyncio.run(self.client.embed_query("sol"))
