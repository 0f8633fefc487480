"""Test doubles for the language model, embeddings and market data API."""

import hashlib
import re
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from actions.context import ActionContext
from config.settings import Settings
from llm.base_client import BaseLLMClient, ChatRequest, LLMResponse, Message, ToolCall
from retrieval.market_data import MarketDataClient
from utils.errors import ExternalServiceError
from utils.retry import NO_RETRY

SOL_ADDRESS = "So11111111111111111111111111111111111111112"
JUP_ADDRESS = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
BONK_ADDRESS = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"

Responder = Callable[[ChatRequest], Union[LLMResponse, Exception]]


def tool_call(name: str, arguments: str = "{}", call_id: Optional[str] = None) -> ToolCall:
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments_json=arguments)


def tools_response(*calls: ToolCall, content: str = "") -> LLMResponse:
    return LLMResponse(content=content, tool_calls=list(calls), finish_reason="tool_calls")


def text_response(content: str) -> LLMResponse:
    return LLMResponse(content=content, finish_reason="stop")


class FakeLLMClient(BaseLLMClient):
    """
    Scripted model.

    Either pops queued responses in order or asks a responder function.
    Every request that reaches the provider layer is recorded together with
    the trimmed message list.
    """

    def __init__(
        self,
        responses: Optional[List[Union[LLMResponse, Exception]]] = None,
        responder: Optional[Responder] = None,
        context_window: int = 100000
    ):
        super().__init__(model="fake-model", retry_policy=NO_RETRY, context_window=context_window)
        self.responses = list(responses or [])
        self.responder = responder
        self.requests: List[ChatRequest] = []
        self.sent: List[Tuple[List[Message], int]] = []

    async def _send(self, messages: List[Message], request: ChatRequest, max_tokens: int) -> LLMResponse:
        self.requests.append(request)
        self.sent.append((messages, max_tokens))
        if self.responder is not None:
            outcome = self.responder(request)
        elif self.responses:
            outcome = self.responses.pop(0)
        else:
            outcome = text_response("")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get_provider_name(self) -> str:
        return "fake"


class RoutedLLM:
    """
    Responder that picks a reply by phase, recognised from the system prompt.

    Unset phases answer with plain text and no tool calls.
    """

    def __init__(
        self,
        memory: Optional[LLMResponse] = None,
        entities: Optional[LLMResponse] = None,
        main: Optional[Union[LLMResponse, Exception]] = None,
        synthesis: Optional[Union[LLMResponse, Exception]] = None,
        optimizer: Optional[str] = None,
        intent: Optional[str] = None
    ):
        self.replies = {
            "memory": memory,
            "entities": entities,
            "main": main,
            "synthesis": synthesis,
            "optimizer": text_response(optimizer) if optimizer is not None else None,
            "intent": text_response(intent) if intent is not None else None,
        }
        self.phases: List[str] = []

    @staticmethod
    def phase_of(request: ChatRequest) -> str:
        system = request.system_prompt
        if "memory recall" in system:
            return "memory"
        if "identifying cryptocurrency tokens" in system:
            return "entities"
        if "search query generator" in system:
            return "optimizer"
        if "assesses if queries need semantic search" in system:
            return "intent"
        if '"actionData"' in system:
            return "synthesis"
        return "main"

    def __call__(self, request: ChatRequest) -> Union[LLMResponse, Exception]:
        phase = self.phase_of(request)
        self.phases.append(phase)
        reply = self.replies.get(phase)
        if reply is None:
            return text_response("" if phase != "main" else "Hello! How can I help?")
        return reply


class FakeEmbedder:
    """Deterministic bag-of-words embeddings; texts sharing words land close together."""

    DIMENSIONS = 1024

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def is_available(self) -> bool:
        return True

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.DIMENSIONS, dtype=np.float32)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            digest = hashlib.md5(word.encode()).digest()
            vector[digest[0] % self.DIMENSIONS] += 1.0
        return vector

    async def embed(self, texts: List[str]) -> List[np.ndarray]:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("embeddings", "rate limit exceeded", retryable=True)
        return [self._vector(t) for t in texts]

    async def embed_query(self, query: str) -> np.ndarray:
        return (await self.embed([query]))[0]


class FakeMarketData(MarketDataClient):
    """Market data client answering from a dict keyed by (kind, identifier)."""

    def __init__(self, payloads: Optional[Dict[Tuple[str, Optional[str]], Any]] = None):
        super().__init__(base_url="https://example.invalid", retry_policy=NO_RETRY)
        self.payloads = payloads or {}
        self.calls: List[Tuple[str, Optional[str], Dict[str, Any]]] = []

    async def fetch_by_identifier(
        self,
        kind: str,
        identifier: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> Any:
        self.calls.append((kind, identifier, options or {}))
        key = (kind, identifier)
        if key not in self.payloads:
            raise ExternalServiceError("market_data", f"API returned status 404 for {kind}", status_code=404)
        payload = self.payloads[key]
        if isinstance(payload, Exception):
            raise payload
        return payload


def sol_token_payload() -> Dict[str, Any]:
    return {
        "mintAddress": SOL_ADDRESS,
        "symbol": "SOL",
        "name": "Wrapped SOL",
        "price": 142.37,
        "price1d": 138.9,
        "marketCap": 68000000000,
    }


def make_context(store, conversation_id: str, **services):
    """ActionContext for handler tests; unspecified services stay None."""
    return ActionContext(
        conversation_id=conversation_id,
        user_id=services.pop("user_id", "user-1"),
        settings=services.pop("settings", None) or Settings(),
        store=store,
        **services,
    )
