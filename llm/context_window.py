"""Context window budgeting: token estimation and deterministic trimming."""

import logging
import math
from typing import List, NamedTuple, Sequence

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
DEFAULT_CONTEXT_WINDOW = 4096


class ModelInfo(NamedTuple):
    context_window: int
    max_output_tokens: int


MODEL_INFO = {
    "gpt-4.1-nano": ModelInfo(1047576, 32768),
    "gpt-4.1-mini": ModelInfo(1047576, 32768),
    "gpt-4.1": ModelInfo(1047576, 32768),
    "gpt-4o-mini": ModelInfo(128000, 16384),
    "gpt-4o": ModelInfo(128000, 16384),
    "claude-sonnet-4-20250514": ModelInfo(200000, 8192),
    "claude-3-5-haiku-latest": ModelInfo(200000, 8192),
}


def resolve_model_info(model: str) -> ModelInfo:
    """Context window and output cap for a model, with a conservative default."""
    return MODEL_INFO.get(model, ModelInfo(DEFAULT_CONTEXT_WINDOW, DEFAULT_CONTEXT_WINDOW))


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def estimate_tokens(messages: Sequence) -> int:
    """Approximate token count of a message list (chars/4 plus per-message overhead)."""
    return sum(estimate_text_tokens(m.content) + MESSAGE_OVERHEAD_TOKENS for m in messages)


class TrimResult(NamedTuple):
    system: str
    history: List
    prompt: str
    estimated_tokens: int
    over_budget: bool


class ContextWindowTrimmer:
    """
    Reduce (system, history, prompt) to fit a token budget.

    Order is fixed: drop oldest history entries, then cut trailing characters
    of the system prompt, then of the user prompt. Neither text is cut below
    `floor_chars`. The output of `trim` is a fixed point: trimming it again
    returns it unchanged.
    """

    def __init__(self, token_budget: int, floor_chars: int = 100, safety_margin: int = 50):
        self.token_budget = token_budget
        self.floor_chars = floor_chars
        self.target_tokens = max(token_budget - safety_margin, 0)

    def _estimate(self, system: str, history: Sequence, prompt: str) -> int:
        total = estimate_tokens(history)
        total += estimate_text_tokens(system) + MESSAGE_OVERHEAD_TOKENS
        total += estimate_text_tokens(prompt) + MESSAGE_OVERHEAD_TOKENS
        return total

    def _cut(self, text: str, over_tokens: int) -> str:
        chars_to_remove = math.ceil(over_tokens * CHARS_PER_TOKEN)
        trim_length = min(chars_to_remove, len(text) - self.floor_chars)
        if trim_length <= 0:
            return text
        return text[:len(text) - trim_length]

    def trim(self, system: str, history: Sequence, prompt: str) -> TrimResult:
        history = list(history)
        current = self._estimate(system, history, prompt)

        if current <= self.target_tokens:
            return TrimResult(system, history, prompt, current, False)

        logger.info(f"Estimated {current} tokens exceeds target {self.target_tokens}; trimming")

        while current > self.target_tokens and history:
            history.pop(0)
            current = self._estimate(system, history, prompt)

        while current > self.target_tokens and len(system) > self.floor_chars:
            system = self._cut(system, current - self.target_tokens)
            current = self._estimate(system, history, prompt)

        while current > self.target_tokens and len(prompt) > self.floor_chars:
            prompt = self._cut(prompt, current - self.target_tokens)
            current = self._estimate(system, history, prompt)

        over_budget = current > self.target_tokens
        if over_budget:
            logger.warning(
                f"Context still over budget after trimming ({current} > {self.target_tokens} tokens)"
            )
        return TrimResult(system, history, prompt, current, over_budget)
