"""Tests for system prompt assembly."""

from agents.context_builder import ContextBuilder
from schemas.results import EntityResolution, MemoryResolution, TokenCandidate
from tests.fakes import JUP_ADDRESS, SOL_ADDRESS

HEADERS = (
    "RECENTLY RETRIEVED MEMORY ITEMS:",
    "RECENTLY RETRIEVED USER OBJECTS:",
    "RELEVANT CONVERSATION HISTORY:",
    "IDENTIFIED TOKENS:",
)


class TestContextBuilder:
    """Test ContextBuilder section rules."""

    def setup_method(self):
        """Set up test fixtures."""
        self.builder = ContextBuilder()

    def test_empty_resolutions_give_base_prompt(self):
        prompt = self.builder.build(MemoryResolution(), EntityResolution())
        assert prompt == ContextBuilder.BASE_PROMPT
        for header in HEADERS:
            assert header not in prompt

    def test_memory_items(self):
        memory = MemoryResolution(items=[
            {"key": "risk_tolerance", "value": "low"},
            {"key": "favorite_tokens", "value": ["SOL", "JUP"]},
        ])
        prompt = self.builder.build(memory, EntityResolution())
        assert "RECENTLY RETRIEVED MEMORY ITEMS:\n- risk_tolerance: low" in prompt
        assert '- favorite_tokens: ["SOL", "JUP"]' in prompt
        assert "IDENTIFIED TOKENS:" not in prompt

    def test_strategy_objects(self):
        memory = MemoryResolution(objects=[
            {
                "object_type": "strategy",
                "name": "DCA SOL",
                "data": {"description": "Buy weekly", "tokens": ["SOL"], "timeframe": "long-term"},
            },
            {"object_type": "watchlist", "name": "Memes", "data": {"tokens": ["BONK"]}},
        ])
        prompt = self.builder.build(memory, EntityResolution())
        assert "1. Type: strategy, Name: DCA SOL" in prompt
        assert "   Description: Buy weekly" in prompt
        assert "   Tokens: SOL" in prompt
        assert "   Timeframe: long-term" in prompt
        assert '2. Type: watchlist, Name: Memes\n   Data: {"tokens": ["BONK"]}' in prompt

    def test_history_snippets_truncated(self):
        memory = MemoryResolution(semantic_hits=[{"document": "x" * 200}, {"document": "short"}])
        prompt = self.builder.build(memory, EntityResolution())
        assert f"1. {'x' * 150}..." in prompt
        assert "2. short" in prompt

    def test_first_candidate_is_preferred(self):
        entities = EntityResolution(candidates=[
            TokenCandidate(token_name="Wrapped SOL", token_symbol="SOL", token_address=SOL_ADDRESS),
            TokenCandidate(token_name="Jupiter", token_symbol="JUP", token_address=JUP_ADDRESS),
        ])
        prompt = self.builder.build(MemoryResolution(), entities)
        assert f"- SOL (Wrapped SOL): {SOL_ADDRESS}" in prompt
        assert f"- JUP (Jupiter): {JUP_ADDRESS}" in prompt
        assert f"The first option (SOL) with address {SOL_ADDRESS} should be tried first." in prompt
        assert "RECENTLY RETRIEVED MEMORY ITEMS:" not in prompt

    def test_deterministic(self):
        memory = MemoryResolution(items=[{"key": "k", "value": 1}])
        entities = EntityResolution(candidates=[TokenCandidate(token_symbol="SOL", token_address=SOL_ADDRESS)])
        assert self.builder.build(memory, entities) == self.builder.build(memory, entities)
