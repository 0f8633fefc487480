"""Tests for memory item and memory object actions."""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path

import pytest

from actions import memory_actions
from actions.memory_actions import parse_token_list
from memory.sqlite_store import SQLiteConversationStore
from utils.errors import ActionValidationError
from tests.fakes import make_context

HANDLERS = {tool.name: tool.handler for tool in memory_actions.TOOLS}


class TestParseTokenList:

    def test_json_array(self):
        assert parse_token_list('["SOL", "JUP"]') == ["SOL", "JUP"]

    def test_comma_separated(self):
        assert parse_token_list("SOL, JUP ,BONK") == ["SOL", "JUP", "BONK"]

    def test_malformed_brackets(self):
        assert parse_token_list("[SOL, 'JUP']") == ["SOL", "JUP"]

    def test_list_and_none(self):
        assert parse_token_list(["SOL", " ", "JUP"]) == ["SOL", "JUP"]
        assert parse_token_list(None) == []


class TestMemoryActions:
    """Handlers run against a real SQLite store."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteConversationStore(db_path=str(Path(self.tmpdir) / "memory.db"))
        conversation = asyncio.run(self.store.create_conversation("user-1"))
        self.ctx = make_context(self.store, conversation.conversation_id)

    def teardown_method(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def call(self, _action, **args):
        return asyncio.run(HANDLERS[_action](self.ctx, args))

    def test_remember_info_infers_types(self):
        assert self.call("remember_info", key="budget", value="2500")["type"] == "number"
        assert self.call("remember_info", key="likes_memes", value="true")["type"] == "boolean"
        assert self.call("remember_info", key="tokens", value='["SOL"]')["type"] == "json"
        assert self.call("remember_info", key="name", value="Alex")["type"] == "string"

        items = self.call("retrieve_memory_items", query="*")["items"]
        by_key = {item["key"]: item["value"] for item in items}
        assert by_key == {"budget": 2500, "likes_memes": True, "tokens": ["SOL"], "name": "Alex"}

    def test_remember_info_requires_key_and_value(self):
        with pytest.raises(ActionValidationError):
            self.call("remember_info", key="", value="x")
        with pytest.raises(ActionValidationError):
            self.call("remember_info", key="k")

    def test_remember_info_replaces_value(self):
        self.call("remember_info", key="risk", value="low")
        self.call("remember_info", key="risk", value="high")
        result = self.call("retrieve_memory_items", query="risk", exact_match=True)
        assert result["count"] == 1
        assert result["items"][0]["value"] == "high"

    def test_retrieve_items_substring(self):
        self.call("remember_info", key="risk_tolerance", value="low")
        self.call("remember_info", key="user_name", value="Alex")
        result = self.call("retrieve_memory_items", query="RISK")
        assert [i["key"] for i in result["items"]] == ["risk_tolerance"]

    def test_profile_handlers_store_user_stated(self):
        self.call("store_risk_tolerance", risk_level="HIGH")
        self.call("store_favorite_tokens", tokens="SOL,JUP")
        items = {i["key"]: i for i in self.call("retrieve_memory_items", query="*")["items"]}
        assert items["risk_tolerance"]["value"] == "high"
        assert items["risk_tolerance"]["source"] == "user"
        assert items["favorite_tokens"]["value"] == ["SOL", "JUP"]

    def test_profile_choice_validation(self):
        with pytest.raises(ActionValidationError):
            self.call("store_trading_experience", level="guru")

    def test_notification_preferences_must_be_object(self):
        with pytest.raises(ActionValidationError):
            self.call("store_notification_preferences", preferences="daily")
        stored = self.call("store_notification_preferences", preferences=json.dumps({"daily": True}))
        assert stored["value"] == {"daily": True}

    def test_strategy_defaults(self):
        result = self.call(
            "upsert_trading_strategy", name="DCA SOL", description="Buy weekly",
            tokens='["SOL"]', timeframe="someday", riskLevel="extreme"
        )
        data = result["object"]["data"]
        assert data["timeframe"] == "medium-term"
        assert data["riskLevel"] == "medium"
        assert data["tokens"] == ["SOL"]

    def test_strategy_upsert_keeps_identity(self):
        first = self.call("upsert_trading_strategy", name="DCA SOL", description="v1", timeframe="long-term")
        second = self.call("upsert_trading_strategy", name="DCA SOL", description="v2", timeframe="long-term")
        assert first["object"]["id"] == second["object"]["id"]
        assert second["object"]["data"]["description"] == "v2"

        objects = self.call("retrieve_memory_objects", type="strategy")["objects"]
        assert len(objects) == 1

    def test_watchlist_needs_tokens(self):
        with pytest.raises(ActionValidationError):
            self.call("upsert_token_watchlist", name="Empty", tokens="")
        result = self.call("upsert_token_watchlist", name="Memes", tokens="BONK, WIF")
        assert result["object"]["data"]["tokens"] == ["BONK", "WIF"]

    def test_portfolio_must_sum_to_100(self):
        with pytest.raises(ActionValidationError):
            self.call("upsert_portfolio_plan", name="P", allocations=[
                {"token": "SOL", "percentage": 60}, {"token": "JUP", "percentage": 30},
            ])
        result = self.call("upsert_portfolio_plan", name="P", allocations=json.dumps([
            {"token": "SOL", "percentage": 60.5}, {"token": "JUP", "percentage": 40},
        ]))
        assert len(result["object"]["data"]["allocations"]) == 2

    def test_trade_setup_validation(self):
        with pytest.raises(ActionValidationError):
            self.call("upsert_trade_setup", name="T", token="SOL", direction="sideways", entryPrice=140)
        with pytest.raises(ActionValidationError):
            self.call("upsert_trade_setup", name="T", token="SOL", direction="long", entryPrice="-1")
        result = self.call(
            "upsert_trade_setup", name="T", token="SOL", direction="Long", entryPrice="140", stopLoss=120
        )
        data = result["object"]["data"]
        assert {k: data[k] for k in ("token", "direction", "entryPrice", "stopLoss")} == {
            "token": "SOL", "direction": "long", "entryPrice": 140.0, "stopLoss": 120
        }
        assert "createdAt" in data

    def test_retrieve_objects_filters(self):
        self.call("upsert_token_watchlist", name="Memes", tokens="BONK")
        self.call("upsert_market_analysis", title="SOL outlook", content="Bullish", tokens="SOL")
        all_objects = self.call("retrieve_memory_objects", type="*")
        assert all_objects["count"] == 2
        analyses = self.call("retrieve_memory_objects", type="market-analysis")
        assert [o["name"] for o in analyses["objects"]] == ["SOL outlook"]
        by_name = self.call("retrieve_memory_objects", type="*", name="mem")
        assert [o["type"] for o in by_name["objects"]] == ["watchlist"]
