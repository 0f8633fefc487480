"""Tests for the ActionExecutor."""

import asyncio
import shutil
import tempfile
from pathlib import Path

import pytest

from actions.executor import ActionExecutor, decode_arguments
from actions.registry import ToolDefinition, ToolRegistry
from actions.scope import TurnScope
from memory.models import InvocationStatus
from memory.sqlite_store import SQLiteConversationStore
from retrieval.vector_store import chat_collection_name
from utils.errors import ArgumentParseError, ExternalServiceError
from tests.fakes import make_context, tool_call


class TestDecodeArguments:
    """Argument text decoding."""

    def test_empty_text_is_empty_object(self):
        assert decode_arguments("x", "") == {}
        assert decode_arguments("x", None) == {}

    def test_dict_passes_through(self):
        assert decode_arguments("x", {"a": 1}) == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(ArgumentParseError) as exc:
            decode_arguments("fetch_token_data", "{token_address: SOL")
        assert exc.value.action_name == "fetch_token_data"

    def test_non_object_raises(self):
        with pytest.raises(ArgumentParseError):
            decode_arguments("x", "[1, 2]")


class TestActionExecutor:
    """Dispatch, envelopes and invocation records."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteConversationStore(db_path=str(Path(self.tmpdir) / "exec.db"))
        self.calls = []

        async def echo(ctx, args):
            self.calls.append(("echo", args))
            return {"echo": args}

        async def broken(ctx, args):
            self.calls.append(("broken", args))
            raise ExternalServiceError("market_data", "API returned status 500", retryable=True)

        async def intent(ctx, args):
            self.calls.append(("evaluate_query_intent", args))
            return {
                "needs_semantic_search": args.get("search", True),
                "optimized_query": "sol strategy discussed earlier",
                "recommended_collection": args.get("collection", ""),
                "reasoning": "refers to earlier conversation",
            }

        async def semantic(ctx, args):
            self.calls.append(("semantic_query", args))
            return {"results": []}

        self.registry = ToolRegistry([
            ToolDefinition(
                name="echo", description="echo", handler=echo,
                parameters={"type": "object", "properties": {"value": {"type": "string"}}, "required": ["value"]},
            ),
            ToolDefinition(name="broken", description="fails", handler=broken),
            ToolDefinition(name="evaluate_query_intent", description="intent", handler=intent),
            ToolDefinition(name="semantic_query", description="search", handler=semantic),
        ])
        self.executor = ActionExecutor(self.registry)
        self.context = make_context(self.store, "conv-1")
        self.scope = TurnScope("conv-1", phase="main")

    def teardown_method(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_success_envelope(self):
        result = asyncio.run(self.executor.execute("echo", '{"value": "hi"}', self.context, self.scope))

        assert result.success is True
        assert result.data == {"echo": {"value": "hi"}}
        assert result.error is None
        assert result.duration_ms >= 0
        [record] = self.scope.invocations
        assert record.status == InvocationStatus.COMPLETED
        assert record.raw_arguments == '{"value": "hi"}'
        assert record.invocation_id == result.invocation_id

    def test_parse_error_never_runs_handler(self):
        result = asyncio.run(self.executor.execute("echo", "{not json", self.context, self.scope))

        assert result.success is False
        assert result.error_kind == "ArgumentParseError"
        assert self.calls == []
        [record] = self.scope.invocations
        assert record.status == InvocationStatus.FAILED
        assert record.error_kind == "ArgumentParseError"
        assert record.raw_arguments == "{not json"

    def test_unknown_action(self):
        result = asyncio.run(self.executor.execute("launch_rocket", "{}", self.context, self.scope))

        assert result.success is False
        assert result.error_kind == "ActionNotImplemented"
        assert "launch_rocket not implemented" in result.error
        assert self.scope.invocations[0].status == InvocationStatus.FAILED

    def test_action_outside_allowed_names_is_not_dispatched(self):
        calls = [tool_call("broken", "{}", "call_1"), tool_call("echo", '{"value": "x"}', "call_2")]
        results = asyncio.run(self.executor.execute_tool_calls(
            calls, self.context, self.scope, allowed={"echo"}
        ))

        assert [r.success for r in results] == [False, True]
        assert results[0].error_kind == "ActionNotAvailable"
        assert "not available during main" in results[0].error
        assert self.calls == [("echo", {"value": "x"})]
        assert [i.status for i in self.scope.invocations] == [InvocationStatus.FAILED, InvocationStatus.COMPLETED]

    def test_chained_call_ignores_allowed_names(self):
        results = asyncio.run(self.executor.execute_tool_calls(
            [tool_call("evaluate_query_intent", "{}")], self.context, self.scope,
            allowed={"evaluate_query_intent"}
        ))

        assert [r.action_name for r in results] == ["evaluate_query_intent", "semantic_query"]
        assert all(r.success for r in results)

    def test_missing_required_argument(self):
        result = asyncio.run(self.executor.execute("echo", "{}", self.context, self.scope))

        assert result.success is False
        assert result.error_kind == "ActionValidationError"
        assert self.calls == []

    def test_handler_failure_is_captured(self):
        result = asyncio.run(self.executor.execute("broken", "{}", self.context, self.scope))

        assert result.success is False
        assert result.error_kind == "ExternalServiceError"
        assert "status 500" in result.error
        assert self.scope.invocations[0].status == InvocationStatus.FAILED

    def test_without_scope_nothing_is_recorded(self):
        result = asyncio.run(self.executor.execute("echo", {"value": "x"}, self.context))
        assert result.success is True
        assert result.invocation_id is None

    def test_intent_chains_one_semantic_query(self):
        call = tool_call("evaluate_query_intent", '{"user_query": "what did we say about SOL?"}')
        results = asyncio.run(self.executor.execute_tool_call(call, self.context, self.scope))

        assert [r.action_name for r in results] == ["evaluate_query_intent", "semantic_query"]
        intent_record, chained_record = self.scope.invocations
        assert chained_record.chained_from == intent_record.invocation_id
        assert chained_record.arguments == {
            "query": "sol strategy discussed earlier",
            "collection": chat_collection_name("conv-1"),
            "limit": 5,
        }

    def test_chain_uses_recommended_collection(self):
        call = tool_call("evaluate_query_intent", '{"user_query": "q", "collection": "token_data_sol"}')
        asyncio.run(self.executor.execute_tool_call(call, self.context, self.scope))
        assert self.scope.invocations[1].arguments["collection"] == "token_data_sol"

    def test_no_chain_when_search_not_needed(self):
        call = tool_call("evaluate_query_intent", '{"user_query": "hi", "search": false}')
        results = asyncio.run(self.executor.execute_tool_call(call, self.context, self.scope))
        assert len(results) == 1
        assert len(self.scope.invocations) == 1

    def test_semantic_query_does_not_chain(self):
        call = tool_call("semantic_query", '{"query": "x"}')
        results = asyncio.run(self.executor.execute_tool_call(call, self.context, self.scope))
        assert len(results) == 1

    def test_tool_calls_run_in_requested_order(self):
        calls = [
            tool_call("echo", '{"value": "1"}', "c1"),
            tool_call("broken", "{}", "c2"),
            tool_call("echo", '{"value": "3"}', "c3"),
        ]
        results = asyncio.run(self.executor.execute_tool_calls(calls, self.context, self.scope))

        assert [r.success for r in results] == [True, False, True]
        assert [name for name, _ in self.calls] == ["echo", "broken", "echo"]
        assert [r.tool_call_id for r in self.scope.close()] == ["c1", "c2", "c3"]
        assert all(r.status != InvocationStatus.PENDING for r in self.scope.invocations)


class TestTurnScope:
    """In-memory invocation bookkeeping."""

    def test_records_finish_exactly_once(self):
        scope = TurnScope("conv", phase="main")
        record = scope.begin("echo", {"value": "x"})
        scope.complete(record, {"ok": True})
        with pytest.raises(RuntimeError):
            scope.fail(record, "late", "Error")

    def test_close_fails_pending_records(self):
        scope = TurnScope("conv", phase="main")
        scope.begin("echo")
        [record] = scope.close()
        assert record.status == InvocationStatus.FAILED
        assert record.error_kind == "Abandoned"
