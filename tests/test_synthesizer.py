"""Tests for the synthesis phase."""

import asyncio
import json

import pytest

from agents.synthesizer import (
    EMPTY_SYNTHESIS_REPLY,
    FORMAT_FAILURE_REPLY,
    Synthesizer,
    canonical_action_data,
    contains,
)
from schemas.results import ActionResult
from utils.errors import SynthesisContractError
from tests.fakes import FakeLLMClient, sol_token_payload, text_response


def _ok(name, data):
    return ActionResult(action_name=name, success=True, data=data)


def _failed(name, error="boom", kind="ExternalServiceError"):
    return ActionResult(action_name=name, success=False, error=error, error_kind=kind)


class TestContains:
    """Test the containment check used to verify actionData."""

    def test_extra_keys_allowed(self):
        assert contains({"a": 1, "b": {"c": 2, "d": 3}, "extra": True}, {"a": 1, "b": {"c": 2}})

    def test_altered_value_rejected(self):
        assert not contains({"a": 2}, {"a": 1})

    def test_missing_key_rejected(self):
        assert not contains({"b": 1}, {"a": 1, "b": 1})

    def test_truncated_list_rejected(self):
        assert not contains({"data": [1, 2]}, {"data": [1, 2, 3]})
        assert contains({"data": [{"x": 1, "y": 2}]}, {"data": [{"x": 1}]})

    def test_none(self):
        assert contains(None, None)
        assert not contains({}, None)


class TestCanonicalActionData:

    def test_single_success(self):
        assert canonical_action_data([_ok("fetch_token_data", {"x": 1})]) == {"x": 1}

    def test_multiple_successes_keyed_by_name(self):
        data = canonical_action_data([_ok("a", 1), _failed("b"), _ok("c", 2)])
        assert data == {"a": 1, "c": 2}

    def test_all_failed(self):
        data = canonical_action_data([_failed("a", "nope", "ActionValidationError")])
        assert data == {"a": {"success": False, "error": "nope", "error_kind": "ActionValidationError"}}

    def test_no_results(self):
        assert canonical_action_data([]) is None


class TestSynthesizer:
    """Test reply synthesis against a scripted model."""

    def setup_method(self):
        """Set up test fixtures."""
        self.results = [_ok("fetch_token_data", {"token": sol_token_payload(), "holders": None})]

    def _run(self, *responses, initial_content=None):
        llm = FakeLLMClient(responses=list(responses))
        synthesizer = Synthesizer(llm)
        result = asyncio.run(synthesizer.synthesize("What is the price of SOL?", self.results, initial_content))
        return result, llm

    def test_valid_output(self):
        content = json.dumps({
            "reply": "SOL trades at $142.37.",
            "actionData": {"token": sol_token_payload(), "holders": None},
            "source": {"api": "Vybe Network", "endpoint": "fetch_token_data"},
        })
        result, llm = self._run(text_response(content))

        assert result.reply == "SOL trades at $142.37."
        assert result.contract_ok is True
        assert result.action_data_verified is True
        assert result.action_data["token"]["symbol"] == "SOL"
        assert result.source["api"] == "Vybe Network"
        assert "timestamp" in result.source

        request = llm.requests[0]
        assert request.response_format == "json_object"
        assert request.temperature == 0.4
        assert '"What is the price of SOL?"' in request.user_prompt
        assert "- Action: fetch_token_data" in request.user_prompt

    def test_code_fenced_output(self):
        content = "```json\n" + json.dumps({"reply": "Done.", "actionData": {"token": sol_token_payload()}}) + "\n```"
        result, _ = self._run(text_response(content))
        assert result.reply == "Done."
        assert result.contract_ok is True

    def test_altered_action_data_is_replaced(self):
        tampered = {"token": {**sol_token_payload(), "price": 999.0}, "holders": None}
        content = json.dumps({"reply": "SOL is at $999.", "actionData": tampered})
        result, _ = self._run(text_response(content))

        assert result.reply == "SOL is at $999."
        assert result.action_data_verified is False
        assert result.action_data["token"]["price"] == 142.37

    def test_malformed_json(self):
        result, _ = self._run(text_response("Here is your answer: SOL is up"))

        assert result.reply == FORMAT_FAILURE_REPLY
        assert result.contract_ok is False
        assert result.action_data["error"] == "Failed to parse synthesis JSON or structure invalid"
        assert result.action_data["raw_response"] == "Here is your answer: SOL is up"

    def test_missing_reply_key(self):
        result, _ = self._run(text_response(json.dumps({"actionData": {}})))
        assert result.reply == FORMAT_FAILURE_REPLY
        assert result.contract_ok is False

    def test_malformed_json_prefers_initial_content(self):
        result, _ = self._run(text_response("not json"), initial_content="Let me look that up.")
        assert result.reply == "Let me look that up."

    def test_empty_content(self):
        result, _ = self._run(text_response("   "))
        assert result.reply == EMPTY_SYNTHESIS_REPLY
        assert result.action_data == {"error": "No content in AI synthesis response", "raw_response": ""}
        assert result.contract_ok is False

    def test_model_failure_is_treated_as_empty(self):
        result, _ = self._run(RuntimeError("connection reset"))
        assert result.reply == EMPTY_SYNTHESIS_REPLY
        assert result.contract_ok is False


class TestParseOutput:

    def test_empty_reply_rejected(self):
        with pytest.raises(SynthesisContractError) as exc:
            Synthesizer.parse_output(json.dumps({"reply": " ", "actionData": None}))
        assert exc.value.raw_output is not None

    def test_non_object_rejected(self):
        with pytest.raises(SynthesisContractError):
            Synthesizer.parse_output("[1, 2, 3]")
