"""Tests for schema-validating JSON decoding of model output."""

from pydantic import BaseModel

from llm.json_output import decode_json_object, strip_code_fences


class _Query(BaseModel):
    query: str


class TestDecodeJsonObject:
    """decode_json_object never raises and reports why it failed."""

    def test_plain_object(self):
        result = decode_json_object('{"query": "solana price"}', required_keys=("query",))
        assert result.ok is True
        assert result.value == {"query": "solana price"}

    def test_code_fenced_object(self):
        raw = '```json\n{"reply": "hi", "actionData": {}}\n```'
        assert strip_code_fences(raw) == '{"reply": "hi", "actionData": {}}'
        assert decode_json_object(raw, required_keys=("reply", "actionData")).ok is True

    def test_invalid_json(self):
        result = decode_json_object("Sure! Here is the answer")
        assert result.ok is False
        assert result.error.startswith("invalid JSON")
        assert result.raw == "Sure! Here is the answer"

    def test_empty_output(self):
        assert decode_json_object("").error == "empty output"
        assert decode_json_object(None).ok is False

    def test_array_is_not_an_object(self):
        result = decode_json_object("[1, 2, 3]")
        assert result.ok is False
        assert "list" in result.error

    def test_missing_keys(self):
        result = decode_json_object('{"reply": "hi"}', required_keys=("reply", "actionData"))
        assert result.ok is False
        assert result.error == "missing keys: actionData"

    def test_schema_validation(self):
        ok = decode_json_object('{"query": "jup"}', schema=_Query)
        assert ok.ok is True
        assert ok.value.query == "jup"

        bad = decode_json_object('{"query": 5}', schema=_Query)
        assert bad.ok is False
        assert bad.error.startswith("schema validation failed")
