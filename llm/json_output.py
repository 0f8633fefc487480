"""Schema-validating decode of JSON produced by a model."""

import json
import logging
from typing import Any, Iterable, Optional, Type

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class DecodeResult(BaseModel):
    """Outcome of decoding model output. Exactly one of value / error is set."""
    ok: bool
    value: Optional[Any] = None
    error: Optional[str] = None
    raw: str = ""


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    content = (content or "").strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
        content = content.strip()
    return content


def decode_json_object(
    raw: Optional[str],
    required_keys: Iterable[str] = (),
    schema: Optional[Type[BaseModel]] = None
) -> DecodeResult:
    """
    Decode a JSON object from model output.

    Args:
        raw: Model output text (may be wrapped in a markdown code block)
        required_keys: Keys that must be present at the top level
        schema: Optional pydantic model the object must validate against;
            on success `value` is the model instance

    Returns:
        DecodeResult; never raises
    """
    raw = raw or ""
    text = strip_code_fences(raw)
    if not text:
        return DecodeResult(ok=False, error="empty output", raw=raw)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        return DecodeResult(ok=False, error=f"invalid JSON: {e}", raw=raw)

    if not isinstance(parsed, dict):
        return DecodeResult(ok=False, error=f"expected a JSON object, got {type(parsed).__name__}", raw=raw)

    missing = [key for key in required_keys if key not in parsed]
    if missing:
        return DecodeResult(ok=False, error=f"missing keys: {', '.join(missing)}", raw=raw)

    if schema is not None:
        try:
            return DecodeResult(ok=True, value=schema.model_validate(parsed), raw=raw)
        except ValidationError as e:
            return DecodeResult(ok=False, error=f"schema validation failed: {e.error_count()} errors", raw=raw)

    return DecodeResult(ok=True, value=parsed, raw=raw)
