"""Action executor: argument decoding, dispatch, timing and result envelopes."""

import json
import logging
import time
from typing import AbstractSet, Any, Dict, List, Optional, Union

from llm.base_client import ToolCall
from memory.models import ActionInvocation
from retrieval.vector_store import chat_collection_name
from schemas.results import ActionResult
from utils.errors import ActionNotAvailable, ActionNotImplemented, ActionValidationError, ArgumentParseError
from .context import ActionContext
from .registry import ToolRegistry
from .scope import TurnScope

logger = logging.getLogger(__name__)

CHAINING_ACTION = "evaluate_query_intent"
CHAINED_ACTION = "semantic_query"
CHAINED_QUERY_LIMIT = 5


def decode_arguments(action_name: str, raw: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    """
    Turn tool-call arguments into a dict.

    Raises:
        ArgumentParseError: If the text is not a JSON object
    """
    if isinstance(raw, dict):
        return raw
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(action_name, raw, str(e)) from e
    if not isinstance(parsed, dict):
        raise ArgumentParseError(action_name, raw, f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ActionExecutor:
    """
    Executes actions requested by the model.

    Every execution yields an ActionResult; handler failures never escape.
    When a scope is given, each execution is also recorded there as an
    ActionInvocation.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(
        self,
        action_name: str,
        arguments: Union[str, Dict[str, Any], None],
        context: ActionContext,
        scope: Optional[TurnScope] = None,
        tool_call_id: Optional[str] = None,
        chained_from: Optional[str] = None,
        allowed: Optional[AbstractSet[str]] = None
    ) -> ActionResult:
        """
        Execute a single action.

        Args:
            action_name: Name the model asked for
            arguments: Raw JSON argument text, or an already-decoded dict
            context: Per-turn services for the handler
            scope: Optional TurnScope to record the invocation in
            tool_call_id: Provider tool call id, kept on the record
            chained_from: Invocation id that triggered this one
            allowed: Names offered to the model in this phase; anything else
                fails with ActionNotAvailable instead of being dispatched

        Returns:
            ActionResult envelope (success or failure)
        """
        raw_text = arguments if isinstance(arguments, str) else None
        start = time.perf_counter()
        invocation: Optional[ActionInvocation] = None
        decoded: Dict[str, Any] = {}

        try:
            decoded = decode_arguments(action_name, arguments)
        except ArgumentParseError as e:
            return self._failure(action_name, e, start, scope, raw_text, tool_call_id, chained_from, decoded)

        if scope is not None:
            invocation = scope.begin(action_name, decoded, raw_text, tool_call_id, chained_from)

        try:
            tool = self.registry.get(action_name)
            if tool is None:
                raise ActionNotImplemented(action_name)
            if allowed is not None and action_name not in allowed:
                raise ActionNotAvailable(action_name, scope.phase if scope is not None else "this phase")

            missing = [p for p in tool.required if decoded.get(p) in (None, "")]
            if missing:
                raise ActionValidationError(f"Missing required arguments for {action_name}: {', '.join(missing)}")

            logger.info(f"Executing action {action_name}")
            data = await tool.handler(context, decoded)
        except Exception as e:
            return self._failure(action_name, e, start, scope, raw_text, tool_call_id, chained_from, decoded, invocation)

        duration_ms = (time.perf_counter() - start) * 1000
        if invocation is not None:
            scope.complete(invocation, data)
        logger.info(f"Action {action_name} completed in {duration_ms:.0f}ms")
        return ActionResult(
            action_name=action_name,
            success=True,
            data=data,
            duration_ms=duration_ms,
            invocation_id=invocation.invocation_id if invocation else None,
        )

    def _failure(
        self,
        action_name: str,
        error: Exception,
        start: float,
        scope: Optional[TurnScope],
        raw_text: Optional[str],
        tool_call_id: Optional[str],
        chained_from: Optional[str],
        decoded: Dict[str, Any],
        invocation: Optional[ActionInvocation] = None
    ) -> ActionResult:
        error_kind = type(error).__name__
        if scope is not None:
            if invocation is None:
                invocation = scope.begin(action_name, decoded, raw_text, tool_call_id, chained_from)
            scope.fail(invocation, str(error), error_kind)

        if isinstance(error, (ArgumentParseError, ActionNotImplemented, ActionValidationError)):
            logger.warning(f"Action {action_name} rejected: {error}")
        else:
            logger.error(f"Action {action_name} failed: {error_kind}: {error}")

        return ActionResult(
            action_name=action_name,
            success=False,
            error=str(error),
            error_kind=error_kind,
            duration_ms=(time.perf_counter() - start) * 1000,
            invocation_id=invocation.invocation_id if invocation else None,
        )

    def _chained_arguments(self, result: ActionResult, context: ActionContext) -> Optional[Dict[str, Any]]:
        data = result.data if isinstance(result.data, dict) else {}
        if not result.success or not data.get("needs_semantic_search"):
            return None
        query = data.get("optimized_query")
        if not query:
            return None
        return {
            "query": query,
            "collection": data.get("recommended_collection") or chat_collection_name(context.conversation_id),
            "limit": CHAINED_QUERY_LIMIT,
        }

    async def execute_tool_call(
        self,
        tool_call: ToolCall,
        context: ActionContext,
        scope: Optional[TurnScope] = None,
        allowed: Optional[AbstractSet[str]] = None
    ) -> List[ActionResult]:
        """
        Execute one model tool call.

        A successful evaluate_query_intent that asks for a semantic lookup is
        followed by exactly one semantic_query invocation; the chained call
        itself never chains further and is not subject to `allowed`.
        """
        result = await self.execute(
            tool_call.name, tool_call.arguments_json, context, scope,
            tool_call_id=tool_call.id, allowed=allowed
        )
        results = [result]

        if tool_call.name == CHAINING_ACTION:
            chained_args = self._chained_arguments(result, context)
            if chained_args is not None:
                logger.info(f"Chaining {CHAINED_ACTION} after {CHAINING_ACTION}")
                results.append(await self.execute(
                    CHAINED_ACTION, chained_args, context, scope,
                    tool_call_id=tool_call.id, chained_from=result.invocation_id
                ))
        return results

    async def execute_tool_calls(
        self,
        tool_calls: List[ToolCall],
        context: ActionContext,
        scope: Optional[TurnScope] = None,
        allowed: Optional[AbstractSet[str]] = None
    ) -> List[ActionResult]:
        """Execute tool calls sequentially, in the order requested."""
        results: List[ActionResult] = []
        for tool_call in tool_calls:
            results.extend(await self.execute_tool_call(tool_call, context, scope, allowed))
        return results
