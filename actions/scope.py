"""In-memory bookkeeping for the actions executed during one phase of a turn."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from memory.models import ActionInvocation, InvocationStatus

logger = logging.getLogger(__name__)


class TurnScope:
    """
    Holds the ActionInvocation records of one phase.

    Records are created pending and move to completed or failed exactly
    once. Nothing here touches storage: the orchestrator persists the main
    phase's scope together with the final assistant message and discards
    resolver scopes.
    """

    def __init__(self, conversation_id: str, phase: str):
        self.conversation_id = conversation_id
        self.phase = phase
        self.invocations: List[ActionInvocation] = []

    def begin(
        self,
        action_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        raw_arguments: Optional[str] = None,
        tool_call_id: Optional[str] = None,
        chained_from: Optional[str] = None
    ) -> ActionInvocation:
        invocation = ActionInvocation(
            invocation_id=str(uuid.uuid4()),
            action_name=action_name,
            arguments=arguments or {},
            raw_arguments=raw_arguments,
            tool_call_id=tool_call_id,
            chained_from=chained_from,
        )
        self.invocations.append(invocation)
        return invocation

    def _finish(self, invocation: ActionInvocation, status: InvocationStatus):
        if invocation.status != InvocationStatus.PENDING:
            raise RuntimeError(f"Invocation {invocation.invocation_id} already {invocation.status.value}")
        invocation.status = status
        invocation.ended_at = datetime.now()
        invocation.duration_ms = (invocation.ended_at - invocation.started_at).total_seconds() * 1000

    def complete(self, invocation: ActionInvocation, result: Any):
        self._finish(invocation, InvocationStatus.COMPLETED)
        invocation.result = result

    def fail(self, invocation: ActionInvocation, error: str, error_kind: str):
        self._finish(invocation, InvocationStatus.FAILED)
        invocation.error = error
        invocation.error_kind = error_kind

    def close(self) -> List[ActionInvocation]:
        """Fail anything still pending (e.g. after cancellation) and return all records."""
        for invocation in self.invocations:
            if invocation.status == InvocationStatus.PENDING:
                logger.warning(f"Invocation {invocation.action_name} left pending in {self.phase}; marking failed")
                self.fail(invocation, "Invocation did not finish", "Abandoned")
        return list(self.invocations)
