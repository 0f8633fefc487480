"""Synthesizer: turns executed action results into the final reply."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from llm.base_client import BaseLLMClient, ChatRequest
from llm.json_output import decode_json_object
from schemas.results import ActionResult, SynthesisResult
from utils.errors import SynthesisContractError

logger = logging.getLogger(__name__)

FORMAT_FAILURE_REPLY = (
    "I processed the actions, but encountered an issue formatting the final response. "
    "Please let me know if you need specific details."
)
EMPTY_SYNTHESIS_REPLY = "I executed the actions, but the final summary generation failed."
DATA_SOURCE = "Vybe Network"


def canonical_action_data(results: List[ActionResult]) -> Any:
    """
    The data a reply should carry.

    One successful action yields its data; several yield a map by action
    name. When every action failed the failure envelopes are returned.
    """
    succeeded = [r for r in results if r.success]
    if not succeeded:
        return {r.action_name: r.to_prompt_payload() for r in results} if results else None
    if len(succeeded) == 1:
        return succeeded[0].data
    return {r.action_name: r.data for r in succeeded}


def contains(candidate: Any, actual: Any) -> bool:
    """
    True if `candidate` carries everything in `actual`.

    Dicts may add keys but not drop or alter any; lists must match item by
    item; scalars must be equal.
    """
    if isinstance(actual, dict):
        if not isinstance(candidate, dict):
            return False
        return all(key in candidate and contains(candidate[key], value) for key, value in actual.items())
    if isinstance(actual, list):
        if not isinstance(candidate, list) or len(candidate) != len(actual):
            return False
        return all(contains(c, a) for c, a in zip(candidate, actual))
    return candidate == actual


class Synthesizer:
    """
    Second model pass after tool execution.

    Asks for a JSON object with reply / actionData / source. The reply is
    taken from the model; actionData is kept only if it still contains the
    executed actions' data, otherwise the real data replaces it.
    """

    SYSTEM_PROMPT = """You are an assistant expert in finance, blockchain and cryptocurrencies on the Solana network.
You have executed some actions to answer the user's question. Now write the final answer.

Respond with a JSON object that has exactly THREE keys:
- "reply": a clear, helpful answer for the user, in the same language the user wrote in.
- "actionData": ALL the data returned by the actions, without modifications. NEVER truncate or summarize it.
- "source": {"api": "Vybe Network", "endpoint": "<the action(s) used>", "timestamp": "<ISO timestamp>"}

Respond ONLY with the JSON object, no additional text."""

    def __init__(self, llm_client: BaseLLMClient):
        self.llm_client = llm_client

    def build_prompt(self, user_text: str, results: List[ActionResult]) -> str:
        lines = [
            "Context: You called some tools to answer the user. "
            f'The user\'s last message that triggered the tool call was: "{user_text}"',
            "Results of the executed actions:",
        ]
        for result in results:
            payload = json.dumps(result.to_prompt_payload(), ensure_ascii=False, default=str)
            lines.append(f"- Action: {result.action_name}\n  Result: {payload}")
        return "\n".join(lines)

    async def synthesize(
        self,
        user_text: str,
        results: List[ActionResult],
        initial_content: Optional[str] = None
    ) -> SynthesisResult:
        """
        Produce the final reply for a turn that executed actions.

        Args:
            user_text: The user's message
            results: Results of the main phase's actions, in execution order
            initial_content: Text the model produced alongside its tool calls

        Returns:
            SynthesisResult; never raises for model or contract failures
        """
        actual = canonical_action_data(results)
        source = self._default_source(results)

        try:
            response = await self.llm_client.chat(ChatRequest(
                system_prompt=self.SYSTEM_PROMPT,
                user_prompt=self.build_prompt(user_text, results),
                temperature=0.4,
                response_format="json_object",
            ))
            content = response.content
        except Exception as e:
            logger.error(f"Synthesis call failed: {e}")
            content = ""

        if not content or not content.strip():
            logger.warning("Synthesis returned no content")
            return SynthesisResult(
                reply=initial_content or EMPTY_SYNTHESIS_REPLY,
                action_data={"error": "No content in AI synthesis response", "raw_response": ""},
                source=source,
                contract_ok=False,
            )

        try:
            output = self.parse_output(content)
        except SynthesisContractError as e:
            logger.warning(f"Synthesis output violated the contract: {e}")
            return SynthesisResult(
                reply=initial_content or FORMAT_FAILURE_REPLY,
                action_data={
                    "error": "Failed to parse synthesis JSON or structure invalid",
                    "raw_response": e.raw_output,
                },
                source=source,
                contract_ok=False,
            )

        model_data = output["actionData"]
        verified = contains(model_data, actual)
        if not verified:
            logger.warning("Synthesized actionData does not match executed results; using actual data")

        model_source = output.get("source")
        if isinstance(model_source, dict):
            source = {**source, **model_source}

        return SynthesisResult(
            reply=output["reply"],
            action_data=model_data if verified else actual,
            source=source,
            contract_ok=True,
            action_data_verified=verified,
        )

    @staticmethod
    def parse_output(content: str) -> Dict[str, Any]:
        """
        Validate the synthesis JSON.

        Raises:
            SynthesisContractError: If the JSON is invalid, lacks a key or has an empty reply
        """
        decoded = decode_json_object(content, required_keys=("reply", "actionData"))
        if not decoded.ok:
            raise SynthesisContractError(decoded.error, raw_output=content)
        reply = decoded.value.get("reply")
        if not isinstance(reply, str) or not reply.strip():
            raise SynthesisContractError("reply must be a non-empty string", raw_output=content)
        return decoded.value

    @staticmethod
    def _default_source(results: List[ActionResult]) -> Dict[str, Any]:
        return {
            "api": DATA_SOURCE,
            "endpoint": ", ".join(r.action_name for r in results),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
