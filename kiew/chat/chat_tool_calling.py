import json
import logging
from typing import Dict, Any, List, Optional

from kiew.errors import KiewError, ValidationError, UnknownToolError
from .llm_providers.base import BaseProvider, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULT_LENGTH = 10000
TRUNCATION_SUFFIX = "\n...[result truncated]"


def truncate_result(result: str, limit: int = DEFAULT_MAX_RESULT_LENGTH) -> tuple:
    """Cut a tool result down to limit characters. Returns (text, was_truncated)."""
    if len(result) <= limit:
        return result, False
    return result[:limit] + TRUNCATION_SUFFIX, True


def truncation_note(function_name: str, original_length: int, limit: int) -> str:
    return (f"Note: the result of {function_name} was {original_length} characters long and was "
            f"shortened to the first {limit}. Ask for something narrower if you need the rest.")


def wrap_tool_result(tool_call_id: str, function_name: str, result: str) -> Dict[str, Any]:
    """Wrap tool results in standard OpenAI tool format."""
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": function_name,
        "content": result
    }


class ToolCallingEngine:
    def __init__(self, function_manager, max_result_length: int = DEFAULT_MAX_RESULT_LENGTH):
        self.function_manager = function_manager
        self.max_result_length = max_result_length

    def _run_one(self, tool_call: ToolCall) -> tuple:
        """Run a single call. Returns (text, ok); tool-level failures become error text."""
        function_name = tool_call.name

        if not self.function_manager.has_function(function_name):
            logger.warning(f"[TOOL] Model requested unknown tool: {function_name}")
            return f"Error: {UnknownToolError(function_name)}", False

        try:
            function_args = json.loads(tool_call.arguments or "{}")
        except json.JSONDecodeError:
            logger.error(f"Failed to parse tool arguments: {tool_call.arguments}")
            return f"Error: {ValidationError('Invalid JSON arguments.')}", False

        try:
            return self.function_manager.execute_function(function_name, function_args), True
        except KiewError as tool_error:
            logger.warning(f"[TOOL] {function_name} failed: {tool_error}")
            return f"Error: {tool_error}", False

    def resolve_calls(self, tool_calls: List[ToolCall], provider: Optional[BaseProvider] = None) -> List[Dict[str, Any]]:
        """
        Execute every requested call and build the batch to send back to the model.

        The batch holds one result part per call, in request order, followed by a
        note part for each result that had to be shortened.
        """
        results = []
        notes = []

        for tool_call in tool_calls:
            result, ok = self._run_one(tool_call)

            if ok:
                original_length = len(result)
                result, truncated = truncate_result(result, self.max_result_length)
                if truncated:
                    logger.info(f"[TOOL] Truncated {tool_call.name} result: {original_length} -> {self.max_result_length} chars")
                    notes.append(truncation_note(tool_call.name, original_length, self.max_result_length))

            if provider:
                results.append(provider.format_tool_result(tool_call.id, tool_call.name, result))
            else:
                results.append(wrap_tool_result(tool_call.id, tool_call.name, result))

            logger.info(f"[OK] Resolved tool call: {tool_call.name}")

        if provider:
            notes = [provider.format_note(note) for note in notes]
        else:
            notes = [{"role": "user", "content": note} for note in notes]

        return results + notes
