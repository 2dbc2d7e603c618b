# llm_providers/base.py
"""
Backend-neutral types for talking to a chat model.

Sessions keep their history as OpenAI-shaped message dicts. A provider turns
that history into whatever its SDK wants and hands back an LLMResponse, so the
tool loop never sees SDK objects.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

Message = Dict[str, Any]


@dataclass
class ToolCall:
    """One function call requested by the model; arguments stay raw JSON text."""
    id: str
    name: str
    arguments: str

    def to_dict(self) -> Message:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class LLMResponse:
    """A model turn: text, tool calls, or both."""
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def text(self) -> str:
        return self.content or ""

    def get_tool_calls_as_dicts(self) -> List[Message]:
        return [call.to_dict() for call in self.tool_calls]


class BaseProvider(ABC):
    """
    A configured connection to one chat backend.

    llm_config is the LLM_PRIMARY settings object (provider, base_url, api_key,
    model, timeout). request_timeout bounds a single completion call; timeout
    in llm_config only bounds health checks.
    """

    default_provider_name = 'unknown'

    def __init__(self, llm_config: Dict[str, Any], request_timeout: float = 240.0):
        self.config = llm_config
        self.base_url = llm_config.get('base_url', '')
        self.api_key = llm_config.get('api_key', '')
        self.model = llm_config.get('model', '')
        self.health_check_timeout = llm_config.get('timeout', 5.0)
        self.request_timeout = request_timeout
        self._client = None

    @property
    def provider_name(self) -> str:
        return self.config.get('provider') or self.default_provider_name

    @abstractmethod
    def health_check(self) -> bool:
        """True when the backend answers at all."""

    @abstractmethod
    def chat_completion(
        self,
        messages: List[Message],
        tools: Optional[List[Message]] = None,
        generation_params: Optional[Dict[str, Any]] = None
    ) -> LLMResponse:
        """Run one completion over the whole session history."""

    def format_tool_result(self, tool_call_id: str, function_name: str, result: str) -> Message:
        """History entry carrying a tool's result back to the model."""
        return {
            "role": "tool",
            "tool_call_id": tool_call_id,
            "name": function_name,
            "content": result
        }

    def format_note(self, text: str) -> Message:
        """Plain text sent alongside a batch of tool results."""
        return {"role": "user", "content": text}

    def convert_tools_for_api(self, tools: List[Message]) -> List[Message]:
        """Strip registry-only keys (like is_local) from tool definitions."""
        return [{"type": "function", "function": tool["function"]} for tool in tools]
