# llm_providers/openai_compat.py
"""
Provider for the OpenAI chat completions API and the many servers that copy
it (OpenRouter, Fireworks, LM Studio, llama.cpp, vLLM).
"""

import logging
from typing import Dict, Any, List, Optional

from openai import OpenAI

from .base import BaseProvider, LLMResponse, ToolCall, Message

logger = logging.getLogger(__name__)

# Message keys chat.completions accepts; anything else in session history is ours
_WIRE_KEYS = ("role", "content", "name", "tool_calls", "tool_call_id")

# Model families that take max_completion_tokens and no sampling knobs
_REASONING_PREFIXES = ('gpt-5', 'o1', 'o3', 'o4')
_SAMPLING_PARAMS = ('temperature', 'top_p', 'presence_penalty', 'frequency_penalty')


class OpenAICompatProvider(BaseProvider):
    default_provider_name = 'openai'

    def __init__(self, llm_config: Dict[str, Any], request_timeout: float = 240.0):
        super().__init__(llm_config, request_timeout)
        self._client = OpenAI(
            base_url=self.base_url or None,
            api_key=self.api_key,
            timeout=self.request_timeout
        )
        logger.info(f"[LLM] {self.provider_name} endpoint {self.base_url or 'default'} model {self.model}")

    @property
    def client(self) -> OpenAI:
        return self._client

    def health_check(self) -> bool:
        try:
            self._client.models.list(timeout=self.health_check_timeout)
        except Exception as e:
            logger.debug(f"[LLM] health check against {self.base_url} failed: {e}")
            return False
        return True

    def _transform_params_for_model(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Rename/drop generation params the target model family rejects."""
        result = dict(params or {})
        if not (self.model or '').lower().startswith(_REASONING_PREFIXES):
            return result

        if 'max_tokens' in result:
            result['max_completion_tokens'] = result.pop('max_tokens')
        for name in _SAMPLING_PARAMS:
            result.pop(name, None)
        return result

    def _sanitize_messages(self, messages: List[Message]) -> List[Message]:
        wire = []
        for msg in messages:
            out = {key: msg[key] for key in _WIRE_KEYS if key in msg}
            if not out.get("tool_calls"):
                out.pop("tool_calls", None)
            # name is only meaningful on tool results
            if out.get("role") != "tool":
                out.pop("name", None)
            wire.append(out)
        return wire

    def chat_completion(
        self,
        messages: List[Message],
        tools: Optional[List[Message]] = None,
        generation_params: Optional[Dict[str, Any]] = None
    ) -> LLMResponse:
        params = self._transform_params_for_model(generation_params)
        model = params.pop("model", None) or self.model

        request = {"model": model, "messages": self._sanitize_messages(messages), **params}
        if tools:
            request["tools"] = self.convert_tools_for_api(tools)
            request["tool_choice"] = "auto"

        logger.debug(f"[LLM] chat.completions.create model={model} messages={len(messages)} tools={len(tools or [])}")
        return self._parse_response(self._client.chat.completions.create(**request))

    def _parse_response(self, response) -> LLMResponse:
        if not response.choices:
            logger.warning("[LLM] completion came back with no choices")
            return LLMResponse(finish_reason="empty")

        choice = response.choices[0]
        calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (choice.message.tool_calls or [])
        ]

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content,
            tool_calls=calls,
            finish_reason=choice.finish_reason,
            usage=usage
        )
