# llm_providers/claude.py
"""
Anthropic Messages API provider.

Session history stays OpenAI-shaped; every request rebuilds the Claude view
of it:
    system message        -> the separate `system` parameter
    assistant tool_calls  -> tool_use blocks on the assistant turn
    tool results / notes  -> tool_result / text blocks on ONE user turn
Claude rejects two user turns in a row, so adjacent same-role entries are
folded together.
"""

import json
import logging
from typing import Dict, Any, List, Optional

import anthropic

from .base import BaseProvider, LLMResponse, ToolCall, Message

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MAX_TOKENS = 4096


def _text_blocks(content) -> List[Message]:
    if isinstance(content, list):
        return list(content)
    return [{"type": "text", "text": content}] if content else []


def _tool_use_block(call: Message) -> Message:
    func = call.get("function", {})
    try:
        arguments = json.loads(func.get("arguments") or "{}")
    except json.JSONDecodeError:
        logger.warning(f"[LLM] dropping unparseable arguments for {func.get('name')} in history")
        arguments = {}
    return {"type": "tool_use", "id": call.get("id"), "name": func.get("name"), "input": arguments}


class ClaudeProvider(BaseProvider):
    default_provider_name = 'claude'

    def __init__(self, llm_config: Dict[str, Any], request_timeout: float = 240.0):
        super().__init__(llm_config, request_timeout)
        self._client = anthropic.Anthropic(
            api_key=self.api_key,
            base_url=self.base_url or DEFAULT_BASE_URL,
            timeout=self.request_timeout
        )
        logger.info(f"[LLM] claude endpoint {self.base_url or DEFAULT_BASE_URL} model {self.model}")

    @property
    def provider_name(self) -> str:
        return 'claude'

    def health_check(self) -> bool:
        """One-token request; an auth or validation rejection still proves the API is up."""
        try:
            self._client.messages.create(
                model=self.model,
                max_tokens=1,
                messages=[{"role": "user", "content": "ping"}],
                timeout=self.health_check_timeout
            )
        except anthropic.APIStatusError as e:
            return e.status_code in (400, 401, 403)
        except Exception as e:
            logger.debug(f"[LLM] claude health check failed: {e}")
            return False
        return True

    def chat_completion(
        self,
        messages: List[Message],
        tools: Optional[List[Message]] = None,
        generation_params: Optional[Dict[str, Any]] = None
    ) -> LLMResponse:
        params = generation_params or {}
        system_prompt, turns = self._convert_messages(messages)

        request = {
            "model": params.get("model") or self.model,
            "messages": turns,
            "max_tokens": params.get("max_tokens", DEFAULT_MAX_TOKENS),
        }
        if system_prompt:
            request["system"] = system_prompt
        for name in ("temperature", "top_p"):
            if name in params:
                request[name] = params[name]
        if tools:
            request["tools"] = self._convert_tools(tools)

        return self._parse_response(self._client.messages.create(**request))

    def _convert_messages(self, messages: List[Message]) -> tuple:
        """OpenAI-shaped history -> (system_prompt, Claude turns)."""
        system_prompt = None
        turns: List[Message] = []

        def push(role, blocks):
            if turns and turns[-1]["role"] == role:
                turns[-1]["content"].extend(blocks)
            else:
                turns.append({"role": role, "content": blocks})

        for msg in messages:
            role = msg.get("role")
            if role == "system":
                system_prompt = msg.get("content")
            elif role == "assistant":
                blocks = _text_blocks(msg.get("content"))
                blocks.extend(_tool_use_block(call) for call in msg.get("tool_calls") or [])
                push("assistant", blocks)
            elif role == "tool":
                push("user", [{
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id"),
                    "content": msg.get("content", ""),
                }])
            elif role == "user":
                push("user", _text_blocks(msg.get("content")))

        return system_prompt, turns

    def _convert_tools(self, tools: List[Message]) -> List[Message]:
        converted = []
        for tool in tools:
            if tool.get("type") != "function":
                continue
            func = tool["function"]
            converted.append({
                "name": func.get("name"),
                "description": func.get("description", ""),
                "input_schema": func.get("parameters") or {"type": "object", "properties": {}},
            })
        return converted

    def _parse_response(self, response) -> LLMResponse:
        text_parts = []
        calls = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input)))

        usage = None
        if response.usage:
            prompt, completion = response.usage.input_tokens, response.usage.output_tokens
            usage = {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion}

        return LLMResponse(
            content="".join(text_parts) or None,
            tool_calls=calls,
            finish_reason=response.stop_reason,
            usage=usage
        )
