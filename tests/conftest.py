"""Shared pytest fixtures for kiew tests."""
import sys
import json
from pathlib import Path

# Add project root to path BEFORE any other imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from kiew.storage import Storage
from kiew.chat.llm_providers.base import BaseProvider, LLMResponse, ToolCall


class ScriptedProvider(BaseProvider):
    """Provider that replays canned responses and records what it was sent."""

    def __init__(self, responses=None):
        super().__init__({"provider": "scripted", "model": "scripted-1"})
        self.responses = list(responses or [])
        self.calls = []

    def health_check(self) -> bool:
        return True

    def chat_completion(self, messages, tools=None, generation_params=None):
        self.calls.append({
            "messages": json.loads(json.dumps(messages)),
            "tools": tools,
            "generation_params": generation_params,
        })
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return LLMResponse(content=response, finish_reason="stop")
        return response


def tool_response(*calls, content=None):
    """LLMResponse asking for the given (name, args) tool calls."""
    tool_calls = [
        ToolCall(id=f"call_{i}", name=name, arguments=json.dumps(args))
        for i, (name, args) in enumerate(calls)
    ]
    return LLMResponse(content=content, tool_calls=tool_calls, finish_reason="tool_calls")


@pytest.fixture
def make_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


@pytest.fixture
def make_tool_response():
    return tool_response


@pytest.fixture
def storage(tmp_path):
    """Storage rooted in a temporary directory; writer stopped afterwards."""
    store = Storage(tmp_path / "data")
    yield store
    store.flush(timeout=5)
    store.close()


@pytest.fixture
def echo_tool():
    """Tool definition + executor that echoes its 'text' argument."""
    tool = {
        "type": "function",
        "function": {
            "name": "echo",
            "description": "Echo text back",
            "parameters": {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"]
            }
        }
    }

    def execute(function_name, arguments, config):
        return arguments["text"], True

    return tool, execute


@pytest.fixture
def settings_defaults():
    """Minimal settings defaults for testing."""
    return {
        "identity": {
            "BOT_NAME": "testbot",
            "SYSTEM_PROMPT": "You are {bot_name}."
        },
        "llm": {
            "LLM_PRIMARY": {
                "provider": "openai",
                "base_url": "http://test:1234/v1",
                "api_key": "",
                "api_key_env": "KIEW_TEST_API_KEY",
                "model": "test-model",
                "enabled": True
            },
            "GENERATION_DEFAULTS": {
                "max_tokens": 100,
                "temperature": 0.5
            }
        },
        "history": {
            "MAX_HISTORY_SIZE": 600
        }
    }
