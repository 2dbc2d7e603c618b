"""
Orchestrator tests: compose, the bounded tool loop, finalize/recovery.

Run with: pytest tests/test_chat.py -v
"""
import threading
import time
from datetime import datetime, timezone

import pytest

from kiew.errors import ToolLoopLimitError
from kiew.chat.chat import (
    LLMChat,
    friendly_llm_error,
    SESSION_RESET_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
)
from kiew.chat.chat_data import ChatDataStore, set_chat_data_store
from kiew.chat.function_manager import FunctionManager, scope_chat_id
from kiew.chat.history import HistoryBuffer, HistoryEntry
from kiew.chat.llm_providers.base import LLMResponse


@pytest.fixture
def manager(echo_tool):
    mgr = FunctionManager(autoload=False)
    mgr.register_tool(*echo_tool)
    return mgr


@pytest.fixture
def history():
    return HistoryBuffer()


def make_chat(provider, manager, history=None, **kwargs):
    return LLMChat(provider, manager, history_buffer=history, system_prompt="You are testbot.", **kwargs)


class TestCompose:
    """Buffered history is prepended and cleared."""

    def test_buffer_prepended_then_cleared(self, make_provider, manager, history):
        history.append(1, HistoryEntry(5, "alice", "the orc attacks", datetime(2024, 1, 1, tzinfo=timezone.utc)))
        provider = make_provider(["ok"])
        chat = make_chat(provider, manager, history)

        assert chat.converse(1, "what now?") == "ok"

        sent = provider.calls[0]["messages"][-1]["content"]
        assert sent == "[2024-01-01T00:00:00+00:00 - alice]: the orc attacks\nwhat now?"
        assert history.size(1) == 0

    def test_empty_buffer_sends_text_as_is(self, make_provider, manager, history):
        provider = make_provider(["ok"])
        make_chat(provider, manager, history).converse(1, "hello")
        assert provider.calls[0]["messages"][-1]["content"] == "hello"

    def test_system_prompt_first(self, make_provider, manager):
        provider = make_provider(["ok"])
        make_chat(provider, manager).converse(1, "hello")
        assert provider.calls[0]["messages"][0] == {"role": "system", "content": "You are testbot."}

    def test_message_arriving_mid_compose_is_kept(self, make_provider, manager):
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        late = []

        class RacingBuffer(HistoryBuffer):
            def flush(self, chat_id):
                rendered = super().flush(chat_id)
                if not late:
                    t = threading.Thread(target=self.append, args=(chat_id, HistoryEntry(6, "bob", "late msg", stamp)))
                    late.append(t)
                    t.start()
                    t.join(0.1)
                return rendered

        history = RacingBuffer()
        history.append(1, HistoryEntry(5, "alice", "first", stamp))
        provider = make_provider(["a1", "a2"])
        chat = make_chat(provider, manager, history)

        chat.converse(1, "q1")
        late[0].join(5)
        assert history.size(1) == 1

        chat.converse(1, "q2")
        sent = [call["messages"][-1]["content"] for call in provider.calls]
        assert sent[0].endswith("alice]: first\nq1")
        assert sent[1] == "[2024-01-01T00:00:00+00:00 - bob]: late msg\nq2"
        assert history.size(1) == 0


class TestToolLoop:
    """Resolve calls until a plain answer arrives."""

    def test_single_round(self, make_provider, make_tool_response, manager):
        provider = make_provider([
            make_tool_response(("echo", {"text": "pong"})),
            "done",
        ])
        chat = make_chat(provider, manager)

        assert chat.converse(1, "ping") == "done"
        second = provider.calls[1]["messages"]
        assert second[-2]["role"] == "assistant"
        assert second[-1] == {"role": "tool", "tool_call_id": "call_0", "name": "echo", "content": "pong"}

    def test_unknown_tool_reported_back(self, make_provider, make_tool_response, manager):
        """Unknown tools produce an error result and the loop carries on."""
        provider = make_provider([
            make_tool_response(("fly", {})),
            "I can't fly.",
        ])
        chat = make_chat(provider, manager)

        assert chat.converse(1, "fly!") == "I can't fly."
        assert provider.calls[1]["messages"][-1]["content"] == "Error: Unknown tool: fly"

    def test_loop_cap_raises(self, make_provider, make_tool_response, manager):
        provider = make_provider([make_tool_response(("echo", {"text": "again"})) for _ in range(4)])
        chat = make_chat(provider, manager, max_tool_iterations=3)

        with pytest.raises(ToolLoopLimitError):
            chat.converse(1, "loop")
        assert len(provider.calls) == 4

    def test_answer_on_last_allowed_round(self, make_provider, make_tool_response, manager):
        provider = make_provider([make_tool_response(("echo", {"text": "x"})) for _ in range(3)] + ["finally"])
        chat = make_chat(provider, manager, max_tool_iterations=3)
        assert chat.converse(1, "go") == "finally"

    def test_scope_chat_id_visible_to_tools(self, make_provider, make_tool_response):
        seen = []
        mgr = FunctionManager(autoload=False)
        mgr.register_tool(
            {"type": "function", "function": {"name": "whoami", "parameters": {"type": "object", "properties": {}}}},
            lambda name, args, config: (seen.append(scope_chat_id.get()) or "ok", True),
        )
        provider = make_provider([make_tool_response(("whoami", {})), "fine"])
        make_chat(provider, mgr).converse(777, "who am i")

        assert seen == [777]
        assert scope_chat_id.get() is None

    def test_chat_data_tool_round_trip(self, make_provider, make_tool_response, storage):
        """The real chat_data tool writes into the current chat's store."""
        store = ChatDataStore(storage)
        set_chat_data_store(store)
        try:
            mgr = FunctionManager()
            provider = make_provider([
                make_tool_response(("chat_data", {"action": "add", "path": "hel.inventory", "value": "Sword", "quantity": 2})),
                "Added.",
            ])
            assert make_chat(provider, mgr).converse(9, "give hel two swords") == "Added."
            assert provider.calls[1]["messages"][-1]["content"] == "Added Sword to hel.inventory with quantity 2"
            assert store.get(9, "hel.inventory") == '[{"value": "Sword", "quantity": 2}]'
        finally:
            set_chat_data_store(None)


class TestFinalize:
    """Empty answers and session corruption."""

    def test_empty_answer_with_corrupt_session_resets(self, make_provider, manager):
        provider = make_provider(["hi", "", "fresh start"])
        chat = make_chat(provider, manager)
        chat.converse(1, "hello")
        broken = chat.session_manager.get(1)
        broken.messages.append({"role": "assistant", "content": ""})

        reply = chat.converse(1, "still there?")
        assert reply == SESSION_RESET_MESSAGE
        assert chat.session_manager.get(1) is not broken

        chat.converse(1, "hello again")
        messages = provider.calls[2]["messages"]
        assert len(messages) == 2
        assert messages[-1]["content"] == "hello again"

    def test_empty_answer_with_healthy_session_falls_back(self, make_provider, manager):
        provider = make_provider([LLMResponse(content="   ")])
        chat = make_chat(provider, manager)

        assert chat.converse(1, "hello") == EMPTY_RESPONSE_MESSAGE
        session = chat.session_manager.get(1)
        assert session is not None
        assert session.find_empty_turn() is None

    def test_content_less_answer_keeps_healthy_session(self, make_provider, manager):
        provider = make_provider(["hi there", LLMResponse(content=None, finish_reason="empty"), "back again"])
        chat = make_chat(provider, manager)
        assert chat.converse(1, "hello") == "hi there"
        session = chat.session_manager.get(1)

        assert chat.converse(1, "and now?") == EMPTY_RESPONSE_MESSAGE
        assert chat.session_manager.get(1) is session
        assert session.find_empty_turn() is None

        assert chat.converse(1, "try again") == "back again"
        assert provider.calls[2]["messages"][1]["content"] == "hello"

    def test_reset_discards_session(self, make_provider, manager):
        chat = make_chat(make_provider(["hi"]), manager)
        chat.converse(1, "hello")
        assert chat.reset(1) is True
        assert 1 not in chat.session_manager


class TestTurnSerialisation:
    """One turn at a time per chat."""

    def test_same_chat_turns_do_not_overlap(self, manager):
        active = []
        overlaps = []

        class SlowProvider:
            provider_name = "slow"
            model = "slow"

            def chat_completion(self, messages, tools=None, generation_params=None):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.05)
                active.pop()
                return LLMResponse(content="ok")

        chat = make_chat(SlowProvider(), manager)
        threads = [threading.Thread(target=chat.converse, args=(1, f"m{i}")) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert chat.session_manager.get(1).get_turn_count() == 4


class TestFriendlyLlmError:
    """Mapping provider failures to user text."""

    def test_unrecognized(self):
        assert friendly_llm_error(ValueError("boom")) is None

    def test_loop_limit(self):
        assert "tools" in friendly_llm_error(ToolLoopLimitError(25))

    def test_status_codes(self):
        class FakeStatusError(Exception):
            def __init__(self, status):
                super().__init__("error")
                self.status_code = status

        assert "API key" in friendly_llm_error(FakeStatusError(401))
        assert "Rate limited" in friendly_llm_error(FakeStatusError(429))
        assert "Server error (503)" in friendly_llm_error(FakeStatusError(503))

    def test_connection_error(self):
        assert "local LLM" in friendly_llm_error(ConnectionError("refused 127.0.0.1:1234"))
