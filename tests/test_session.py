"""
Conversation session tests.

Run with: pytest tests/test_session.py -v
"""
from kiew.chat.session import ConversationSession, SessionManager
from kiew.chat.llm_providers.base import LLMResponse


class TestConversationSession:
    """Recording turns and spotting empty ones."""

    def test_records_turns(self, make_provider):
        session = ConversationSession(1, make_provider(["hi"]), system_prompt="sys")
        session.send("hello")
        assert [m["role"] for m in session.messages] == ["system", "user", "assistant"]
        assert session.messages[-1]["content"] == "hi"
        assert session.get_turn_count() == 1

    def test_tool_calls_recorded(self, make_provider, make_tool_response):
        session = ConversationSession(1, make_provider([make_tool_response(("echo", {"text": "x"}))]))
        session.send("go")
        turn = session.messages[-1]
        assert turn["content"] == ""
        assert turn["tool_calls"][0]["function"]["name"] == "echo"
        assert session.find_empty_turn() is None

    def test_send_batch_appends_parts(self, make_provider):
        provider = make_provider(["a", "b"])
        session = ConversationSession(1, provider)
        session.send("x")
        session.send_batch([{"role": "tool", "tool_call_id": "c", "name": "echo", "content": "r"}])
        assert provider.calls[1]["messages"][-1]["role"] == "tool"

    def test_passes_tools_and_params(self, make_provider):
        provider = make_provider(["a"])
        tools = [{"type": "function", "function": {"name": "echo"}}]
        ConversationSession(1, provider, tools=tools, generation_params={"temperature": 0.1}).send("x")
        assert provider.calls[0]["tools"] == tools
        assert provider.calls[0]["generation_params"] == {"temperature": 0.1}

    def test_empty_reply_not_recorded(self, make_provider):
        session = ConversationSession(1, make_provider([LLMResponse(content=None, finish_reason="empty")]), system_prompt="sys")
        response = session.send("hello")
        assert response.content is None
        assert [m["role"] for m in session.messages] == ["system", "user"]
        assert session.find_empty_turn() is None

    def test_find_empty_turn(self, make_provider):
        session = ConversationSession(1, make_provider(["hi"]), system_prompt="sys")
        session.send("hello")
        session.messages.append({"role": "user", "content": ""})
        assert session.find_empty_turn() == 3

    def test_empty_system_prompt_ignored(self, make_provider):
        session = ConversationSession(1, make_provider([]))
        assert len(session) == 0


class TestSessionManager:
    """One session per chat."""

    def test_get_or_create_reuses(self):
        mgr = SessionManager(lambda chat_id: object())
        assert mgr.get_or_create(1) is mgr.get_or_create(1)
        assert mgr.get_or_create(1) is not mgr.get_or_create(2)
        assert len(mgr) == 2

    def test_replace(self):
        mgr = SessionManager(lambda chat_id: object())
        first = mgr.get_or_create(1)
        second = mgr.replace(1)
        assert second is not first
        assert mgr.get(1) is second

    def test_discard(self):
        mgr = SessionManager(lambda chat_id: object())
        mgr.get_or_create(1)
        assert mgr.discard(1) is True
        assert mgr.discard(1) is False
        assert 1 not in mgr
