"""
Message dispatch tests: who gets answered, who gets buffered, error replies.

Run with: pytest tests/test_dispatcher.py -v
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from kiew.errors import ToolLoopLimitError
from kiew.chat.history import HistoryBuffer
from kiew.dispatcher import MessageDispatcher, InboundMessage, GENERIC_ERROR_MESSAGE


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.converse.return_value = "reply"
    return orch


@pytest.fixture
def dispatcher(orchestrator):
    return MessageDispatcher(orchestrator, HistoryBuffer(), "Kiew")


def message(text, **kwargs):
    kwargs.setdefault("timestamp", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return InboundMessage(chat_id=-5, user_id=1, user_name="alice", text=text, **kwargs)


class TestIsAddressed:
    """Addressing rules."""

    def test_private_chat(self, dispatcher):
        assert dispatcher.is_addressed(message("hi", is_private=True))

    def test_name_mention_any_case(self, dispatcher):
        assert dispatcher.is_addressed(message("hey KIEW, roll for me"))

    def test_reply_to_bot(self, dispatcher):
        assert dispatcher.is_addressed(message("yes", reply_to_bot=True))

    def test_plain_group_message(self, dispatcher):
        assert not dispatcher.is_addressed(message("the orc swings"))


class TestHandleMessage:
    """Buffer or answer."""

    def test_unaddressed_is_buffered(self, dispatcher, orchestrator):
        assert dispatcher.handle_message(message("the orc swings")) is None
        orchestrator.converse.assert_not_called()
        assert dispatcher.history_buffer.size(-5) == 1

    def test_addressed_runs_turn_with_history_line(self, dispatcher, orchestrator):
        assert dispatcher.handle_message(message("kiew, status?")) == "reply"
        orchestrator.converse.assert_called_once_with(-5, "[2024-01-01T00:00:00+00:00 - alice]: kiew, status?")

    def test_unexpected_error_gets_generic_apology(self, dispatcher, orchestrator):
        orchestrator.converse.side_effect = RuntimeError("boom")
        assert dispatcher.handle_message(message("kiew?")) == GENERIC_ERROR_MESSAGE

    def test_loop_limit_gets_specific_apology(self, dispatcher, orchestrator):
        orchestrator.converse.side_effect = ToolLoopLimitError(25)
        reply = dispatcher.handle_message(message("kiew?"))
        assert reply and reply != GENERIC_ERROR_MESSAGE

    def test_empty_reply_replaced(self, dispatcher, orchestrator):
        orchestrator.converse.return_value = ""
        assert dispatcher.handle_message(message("kiew?")) == GENERIC_ERROR_MESSAGE
