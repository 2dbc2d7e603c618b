# dispatcher.py - Decides which chat messages reach the model
"""
Every inbound chat message goes through MessageDispatcher. Messages that are
not meant for the bot are buffered; the ones that are run a full turn and
always produce reply text, even when the backend fails.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from kiew.chat.chat import friendly_llm_error
from kiew.chat.history import HistoryEntry

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Sorry, something went wrong."


@dataclass
class InboundMessage:
    chat_id: int
    user_id: int
    user_name: str
    text: str
    is_private: bool = False
    reply_to_bot: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry(
            user_id=self.user_id,
            user_name=self.user_name,
            text=self.text,
            timestamp=self.timestamp,
        )


class MessageDispatcher:
    def __init__(self, orchestrator, history_buffer, bot_name: str):
        self.orchestrator = orchestrator
        self.history_buffer = history_buffer
        self.bot_name = bot_name

    def is_addressed(self, message: InboundMessage) -> bool:
        """Private chat, bot name in the text (any case), or a reply to the bot."""
        if message.is_private or message.reply_to_bot:
            return True
        return bool(self.bot_name) and self.bot_name.lower() in (message.text or "").lower()

    def handle_message(self, message: InboundMessage) -> Optional[str]:
        """
        Buffer the message or answer it.

        Returns None for buffered messages, reply text otherwise.
        """
        if not self.is_addressed(message):
            self.history_buffer.append(message.chat_id, message.to_history_entry())
            logger.debug(f"[DISPATCH] chat {message.chat_id}: buffered message from {message.user_name}")
            return None

        line = str(message.to_history_entry())
        try:
            reply = self.orchestrator.converse(message.chat_id, line)
        except Exception as e:
            friendly = friendly_llm_error(e)
            if friendly:
                logger.error(f"[DISPATCH] chat {message.chat_id}: {type(e).__name__}: {e}")
                return friendly
            logger.error(f"[DISPATCH] chat {message.chat_id}: turn failed: {e}", exc_info=True)
            return GENERIC_ERROR_MESSAGE

        return reply or GENERIC_ERROR_MESSAGE
