# session.py - Backend-side dialogue state per conversation
"""
ConversationSession holds the message list the model sees for one chat and
records every model turn that carries text or tool calls. A reply with neither
is handed back to the caller but kept out of the history. If an empty turn
nevertheless sits in the history the session is poisoned and has to be thrown
away (see find_empty_turn).

SessionManager owns one session per chat id plus a lock per chat, so turns for
the same conversation run one at a time while different chats proceed in
parallel.
"""
import time
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .llm_providers.base import BaseProvider, LLMResponse

logger = logging.getLogger(__name__)


class ConversationSession:
    def __init__(self, chat_id: int, provider: BaseProvider, system_prompt: Optional[str] = None,
                 tools: Optional[List[Dict[str, Any]]] = None, generation_params: Optional[Dict[str, Any]] = None):
        self.chat_id = chat_id
        self.provider = provider
        self.tools = tools or []
        self.generation_params = dict(generation_params or {})
        self.created_at = datetime.now()
        self.messages: List[Dict[str, Any]] = []
        if system_prompt:
            self.messages.append({"role": "system", "content": system_prompt})

    def send(self, text: str) -> LLMResponse:
        """Append a user turn and get the model's reply."""
        self.messages.append({"role": "user", "content": text})
        return self._complete()

    def send_batch(self, parts: List[Dict[str, Any]]) -> LLMResponse:
        """Append tool results / notes from one resolution round and get the model's reply."""
        self.messages.extend(parts)
        return self._complete()

    def _complete(self) -> LLMResponse:
        logger.info(f"[SESSION] chat {self.chat_id}: LLM call [{self.provider.provider_name}] with {len(self.messages)} messages")
        start_time = time.time()

        response = self.provider.chat_completion(
            self.messages,
            tools=self.tools or None,
            generation_params=self.generation_params
        )

        elapsed = time.time() - start_time
        logger.info(f"[SESSION] chat {self.chat_id}: LLM ({self.provider.model}) {elapsed:.2f}s, "
                    f"{len(response.text)} chars, {len(response.tool_calls)} tool calls")

        if not response.content and not response.has_tool_calls:
            # Nothing to record; the history stays as it was before the call
            logger.warning(f"[SESSION] chat {self.chat_id}: empty reply (finish_reason={response.finish_reason}), not recorded")
            return response

        turn = {"role": "assistant", "content": response.content or ""}
        if response.has_tool_calls:
            turn["tool_calls"] = response.get_tool_calls_as_dicts()
        self.messages.append(turn)
        return response

    def find_empty_turn(self) -> Optional[int]:
        """Index of the first user/assistant turn with zero parts, or None."""
        for index, msg in enumerate(self.messages):
            if msg.get("role") not in ("user", "assistant"):
                continue
            if not msg.get("content") and not msg.get("tool_calls"):
                return index
        return None

    def get_turn_count(self) -> int:
        return sum(1 for m in self.messages if m.get("role") == "user")

    def __len__(self):
        return len(self.messages)


SessionFactory = Callable[[int], ConversationSession]


class SessionManager:
    def __init__(self, factory: SessionFactory):
        self._factory = factory
        self._sessions: Dict[int, ConversationSession] = {}
        self._turn_locks: Dict[int, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, chat_id: int) -> Optional[ConversationSession]:
        with self._lock:
            return self._sessions.get(chat_id)

    def get_or_create(self, chat_id: int) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(chat_id)
            if session is None:
                session = self._factory(chat_id)
                self._sessions[chat_id] = session
                logger.info(f"[SESSION] Created session for chat {chat_id}")
            return session

    def replace(self, chat_id: int) -> ConversationSession:
        """Drop whatever session the chat had and start a fresh one."""
        session = self._factory(chat_id)
        with self._lock:
            self._sessions[chat_id] = session
        logger.warning(f"[SESSION] Replaced session for chat {chat_id}")
        return session

    def discard(self, chat_id: int) -> bool:
        with self._lock:
            return self._sessions.pop(chat_id, None) is not None

    @contextmanager
    def turn_lock(self, chat_id: int):
        """Serialise turns for one chat."""
        with self._lock:
            lock = self._turn_locks.setdefault(chat_id, threading.Lock())
        with lock:
            yield

    def __contains__(self, chat_id):
        with self._lock:
            return chat_id in self._sessions

    def __len__(self):
        with self._lock:
            return len(self._sessions)
