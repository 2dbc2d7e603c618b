# history.py - Buffer of chat messages that were not addressed to the bot
"""
Group chats keep talking between requests to the bot. Those messages are
buffered per chat (bounded, oldest evicted first) and prepended to the next
message that is addressed to the bot, so the model sees what it missed.

The whole buffer map is persisted as one JSON object keyed by chat id:
    {"<chat_id>": [{"userID", "userName", "text", "timestamp"}, ...]}
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, Dict, List

from kiew.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_SIZE = 600


@dataclass
class HistoryEntry:
    user_id: int
    user_name: str
    text: str
    timestamp: datetime

    def __str__(self):
        return f"[{self.timestamp.isoformat()} - {self.user_name}]: {self.text}"

    def to_dict(self):
        return {
            "userID": self.user_id,
            "userName": self.user_name,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        timestamp = data.get("timestamp")
        if isinstance(timestamp, (int, float)):
            ts = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        elif timestamp:
            ts = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
        else:
            ts = datetime.now(timezone.utc)
        return cls(
            user_id=int(data.get("userID", 0)),
            user_name=str(data.get("userName", "")),
            text=str(data.get("text", "")),
            timestamp=ts,
        )


class HistoryBuffer:
    def __init__(self, storage=None, file_name: str = "chat_history.json",
                 max_size: int = DEFAULT_MAX_HISTORY_SIZE):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.storage = storage
        self.file_name = file_name
        self.max_size = max_size
        self._buffers: Dict[int, Deque[HistoryEntry]] = {}
        self._lock = threading.RLock()

    def _buffer(self, chat_id: int) -> Deque[HistoryEntry]:
        buf = self._buffers.get(chat_id)
        if buf is None:
            buf = deque(maxlen=self.max_size)
            self._buffers[chat_id] = buf
        return buf

    def load(self):
        """Replace in-memory buffers with the persisted copy. Raises StorageError on bad files."""
        if self.storage is None:
            return
        raw = self.storage.load(self.file_name, default={})
        if not isinstance(raw, dict):
            raise StorageError(f"{self.file_name} must hold a JSON object keyed by chat id")

        buffers = {}
        try:
            for chat_id, entries in raw.items():
                buf = deque(maxlen=self.max_size)
                buf.extend(HistoryEntry.from_dict(e) for e in entries or [])
                buffers[int(chat_id)] = buf
        except (TypeError, ValueError, AttributeError) as e:
            raise StorageError(f"Malformed chat history in {self.file_name}: {e}") from e

        with self._lock:
            self._buffers = buffers
        logger.info(f"[HISTORY] Loaded buffered history for {len(buffers)} chats")

    def append(self, chat_id: int, entry: HistoryEntry):
        with self._lock:
            buf = self._buffer(chat_id)
            if len(buf) == self.max_size:
                logger.debug(f"[HISTORY] chat {chat_id}: buffer full, evicting oldest entry")
            buf.append(entry)
            self._persist()

    def flush(self, chat_id: int) -> str:
        """Render buffered entries oldest-first, one per line. Does not clear."""
        with self._lock:
            return "\n".join(str(entry) for entry in self._buffers.get(chat_id, ()))

    def take(self, chat_id: int) -> str:
        """Render and empty the buffer in one step, so nothing appended in between is lost."""
        with self._lock:
            rendered = self.flush(chat_id)
            self.clear(chat_id)
            return rendered

    def clear(self, chat_id: int):
        with self._lock:
            if not self._buffers.get(chat_id):
                return
            self._buffers[chat_id] = deque(maxlen=self.max_size)
            self._persist()

    def entries(self, chat_id: int) -> List[HistoryEntry]:
        with self._lock:
            return list(self._buffers.get(chat_id, ()))

    def __len__(self):
        with self._lock:
            return sum(len(b) for b in self._buffers.values())

    def size(self, chat_id: int) -> int:
        with self._lock:
            return len(self._buffers.get(chat_id, ()))

    def snapshot(self) -> Dict[str, List[dict]]:
        """Deep copy of every buffer in the persisted shape."""
        with self._lock:
            return {str(chat_id): [e.to_dict() for e in buf] for chat_id, buf in self._buffers.items()}

    def _persist(self):
        if self.storage is None:
            return
        # Snapshot under the lock; the writer thread only ever sees the copy
        self.storage.save_async(self.file_name, self.snapshot())
