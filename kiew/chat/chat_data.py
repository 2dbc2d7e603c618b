# chat_data.py - Per-conversation structured data (character stats, inventories)
"""
Path-keyed store scoped to one chat.

Paths look like "subject.property" (e.g. "Hel.hp", "Hel.inventory"); a bare
"subject" is accepted only for delete, which cascades to every property of
that subject. Values are either a Scalar string or an InventoryList of named,
counted items. On disk each chat is one JSON object: a JSON string for a
scalar, a JSON array of {"value", "quantity"} objects for an inventory.

Chats are loaded lazily on first touch and written back in the background
after every mutation.
"""
import re
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from kiew.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

ACTION_GET = "get"
ACTION_SET = "set"
ACTION_ADD = "add"
ACTION_REMOVE = "remove"
ACTION_DELETE = "delete"
ACTION_SHOW = "show"
VALID_ACTIONS = [ACTION_GET, ACTION_SET, ACTION_ADD, ACTION_REMOVE, ACTION_DELETE, ACTION_SHOW]

DEFAULT_FILE_TEMPLATE = "chat_data/chat-data-{chat_id}.json"

_IDENT = r"[A-Za-z0-9_\-]+"
PROPERTY_PATH = re.compile(rf"^{_IDENT}\.{_IDENT}$")
SUBJECT_PATH = re.compile(rf"^{_IDENT}$")


@dataclass
class InventoryItem:
    value: str
    quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Any) -> "InventoryItem":
        if not isinstance(data, dict):
            raise ValueError(f"inventory item must be an object, got {type(data).__name__}")
        value = data.get("value")
        quantity = data.get("quantity")
        if not isinstance(value, str) or not value:
            raise ValueError("inventory item needs a non-empty string 'value'")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValueError(f"inventory item {value!r} has invalid quantity {quantity!r}")
        return cls(value=value, quantity=quantity)


@dataclass
class Scalar:
    value: str

    def encode(self) -> str:
        return self.value

    def render(self) -> str:
        # Older builds stored inventories as JSON text inside a string value
        if self.value.lstrip().startswith("["):
            try:
                legacy = InventoryList.decode(json.loads(self.value))
            except ValueError:
                return self.value
            if legacy.items:
                return legacy.render()
        return self.value


@dataclass
class InventoryList:
    items: List[InventoryItem] = field(default_factory=list)

    def find(self, name: str) -> Optional[InventoryItem]:
        for item in self.items:
            if item.value == name:
                return item
        return None

    def add(self, name: str, quantity: int) -> tuple:
        """Add quantity of name. Returns (item, existed_before)."""
        item = self.find(name)
        if item is not None:
            item.quantity += quantity
            return item, True
        item = InventoryItem(value=name, quantity=quantity)
        self.items.append(item)
        return item, False

    def remove(self, name: str, quantity: int) -> Optional[InventoryItem]:
        """
        Take quantity of name out of the list.

        Returns the item (with its new quantity) or None if it was not there.
        Items that drop to zero are removed from the list.
        """
        item = self.find(name)
        if item is None:
            return None
        if item.quantity > quantity:
            item.quantity -= quantity
        else:
            item.quantity = 0
            self.items.remove(item)
        return item

    def encode(self) -> List[Dict[str, Any]]:
        return [item.to_dict() for item in self.items]

    def render(self) -> str:
        return ", ".join(f"{item.value} (x{item.quantity})" for item in self.items)

    @classmethod
    def decode(cls, raw: Any) -> "InventoryList":
        if not isinstance(raw, list):
            raise ValueError(f"inventory must be a list, got {type(raw).__name__}")
        items = [InventoryItem.from_dict(entry) for entry in raw]
        names = [item.value for item in items]
        if len(names) != len(set(names)):
            raise ValueError("inventory holds duplicate item names")
        return cls(items=[item for item in items if item.quantity > 0])


StoreValue = Union[Scalar, InventoryList]


def decode_value(path: str, raw: Any) -> StoreValue:
    """Turn a persisted JSON value back into a StoreValue."""
    if isinstance(raw, str):
        return Scalar(raw)
    if isinstance(raw, list):
        try:
            return InventoryList.decode(raw)
        except ValueError as e:
            raise StorageError(f"Malformed inventory stored at {path}: {e}") from e
    raise StorageError(f"Unsupported value stored at {path}: {type(raw).__name__}")


def encode_value(value: StoreValue) -> Any:
    return value.encode()


@dataclass
class ChatDataRequest:
    """One validated chat_data call."""
    action: str
    path: Optional[str] = None
    value: Optional[str] = None
    quantity: int = 1

    @classmethod
    def from_arguments(cls, args: Dict[str, Any]) -> "ChatDataRequest":
        action = args.get("action")
        if not isinstance(action, str) or action not in VALID_ACTIONS:
            raise ValidationError(f"invalid action: {action!r}, must be one of {VALID_ACTIONS}")

        path = args.get("path")
        if action != ACTION_SHOW:
            if not isinstance(path, str) or not path:
                raise ValidationError(f"path is required for action {action!r}")
            pattern = SUBJECT_PATH if action == ACTION_DELETE and "." not in path else PROPERTY_PATH
            if not pattern.match(path):
                raise ValidationError(
                    f"invalid path {path!r}: use subject.property with letters, digits, '_' or '-'"
                    + (" (or a bare subject to delete it)" if action == ACTION_DELETE else "")
                )
        else:
            path = None

        value = args.get("value")
        if action in (ACTION_SET, ACTION_ADD, ACTION_REMOVE):
            if not isinstance(value, str):
                raise ValidationError(f"value is required and must be a string when action is {action!r}")
            if action != ACTION_SET and not value.strip():
                raise ValidationError("item name must not be empty")
        else:
            value = None

        quantity = args.get("quantity", 1)
        if quantity is None:
            quantity = 1
        if isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f"quantity must be an integer, got {quantity!r}")
        if action in (ACTION_ADD, ACTION_REMOVE) and quantity < 1:
            raise ValidationError(f"quantity must be at least 1, got {quantity}")

        return cls(action=action, path=path, value=value, quantity=quantity)


class ChatData:
    """Loaded state for one chat."""

    def __init__(self, chat_id: int, values: Dict[str, StoreValue]):
        self.chat_id = chat_id
        self.values = values
        self.lock = threading.RLock()

    def snapshot(self) -> Dict[str, Any]:
        return {path: encode_value(value) for path, value in self.values.items()}


class ChatDataStore:
    def __init__(self, storage, file_template: str = DEFAULT_FILE_TEMPLATE):
        self.storage = storage
        self.file_template = file_template
        self._chats: Dict[int, ChatData] = {}
        self._load_locks: Dict[int, threading.Lock] = {}
        self._lock = threading.Lock()

    def file_name(self, chat_id: int) -> str:
        return self.file_template.format(chat_id=chat_id)

    # -------------------------------------------------------------------------
    # Loading / persisting
    # -------------------------------------------------------------------------

    def _chat(self, chat_id: int) -> ChatData:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is not None:
                return chat
            load_lock = self._load_locks.setdefault(chat_id, threading.Lock())

        with load_lock:
            with self._lock:
                chat = self._chats.get(chat_id)
            if chat is not None:
                return chat
            chat = ChatData(chat_id, self._load(chat_id))
            with self._lock:
                chat = self._chats.setdefault(chat_id, chat)
                self._load_locks.pop(chat_id, None)
            return chat

    def _load(self, chat_id: int) -> Dict[str, StoreValue]:
        name = self.file_name(chat_id)
        raw = self.storage.load(name, default={})
        if not isinstance(raw, dict):
            raise StorageError(f"Chat data file {name} must hold a JSON object")
        values = {path: decode_value(path, value) for path, value in raw.items()}
        logger.info(f"[STORAGE] Loaded {len(values)} chat data entries for chat {chat_id}")
        return values

    def _persist(self, chat: ChatData):
        self.storage.save_async(self.file_name(chat.chat_id), chat.snapshot())

    def evict(self, chat_id: int) -> bool:
        """Drop the cached copy; the next access reloads from storage."""
        chat = self._chat_if_loaded(chat_id)
        if chat is None:
            return False
        with chat.lock:
            # Queued writes must land first or the reload would read a stale file
            self.storage.flush()
            with self._lock:
                return self._chats.pop(chat_id, None) is not None

    def _chat_if_loaded(self, chat_id: int) -> Optional[ChatData]:
        with self._lock:
            return self._chats.get(chat_id)

    def snapshot(self, chat_id: int) -> Dict[str, Any]:
        chat = self._chat(chat_id)
        with chat.lock:
            return chat.snapshot()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def _inventory_at(self, chat: ChatData, path: str) -> Optional[InventoryList]:
        current = chat.values.get(path)
        if current is None or isinstance(current, InventoryList):
            return current
        # Older builds stored inventories as JSON text inside a string value
        try:
            return InventoryList.decode(json.loads(current.value))
        except (json.JSONDecodeError, ValueError) as e:
            raise StorageError(f"failed to parse existing value for {path} as an inventory: {e}") from e

    def get(self, chat_id: int, path: str) -> str:
        chat = self._chat(chat_id)
        with chat.lock:
            value = chat.values.get(path)
            if value is None:
                return ""
            if isinstance(value, InventoryList):
                return json.dumps(value.encode())
            return value.value

    def set(self, chat_id: int, path: str, value: str) -> str:
        chat = self._chat(chat_id)
        with chat.lock:
            chat.values[path] = Scalar(value)
            self._persist(chat)
        return f"Set {path} to {value}"

    def add(self, chat_id: int, path: str, value: str, quantity: int = 1) -> str:
        chat = self._chat(chat_id)
        with chat.lock:
            inventory = self._inventory_at(chat, path) or InventoryList()
            item, existed = inventory.add(value, quantity)
            chat.values[path] = inventory
            self._persist(chat)
        if existed:
            return f"Incremented quantity of {value} to {item.quantity} in {path}"
        return f"Added {value} to {path} with quantity {quantity}"

    def remove(self, chat_id: int, path: str, value: str, quantity: int = 1) -> str:
        chat = self._chat(chat_id)
        with chat.lock:
            inventory = self._inventory_at(chat, path)
            if inventory is None:
                return f"{path} is empty"
            item = inventory.remove(value, quantity)
            if item is None:
                return f"{value} not found in {path}"
            if inventory.items:
                chat.values[path] = inventory
            else:
                del chat.values[path]
            self._persist(chat)
        if item.quantity > 0:
            return f"Decremented {quantity} of {value} in {path}. New total is {item.quantity}"
        return f"Removed {value} from {path}"

    def delete(self, chat_id: int, path: str) -> bool:
        """Delete path and, for a subject, every subject.* property. Returns whether anything went."""
        chat = self._chat(chat_id)
        prefix = path + "."
        with chat.lock:
            doomed = [key for key in chat.values if key == path or key.startswith(prefix)]
            for key in doomed:
                del chat.values[key]
            if doomed:
                self._persist(chat)
        return bool(doomed)

    def show(self, chat_id: int) -> str:
        chat = self._chat(chat_id)
        with chat.lock:
            if not chat.values:
                return "No chat data available"
            lines = ["Current chat data:"]
            for path in sorted(chat.values):
                lines.append(f"- {path}: {chat.values[path].render()}")
        return "\n".join(lines) + "\n"

    def run(self, chat_id: int, request: ChatDataRequest) -> str:
        """Dispatch a validated request."""
        logger.info(f"[CHAT_DATA] chat {chat_id}: {request.action} path={request.path} value={request.value} quantity={request.quantity}")
        if request.action == ACTION_GET:
            result = self.get(chat_id, request.path)
            return result if result else f"{request.path} has no value"
        if request.action == ACTION_SET:
            return self.set(chat_id, request.path, request.value)
        if request.action == ACTION_ADD:
            return self.add(chat_id, request.path, request.value, request.quantity)
        if request.action == ACTION_REMOVE:
            return self.remove(chat_id, request.path, request.value, request.quantity)
        if request.action == ACTION_DELETE:
            if self.delete(chat_id, request.path):
                return f"Deleted {request.path} and all its properties"
            return f"{request.path} does not exist"
        return self.show(chat_id)


# Store used by the chat_data tool module; installed by KiewSystem at start-up
_active_store: Optional[ChatDataStore] = None


def set_chat_data_store(store: Optional[ChatDataStore]):
    global _active_store
    _active_store = store


def get_chat_data_store() -> ChatDataStore:
    if _active_store is None:
        raise StorageError("chat data store is not initialised")
    return _active_store
