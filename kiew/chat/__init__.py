from .chat import LLMChat, friendly_llm_error
from .chat_data import ChatDataStore, ChatDataRequest
from .history import HistoryBuffer, HistoryEntry
from .function_manager import FunctionManager, scope_chat_id
from .session import ConversationSession, SessionManager

__all__ = [
    'LLMChat',
    'friendly_llm_error',
    'ChatDataStore',
    'ChatDataRequest',
    'HistoryBuffer',
    'HistoryEntry',
    'FunctionManager',
    'scope_chat_id',
    'ConversationSession',
    'SessionManager',
]
