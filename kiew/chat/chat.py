# chat.py
import logging
from typing import Any, Dict, Optional

from kiew.errors import SessionCorruptionError, ToolLoopLimitError
from .chat_tool_calling import ToolCallingEngine, DEFAULT_MAX_RESULT_LENGTH
from .function_manager import scope_chat_id
from .session import ConversationSession, SessionManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ITERATIONS = 25

SESSION_RESET_MESSAGE = (
    "Sorry, my conversation with the language model got into a broken state "
    "(it returned an empty turn), so I had to start a fresh session for this chat. "
    "Earlier context from this conversation is gone, but stored character data is safe. "
    "Please send your last message again."
)
EMPTY_RESPONSE_MESSAGE = "Sorry, I could not generate a response. Please try again."


def friendly_llm_error(e):
    """Convert LLM provider exceptions to user-friendly messages. Returns None if unrecognized."""
    error_str = str(e).lower()
    type_name = type(e).__name__

    if isinstance(e, ToolLoopLimitError):
        return "I got stuck calling tools over and over and gave up. Please try rephrasing the request."

    if isinstance(e, ConnectionError) or 'ConnectError' in type_name or 'APIConnectionError' in type_name:
        if any(h in error_str for h in ('127.0.0.1', 'localhost', '0.0.0.0')):
            return "Can't reach the local LLM server. Make sure it is running with a model loaded."
        return "Lost connection to the LLM server. Check that the service is running."

    if 'timeout' in type_name.lower():
        return "The language model took too long to answer. Please try again."

    status = getattr(e, 'status_code', None)
    if not status:
        return None

    if status == 400:
        if 'model' in error_str and any(k in error_str for k in ('not found', 'not loaded', 'does not exist')):
            return "Model not found or not loaded. Check the model name in settings."
        return f"LLM request rejected (400). {str(e)[:200]}"

    if status == 401:
        return "API key is invalid or missing. Check the LLM API key."

    if status == 403:
        return "Access denied. The API key may not have permission for this model."

    if status == 404:
        if 'model' in error_str:
            return "Model not found. Check that the model name is correct in settings."
        return "LLM endpoint not found (404). Check the API URL in settings."

    if status in (402, 429) and any(k in error_str for k in ('billing', 'quota', 'credit', 'insufficient', 'budget', 'exceeded')):
        return "Account billing limit reached. Check the provider's billing page."

    if status == 429:
        return "Rate limited, too many requests. Wait 30-60 seconds before trying again."

    if status >= 500:
        return f"Server error ({status}) from the LLM provider. The service may be having issues."

    return None


class LLMChat:
    """
    Runs one conversational turn per call: sends the user's text, resolves
    rounds of tool calls until the model answers in plain text, and recovers
    from sessions the backend has corrupted.
    """

    def __init__(self, provider, function_manager, history_buffer=None, system_prompt: Optional[str] = None,
                 generation_params: Optional[Dict[str, Any]] = None,
                 max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
                 max_result_length: int = DEFAULT_MAX_RESULT_LENGTH):
        logger.info("LLMChat.__init__ starting...")
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        self.provider = provider
        self.function_manager = function_manager
        self.history_buffer = history_buffer
        self.system_prompt = system_prompt
        self.generation_params = dict(generation_params or {})
        self.max_tool_iterations = max_tool_iterations

        self.tool_engine = ToolCallingEngine(function_manager, max_result_length=max_result_length)
        self.session_manager = SessionManager(self._new_session)
        logger.info("LLMChat.__init__ completed")

    def _new_session(self, chat_id: int) -> ConversationSession:
        return ConversationSession(
            chat_id,
            self.provider,
            system_prompt=self.system_prompt,
            tools=self.function_manager.enabled_tools,
            generation_params=self.generation_params,
        )

    def reset(self, chat_id: int) -> bool:
        """Forget the backend session for a chat."""
        with self.session_manager.turn_lock(chat_id):
            return self.session_manager.discard(chat_id)

    def compose(self, chat_id: int, text: str) -> str:
        """Prepend buffered, unaddressed messages to text and empty the buffer."""
        if self.history_buffer is None:
            return text
        buffered = self.history_buffer.take(chat_id)
        if not buffered:
            return text
        logger.info(f"[CHAT] chat {chat_id}: prepending {len(buffered.splitlines())} buffered messages")
        return f"{buffered}\n{text}"

    def converse(self, chat_id: int, text: str) -> str:
        """
        Run one turn for chat_id and return the reply text.

        Tool failures are reported to the model, not raised. Provider errors and
        ToolLoopLimitError propagate to the caller.
        """
        with self.session_manager.turn_lock(chat_id):
            token = scope_chat_id.set(chat_id)
            try:
                return self._run_turn(chat_id, text)
            finally:
                scope_chat_id.reset(token)

    def _run_turn(self, chat_id: int, text: str) -> str:
        composed = self.compose(chat_id, text)
        session = self.session_manager.get_or_create(chat_id)

        logger.info(f"[CHAT] chat {chat_id}: sending {len(composed)} chars")
        response = session.send(composed)

        tool_call_count = 0
        for i in range(self.max_tool_iterations):
            if not response.has_tool_calls:
                logger.info(f"[CHAT] chat {chat_id}: final response after {tool_call_count} tool calls")
                return self._finalize(chat_id, session, response)

            called_tools = [tc.name for tc in response.tool_calls]
            logger.info(f"--- chat {chat_id} iteration {i + 1}/{self.max_tool_iterations}: {called_tools} ---")

            batch = self.tool_engine.resolve_calls(response.tool_calls, self.provider)
            tool_call_count += len(response.tool_calls)
            response = session.send_batch(batch)

        if not response.has_tool_calls:
            return self._finalize(chat_id, session, response)

        logger.warning(f"[CHAT] chat {chat_id}: exceeded {self.max_tool_iterations} tool iterations")
        raise ToolLoopLimitError(self.max_tool_iterations)

    def _finalize(self, chat_id: int, session: ConversationSession, response) -> str:
        if response.text.strip():
            return response.text

        empty_turn = session.find_empty_turn()
        if empty_turn is None:
            logger.warning(f"[CHAT] chat {chat_id}: empty response but session history looks intact")
            return EMPTY_RESPONSE_MESSAGE

        error = SessionCorruptionError(chat_id, empty_turn)
        logger.warning(f"[SESSION] {error}; replacing session")
        self.session_manager.replace(chat_id)
        return SESSION_RESET_MESSAGE
