# system.py - Wires storage, tools, sessions and dispatch together
import logging
import time
from pathlib import Path

import config
from kiew.errors import ConfigurationError
from kiew.storage import Storage
from kiew.chat import LLMChat, ChatDataStore, HistoryBuffer, FunctionManager
from kiew.chat.chat_data import set_chat_data_store
from kiew.chat.llm_providers import get_provider
from kiew.dispatcher import MessageDispatcher, InboundMessage

logger = logging.getLogger(__name__)


class KiewSystem:
    """Everything one running bot needs. Pass provider/data_dir to skip config lookups."""

    def __init__(self, provider=None, data_dir=None, function_dirs=None):
        start_time = time.time()

        self.bot_name = config.BOT_NAME
        self.storage = Storage(Path(data_dir) if data_dir else config.resolve_data_path(""))

        self.history = HistoryBuffer(
            storage=self.storage,
            file_name=config.CHAT_HISTORY_FILE,
            max_size=config.MAX_HISTORY_SIZE,
        )
        self.chat_data = ChatDataStore(self.storage, file_template=config.CHAT_DATA_FILE)
        set_chat_data_store(self.chat_data)

        self.function_manager = FunctionManager(function_dirs=function_dirs, storage=self.storage)

        if provider is None:
            provider = self._create_provider()
        self.provider = provider

        self.llm_chat = LLMChat(
            provider,
            self.function_manager,
            history_buffer=self.history,
            system_prompt=config.SYSTEM_PROMPT.format(bot_name=self.bot_name),
            generation_params=config.GENERATION_DEFAULTS,
            max_tool_iterations=config.MAX_TOOL_ITERATIONS,
            max_result_length=config.MAX_FUNCTION_RESULT_LENGTH,
        )
        self.dispatcher = MessageDispatcher(self.llm_chat, self.history, self.bot_name)

        logger.info(f"KiewSystem ready in {time.time() - start_time:.2f}s "
                    f"(tools: {self.function_manager.get_enabled_function_names()})")

    def _create_provider(self):
        llm_config = config.get_llm_config()
        if not llm_config.get('api_key'):
            env_name = llm_config.get('api_key_env') or 'api_key'
            raise ConfigurationError(f"No API key for the LLM provider (set {env_name})")
        provider = get_provider(llm_config, request_timeout=config.LLM_REQUEST_TIMEOUT)
        if provider is None:
            raise ConfigurationError("No usable LLM provider configured (check LLM_PRIMARY)")
        return provider

    def load(self):
        """Restore the buffered chat history. Raises StorageError on a corrupt file."""
        self.history.load()

    def process_message(self, chat_id, user_id, user_name, text, is_private=False, reply_to_bot=False):
        message = InboundMessage(
            chat_id=chat_id,
            user_id=user_id,
            user_name=user_name,
            text=text,
            is_private=is_private,
            reply_to_bot=reply_to_bot,
        )
        return self.dispatcher.handle_message(message)

    def reset_chat(self, chat_id):
        return self.llm_chat.reset(chat_id)

    def stop(self):
        """Wait for pending writes, then stop the writer."""
        logger.info("Stopping kiew...")
        if not self.storage.flush(timeout=10):
            logger.error("Timed out waiting for pending storage writes")
        self.storage.close()
        set_chat_data_store(None)
