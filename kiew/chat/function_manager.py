# kiew/chat/function_manager.py

import time
import logging
import threading
import importlib.util
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import jsonschema

import config
from kiew.errors import ValidationError, UnknownToolError, ToolExecutionError, StorageError

logger = logging.getLogger(__name__)

# Conversation the current turn belongs to. Set by the chat loop, read by tools.
scope_chat_id: ContextVar[Optional[int]] = ContextVar('scope_chat_id', default=None)

Executor = Callable[[str, Dict[str, Any], Any], tuple]

DEFAULT_FUNCTION_DIRS = [
    Path(__file__).parent.parent.parent / "functions",
]


class FunctionManager:
    """Tool registry: tool name -> (argument schema, executor)."""

    def __init__(self, function_dirs=None, storage=None, autoload=True):
        self.function_modules = {}
        self.execution_map: Dict[str, Executor] = {}
        self.all_possible_tools: List[Dict[str, Any]] = []
        self.storage = storage
        self.tool_history_file = getattr(config, 'TOOL_HISTORY_FILE', 'tools/tool_history.json')
        self.tool_history = []
        self._history_lock = threading.Lock()

        if autoload:
            dirs = DEFAULT_FUNCTION_DIRS if function_dirs is None else function_dirs
            self._load_function_modules([Path(d) for d in dirs])
        self._load_tool_history()

    @property
    def enabled_tools(self) -> List[Dict[str, Any]]:
        return list(self.all_possible_tools)

    def _load_function_modules(self, search_paths):
        """Dynamically load all function modules from the given directories."""
        if not getattr(config, 'FUNCTIONS_ENABLED', True):
            logger.info("Function loading disabled by config")
            return

        for search_dir in search_paths:
            if not search_dir.exists():
                continue

            for py_file in sorted(search_dir.glob("*.py")):
                if py_file.name.startswith("_"):
                    continue

                module_name = py_file.stem

                try:
                    spec = importlib.util.spec_from_file_location(
                        f"kiew.functions.{module_name}",
                        py_file
                    )
                    module = importlib.util.module_from_spec(spec)
                    spec.loader.exec_module(module)
                except Exception as e:
                    logger.error(f"Failed to load function module '{module_name}': {e}")
                    continue

                if not getattr(module, 'ENABLED', True):
                    logger.info(f"Function module '{module_name}' is disabled")
                    continue

                tools = getattr(module, 'TOOLS', [])
                executor = getattr(module, 'execute', None)

                if not tools or not executor:
                    logger.warning(f"Module '{module_name}' missing TOOLS or execute()")
                    continue

                self.function_modules[module_name] = {
                    'module': module,
                    'tools': tools,
                    'executor': executor,
                }
                for tool in tools:
                    self.register_tool(tool, executor)

                logger.info(f"Loaded function module '{module_name}' with {len(tools)} tools")

    def register_tool(self, tool: Dict[str, Any], executor: Executor):
        """Register (or replace) a tool definition in OpenAI function format."""
        name = tool.get('function', {}).get('name')
        if not name:
            raise ValueError("Tool definition has no function name")
        if not callable(executor):
            raise ValueError(f"Executor for tool {name} is not callable")

        self.all_possible_tools = [t for t in self.all_possible_tools if t['function']['name'] != name]
        self.all_possible_tools.append(tool)
        self.execution_map[name] = executor

    def has_function(self, function_name: str) -> bool:
        return function_name in self.execution_map

    def get_enabled_function_names(self):
        """Get list of currently enabled function names."""
        return [tool['function']['name'] for tool in self.all_possible_tools]

    def get_tool_schema(self, function_name: str) -> Dict[str, Any]:
        for tool in self.all_possible_tools:
            if tool['function']['name'] == function_name:
                return tool['function'].get('parameters') or {"type": "object", "properties": {}}
        raise UnknownToolError(function_name)

    def validate_arguments(self, function_name: str, arguments: Any):
        """Reject argument maps that don't match the tool's declared schema."""
        if not isinstance(arguments, dict):
            raise ValidationError(f"Arguments for {function_name} must be an object")
        schema = self.get_tool_schema(function_name)
        try:
            jsonschema.validate(arguments, schema)
        except jsonschema.ValidationError as e:
            location = ".".join(str(p) for p in e.absolute_path)
            where = f" at '{location}'" if location else ""
            raise ValidationError(f"Invalid arguments for {function_name}{where}: {e.message}") from e

    def execute_function(self, function_name, arguments):
        """
        Execute a registered tool.

        Raises UnknownToolError, ValidationError or ToolExecutionError; returns the
        tool's result string otherwise.
        """
        start_time = time.time()
        logger.info(f"[TOOL] Executing function: {function_name}")

        executor = self.execution_map.get(function_name)
        if not executor:
            logger.error(f"No executor found for function '{function_name}'")
            self._log_tool_call(function_name, arguments, "unknown tool", time.time() - start_time, False)
            raise UnknownToolError(function_name)

        try:
            self.validate_arguments(function_name, arguments)
        except ValidationError as e:
            self._log_tool_call(function_name, arguments, str(e), time.time() - start_time, False)
            raise

        try:
            result, success = executor(function_name, arguments, config)
        except ValidationError as e:
            self._log_tool_call(function_name, arguments, str(e), time.time() - start_time, False)
            raise
        except StorageError as e:
            logger.error(f"[TOOL] Storage failure in {function_name}: {e}", exc_info=True)
            self._log_tool_call(function_name, arguments, f"Error: {e}", time.time() - start_time, False)
            raise ToolExecutionError(function_name, f"storage error: {e}") from e
        except Exception as e:
            logger.error(f"[TOOL] Error executing function {function_name}: {e}", exc_info=True)
            self._log_tool_call(function_name, arguments, f"Error: {e}", time.time() - start_time, False)
            raise ToolExecutionError(function_name, str(e)) from e

        self._log_tool_call(function_name, arguments, result, time.time() - start_time, success)
        if not success:
            raise ToolExecutionError(function_name, str(result))
        return str(result)

    def _load_tool_history(self):
        """Load tool history through storage. Skipped if TOOL_HISTORY_MAX_ENTRIES is 0."""
        max_entries = getattr(config, 'TOOL_HISTORY_MAX_ENTRIES', 100)
        if max_entries == 0 or self.storage is None:
            self.tool_history = []
            return

        try:
            history = self.storage.load(self.tool_history_file, default=[])
            self.tool_history = history if isinstance(history, list) else []
        except StorageError as e:
            logger.error(f"Error loading tool history: {e}")
            self.tool_history = []

    def _log_tool_call(self, function_name, arguments, result, execution_time, success):
        """Log tool call to history. Disabled if TOOL_HISTORY_MAX_ENTRIES is 0."""
        max_entries = getattr(config, 'TOOL_HISTORY_MAX_ENTRIES', 100)
        if max_entries == 0:
            return

        tool_entry = {
            "timestamp": datetime.now().isoformat(),
            "chat_id": scope_chat_id.get(),
            "function_name": function_name,
            "arguments": arguments,
            "result": str(result)[:500],
            "execution_time_ms": round(execution_time * 1000, 2),
            "success": success
        }
        with self._history_lock:
            self.tool_history.append(tool_entry)
            if len(self.tool_history) > max_entries:
                self.tool_history = self.tool_history[-max_entries:]
            snapshot = list(self.tool_history)

        if self.storage is not None:
            self.storage.save_async(self.tool_history_file, snapshot)
