"""
Settings for kiew.

Factory defaults ship in kiew/settings_defaults.json, grouped by category.
Anything in user/settings.json (same categories) overrides them. Categories
are flattened away on load, so code reads settings.MAX_TOOL_ITERATIONS rather
than settings['tools']['MAX_TOOL_ITERATIONS']. Dict-valued settings listed in
CONFIG_OBJECTS are merged key by key instead of being replaced wholesale.
"""
import json
import os
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULTS_PATH = Path(__file__).parent / 'settings_defaults.json'


class SettingsManager:
    CONFIG_OBJECTS = {'LLM_PRIMARY', 'GENERATION_DEFAULTS'}

    def __init__(self, base_dir=None, user_dir=None):
        self.BASE_DIR = Path(base_dir) if base_dir else Path(__file__).parent.parent
        self.USER_DIR = Path(user_dir or os.environ.get('KIEW_USER_DIR') or self.BASE_DIR / 'user')
        self._defaults_path = DEFAULTS_PATH
        self._defaults = {}
        self._user = {}
        self._config = {}
        self._lock = threading.RLock()

        self._load_defaults()
        self._load_user_settings()
        self._merge_settings()

    @property
    def user_settings_path(self) -> Path:
        return self.USER_DIR / 'settings.json'

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _flatten_dict(self, nested_dict):
        """{'tools': {'X': 1}} -> {'X': 1}. Keys starting with _ are comments."""
        flat = {}
        for key, value in nested_dict.items():
            if key.startswith('_'):
                continue
            if isinstance(value, dict) and key not in self.CONFIG_OBJECTS:
                flat.update(self._flatten_dict(value))
            else:
                flat[key] = value
        return flat

    def _read_json(self, path: Path):
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _load_defaults(self):
        try:
            self._defaults = self._flatten_dict(self._read_json(self._defaults_path))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[SETTINGS] can't read defaults {self._defaults_path}: {e}")
            self._defaults = {}
        self._defaults['BASE_DIR'] = str(self.BASE_DIR)
        self._defaults['USER_DIR'] = str(self.USER_DIR)

    def _load_user_settings(self):
        path = self.user_settings_path
        if not path.exists():
            logger.info(f"[SETTINGS] no {path}, running on defaults")
            self._user = {}
            return
        try:
            self._user = self._flatten_dict(self._read_json(path))
            logger.info(f"[SETTINGS] loaded {len(self._user)} overrides from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[SETTINGS] ignoring unreadable {path}: {e}")
            self._user = {}

    def _merge_settings(self):
        merged = {**self._defaults, **self._user}
        for key in self.CONFIG_OBJECTS:
            default, override = self._defaults.get(key), self._user.get(key)
            if isinstance(default, dict) and isinstance(override, dict):
                merged[key] = {**default, **override}
        self._config = merged

    def reload(self):
        with self._lock:
            self._load_user_settings()
            self._merge_settings()

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def get(self, key, default=None):
        with self._lock:
            return self._config.get(key, default)

    def set(self, key, value, persist=False):
        """Change a setting at runtime; persist=True also writes it to user/settings.json."""
        with self._lock:
            self._config[key] = value
            if persist:
                self._user[key] = value
                self.save()

    def save(self):
        """Write user overrides back, each under the category its default lives in."""
        path = self.user_settings_path
        with self._lock:
            try:
                nested = self._read_json(path) if path.exists() else {"_comment": "Overrides for kiew/settings_defaults.json"}
                nested = self._deep_update_from_flat(nested, self._user)
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, 'w', encoding='utf-8') as f:
                    json.dump(nested, f, indent=2)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"[SETTINGS] failed to save {path}: {e}")
                return False
        logger.info(f"[SETTINGS] saved {path}")
        return True

    def _deep_update_from_flat(self, nested, flat_updates):
        try:
            defaults_nested = self._read_json(self._defaults_path)
        except (OSError, json.JSONDecodeError):
            return nested

        for key, value in flat_updates.items():
            category = self._find_category_for_key(defaults_nested, key)
            target = nested.setdefault(category, {}) if category else nested
            if key in self.CONFIG_OBJECTS and isinstance(value, dict):
                target[key] = {**target.get(key, {}), **value}
            else:
                target[key] = value
        return nested

    def _find_category_for_key(self, nested_dict, target_key, current_category=None):
        for key, value in nested_dict.items():
            if key.startswith('_'):
                continue
            if key == target_key:
                return current_category
            if isinstance(value, dict) and key not in self.CONFIG_OBJECTS:
                found = self._find_category_for_key(value, target_key, key)
                if found:
                    return found
        return None

    def get_llm_config(self):
        """Copy of LLM_PRIMARY; a blank api_key is filled from the variable named in api_key_env."""
        with self._lock:
            llm_config = dict(self._config.get('LLM_PRIMARY') or {})
        env_name = llm_config.get('api_key_env')
        if not llm_config.get('api_key') and env_name:
            llm_config['api_key'] = os.environ.get(env_name, '')
        return llm_config

    def resolve_data_path(self, relative: str) -> Path:
        """DATA_DIR joined with relative; DATA_DIR is taken relative to the working directory."""
        data_dir = Path(self.get('DATA_DIR', 'user/data'))
        return data_dir / relative if relative else data_dir

    def __getattr__(self, key):
        if key.startswith('_'):
            return object.__getattribute__(self, key)
        with self._lock:
            try:
                return self._config[key]
            except KeyError:
                raise AttributeError(f"Setting '{key}' not found") from None

    def __contains__(self, key):
        with self._lock:
            return key in self._config

    def __repr__(self):
        return f"<SettingsManager: {len(self._config)} settings>"


settings = SettingsManager()
