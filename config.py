"""
Module-level view of kiew.settings_manager.settings.

    import config
    config.MAX_TOOL_ITERATIONS

Edit user/settings.json to change values; defaults are in kiew/settings_defaults.json.
"""
from kiew.settings_manager import settings as _settings


def __getattr__(name):
    return getattr(_settings, name)


def __contains__(key):
    return key in _settings
