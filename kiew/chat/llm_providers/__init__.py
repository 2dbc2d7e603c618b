# llm_providers/__init__.py
"""
Chat backends behind one interface.

    provider = get_provider(settings.get_llm_config(), config.LLM_REQUEST_TIMEOUT)
    response = provider.chat_completion(session.messages, tools, generation_params)

LLM_PRIMARY.provider picks the class; when it is missing the base_url decides.
"""

import logging
from typing import Dict, Any, Optional

from .base import BaseProvider, LLMResponse, ToolCall
from .openai_compat import OpenAICompatProvider
from .claude import ClaudeProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    'openai': OpenAICompatProvider,
    'fireworks': OpenAICompatProvider,
    'claude': ClaudeProvider,
}

# base_url fragment -> provider, checked in order
_URL_HINTS = (
    ('anthropic.com', 'claude'),
    ('fireworks.ai', 'fireworks'),
)

DEFAULT_PROVIDER = 'openai'


def get_provider_for_url(base_url: str) -> str:
    """Guess the provider from an endpoint URL."""
    url = (base_url or '').lower()
    for fragment, name in _URL_HINTS:
        if fragment in url:
            return name
    return DEFAULT_PROVIDER


def get_provider(llm_config: Dict[str, Any], request_timeout: float = 240.0) -> Optional[BaseProvider]:
    """Build the provider LLM_PRIMARY describes. None if it is disabled or can't be built."""
    if not llm_config.get('enabled', False):
        logger.info("[LLM] primary LLM is disabled")
        return None

    name = (llm_config.get('provider') or get_provider_for_url(llm_config.get('base_url'))).lower()
    provider_class = PROVIDERS.get(name)
    if provider_class is None:
        logger.error(f"[LLM] unknown provider '{name}', expected one of {sorted(PROVIDERS)}")
        return None

    try:
        return provider_class({**llm_config, 'provider': name}, request_timeout)
    except Exception as e:
        logger.error(f"[LLM] could not create {name} provider: {e}")
        return None


__all__ = [
    'get_provider',
    'get_provider_for_url',
    'BaseProvider',
    'LLMResponse',
    'ToolCall',
    'OpenAICompatProvider',
    'ClaudeProvider',
]
