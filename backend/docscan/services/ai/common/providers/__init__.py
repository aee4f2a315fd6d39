"""Provider registry.

``get_provider`` never raises: anything it cannot build (not allow-listed,
missing key, unknown name) becomes a ``MockProvider`` and a warning in the log.
"""

from __future__ import annotations

import importlib
import logging

from docscan.core.config import get_settings

from .base import Attachment, BaseProvider, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "Attachment", "BaseProvider", "ProviderResult", "MockProvider"]

# name -> (module, class, settings attribute holding the key, env var for logs)
_REMOTE = {
    "gemini": (".gemini", "GeminiProvider", "gemini_api_key", "GEMINI_API_KEY"),
    "claude": (".claude", "ClaudeProvider", "anthropic_api_key", "ANTHROPIC_API_KEY"),
    "openai": (".openai", "OpenAIProvider", "openai_api_key", "OPENAI_API_KEY"),
}


def get_provider(provider_name: str) -> BaseProvider:
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not in allowlist, using mock", name)
        return MockProvider()
    if name == "mock":
        return MockProvider()

    entry = _REMOTE.get(name)
    if entry is None:
        logger.warning("Unknown provider %r, using mock", name)
        return MockProvider()

    module_name, class_name, key_attr, env_name = entry
    api_key = getattr(settings, key_attr)
    if not api_key:
        logger.warning("%s not set, using mock for %r", env_name, name)
        return MockProvider()

    # remote providers are imported on demand so httpx stays off the mock path
    module = importlib.import_module(module_name, __name__)
    return getattr(module, class_name)(api_key=api_key)
