"""AI router: resolves provider + model with override > ENV > mock chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docscan.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

# Scopes that read the document-scan settings; everything else uses the extract settings.
SCAN_SCOPES = frozenset({"statement_scan", "pdf2sheet_scan"})


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    repair_max_tokens: int
    timeout_seconds: float


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    Resolution chain (first non-empty wins):
      1. ``override_provider`` / ``override_model`` (only when
         ``enable_ai_overrides=True``).
      2. ENV scope-specific: ``AI_SCAN_*`` for scan scopes, ``AI_EXTRACT_*``
         for page extraction.
      3. ``"mock"`` with empty model.

    A model outside the provider's allowlist is replaced by the first allowed one.
    Temperature is always 0 so repeated scans of one file are reproducible.
    """
    settings = get_settings()
    is_scan = scope in SCAN_SCOPES

    provider_name = ""
    if settings.enable_ai_overrides and override_provider:
        provider_name = override_provider.lower().strip()
    if not provider_name:
        provider_name = (settings.ai_scan_provider if is_scan else settings.ai_extract_provider).lower().strip()
    if not provider_name:
        provider_name = "mock"

    model = ""
    if settings.enable_ai_overrides and override_model:
        model = override_model.strip()
    if not model:
        model = (settings.ai_scan_model if is_scan else settings.ai_extract_model).strip()

    allowed_models = settings.ai_allowed_models.get(provider_name, [])
    if allowed_models and model and model not in allowed_models:
        logger.warning(
            "Model %r not in allowlist for %r, using first allowed: %r",
            model,
            provider_name,
            allowed_models[0],
        )
        model = allowed_models[0]
    if allowed_models and not model:
        model = allowed_models[0]

    provider = get_provider(provider_name)
    if provider.name == "mock" and provider_name != "mock":
        model = ""

    return ResolvedConfig(
        provider=provider,
        model=model,
        temperature=0.0,
        max_tokens=settings.ai_scan_max_tokens if is_scan else settings.ai_extract_max_tokens,
        repair_max_tokens=settings.ai_repair_max_tokens,
        timeout_seconds=settings.ai_timeout_seconds,
    )
