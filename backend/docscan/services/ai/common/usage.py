"""AI usage ledger: one append-only ``usage_records`` row per scan or extraction."""

from __future__ import annotations

import abc
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from docscan.core.config import get_settings
from docscan.models.statement import UsageRecord

logger = logging.getLogger(__name__)

# USD per 1M tokens.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gemini-3-flash-preview": {"input": 0.50, "output": 3.00},
    "gemini-3-pro-preview": {"input": 2.00, "output": 12.00},
    "gemini-2.5-pro": {"input": 1.25, "output": 5.00},
    "gemini-2.5-flash": {"input": 0.075, "output": 0.30},
    "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    "gpt-4o-mini-2024-07-18": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
}
DEFAULT_PRICING_MODEL = "gemini-3-flash-preview"

USAGE_TYPES = frozenset({"scan", "pdf2sheet_scan", "pdf2sheet_extraction"})


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
    return round((input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"], 6)


@dataclass
class UsageEvent:
    owner_id: str
    usage_type: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    pages_processed: int = 0
    rows_extracted: int = 0
    confidence: float = 0.0
    status: str = "success"
    processing_time_ms: int = 0
    org_id: str | None = None
    prompt_text: str = ""
    response_text: str = ""
    extra_meta: dict[str, Any] = field(default_factory=dict)

    @property
    def estimated_cost(self) -> float:
        return calculate_cost(self.model, self.input_tokens, self.output_tokens)


class UsageSink(abc.ABC):
    """Write-only destination for usage events."""

    @abc.abstractmethod
    async def record(self, event: UsageEvent) -> None:
        """Persist *event*. Awaited by callers before they return."""


class DatabaseUsageSink(UsageSink):
    """Adds a ``UsageRecord`` to the caller's session; the caller commits."""

    def __init__(self, db: Session) -> None:
        self._db = db

    async def record(self, event: UsageEvent) -> None:
        log_usage(self._db, event)


class NullUsageSink(UsageSink):
    async def record(self, event: UsageEvent) -> None:
        logger.debug("Usage event dropped: %s %s", event.usage_type, event.owner_id)


def log_usage(db: Session, event: UsageEvent) -> UsageRecord:
    """Write a usage row.

    Prompt and response are stored as SHA-256 hashes; raw text only when
    ``AI_DEBUG_STORE_RAW=true``.
    """
    settings = get_settings()

    metadata: dict[str, Any] = {
        "prompt_hash": hashlib.sha256(event.prompt_text.encode()).hexdigest(),
        "response_hash": hashlib.sha256(event.response_text.encode()).hexdigest(),
    }
    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = event.prompt_text
        metadata["response_raw"] = event.response_text
    if event.extra_meta:
        metadata.update(event.extra_meta)

    if event.usage_type not in USAGE_TYPES:
        logger.warning("Recording usage with unexpected type %r", event.usage_type)

    row = UsageRecord(
        org_id=event.org_id or "personal",
        owner_id=event.owner_id,
        usage_type=event.usage_type,
        ai_provider=event.provider,
        ai_model=event.model or "unknown",
        input_tokens=event.input_tokens,
        output_tokens=event.output_tokens,
        pages_processed=event.pages_processed,
        rows_extracted=event.rows_extracted,
        confidence=event.confidence,
        status=event.status,
        processing_time_ms=event.processing_time_ms,
        estimated_cost=event.estimated_cost,
        usage_meta=metadata,
    )
    db.add(row)
    return row
