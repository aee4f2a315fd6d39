"""Offline provider used when no real model is configured, and in tests."""

from __future__ import annotations

import json
from typing import Any

from .base import Attachment, BaseProvider, ProviderResult

_UNCONFIGURED = {
    "confidence": 0.0,
    "warnings": ["mock provider: no model configured"],
    "suggestions": [],
}


class MockProvider(BaseProvider):
    """Answers every prompt with the same JSON payload.

    The default payload carries zero confidence so callers never mistake it
    for a real extraction.
    """

    name = "mock"

    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = payload if payload is not None else _UNCONFIGURED

    async def generate(
        self,
        prompt: str,
        *,
        attachment: Attachment | None = None,
        model: str = "",
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout_seconds: float = 120.0,
        json_mode: bool = True,
    ) -> ProviderResult:
        text = json.dumps(self.payload)
        prompt_tokens = len(prompt.split())
        if attachment is not None:
            prompt_tokens += len(attachment.data) // 4
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=prompt_tokens,
            completion_tokens=len(text.split()),
        )
