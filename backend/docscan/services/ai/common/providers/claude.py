"""Anthropic / Claude provider."""

from __future__ import annotations

import logging
import time

from .base import Attachment, BaseProvider, ProviderResult

logger = logging.getLogger(__name__)


def _attachment_block(attachment: Attachment) -> dict:
    source = {"type": "base64", "media_type": attachment.mime_type, "data": attachment.b64()}
    if attachment.mime_type.startswith("image/"):
        return {"type": "image", "source": source}
    return {"type": "document", "source": source}


class ClaudeProvider(BaseProvider):
    name = "claude"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

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
        import httpx

        model = model or "claude-sonnet-4-5"
        t0 = time.monotonic()

        content: list[dict] = []
        if attachment is not None:
            content.append(_attachment_block(attachment))
        content.append({"type": "text", "text": prompt})

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                "https://api.anthropic.com/v1/messages",
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": [{"role": "user", "content": content}],
                },
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
