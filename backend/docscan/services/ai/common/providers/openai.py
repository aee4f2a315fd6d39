"""OpenAI provider."""

from __future__ import annotations

import logging
import time

from .base import Attachment, BaseProvider, ProviderResult

logger = logging.getLogger(__name__)


def _attachment_part(attachment: Attachment) -> dict:
    data_url = f"data:{attachment.mime_type};base64,{attachment.b64()}"
    if attachment.mime_type.startswith("image/"):
        return {"type": "image_url", "image_url": {"url": data_url}}
    return {"type": "file", "file": {"filename": "document.pdf", "file_data": data_url}}


class OpenAIProvider(BaseProvider):
    name = "openai"

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

        model = model or "gpt-4o-mini-2024-07-18"
        t0 = time.monotonic()

        content: list[dict] = [{"type": "text", "text": prompt}]
        if attachment is not None:
            content.append(_attachment_part(attachment))

        body: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                "https://api.openai.com/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        choice = data["choices"][0]
        text = choice["message"].get("content") or ""
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
