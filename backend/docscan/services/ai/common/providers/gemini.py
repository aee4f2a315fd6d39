"""Google Gemini provider (Generative Language API)."""

from __future__ import annotations

import logging
import time

from .base import Attachment, BaseProvider, ProviderResult

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiProvider(BaseProvider):
    name = "gemini"

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

        model = model or "gemini-3-flash-preview"
        t0 = time.monotonic()

        parts: list[dict] = [{"text": prompt}]
        if attachment is not None:
            parts.append({"inlineData": {"mimeType": attachment.mime_type, "data": attachment.b64()}})

        generation_config: dict = {"temperature": temperature, "maxOutputTokens": max_tokens}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                f"{API_BASE}/{model}:generateContent",
                headers={
                    "x-goog-api-key": self._api_key,
                    "Content-Type": "application/json",
                },
                json={
                    "contents": [{"role": "user", "parts": parts}],
                    "generationConfig": generation_config,
                },
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        candidates = data.get("candidates") or []
        text = ""
        if candidates:
            content_parts = (candidates[0].get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in content_parts)
        usage = data.get("usageMetadata", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            latency_ms=round(elapsed, 2),
        )
