"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
import base64
from dataclasses import dataclass


@dataclass(frozen=True)
class Attachment:
    """Binary document sent alongside the prompt (PDF, image)."""

    data: bytes
    mime_type: str = "application/pdf"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"

    @abc.abstractmethod
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
        """Send *prompt* (plus optional *attachment*) and return a ``ProviderResult``.

        Transport failures (HTTP status, timeouts) are raised, never swallowed.
        """
