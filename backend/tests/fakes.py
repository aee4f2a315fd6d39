"""Test doubles shared by the service and endpoint tests."""

from docscan.services.ai.common.providers.base import BaseProvider, ProviderResult
from docscan.services.ai.common.router import ResolvedConfig


class ScriptedProvider(BaseProvider):
    """Replays canned responses; an exception instance in the script is raised."""

    name = "scripted"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(
        self,
        prompt,
        *,
        attachment=None,
        model="",
        temperature=0.0,
        max_tokens=4096,
        timeout_seconds=120.0,
        json_mode=True,
    ):
        self.calls.append(
            {"prompt": prompt, "attachment": attachment, "max_tokens": max_tokens, "temperature": temperature}
        )
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return ProviderResult(
            raw_text=item,
            model=model or "scripted-1",
            provider=self.name,
            prompt_tokens=10,
            completion_tokens=5,
        )


def scripted_config(provider, max_tokens=1000):
    return ResolvedConfig(
        provider=provider,
        model="scripted-1",
        temperature=0.0,
        max_tokens=max_tokens,
        repair_max_tokens=200,
        timeout_seconds=5.0,
    )


class StaticFetch:
    """Async stand-in for storage downloads; counts calls."""

    def __init__(self, data=b"", error=None):
        self.data = data
        self.error = error
        self.calls = []

    async def __call__(self, file_reference):
        self.calls.append(file_reference)
        if self.error is not None:
            raise self.error
        return self.data
