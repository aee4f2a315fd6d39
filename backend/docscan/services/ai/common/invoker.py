"""Resilient model invocation: one deterministic call, one repair call, safe default.

The model is untrusted with respect to output shape. Everything that turns raw
model text into a dict lives here, so downstream services only ever see a
``dict`` that has already been unwrapped and flattened.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from .json_tools import extract_json
from .providers.base import Attachment, ProviderResult
from .router import ResolvedConfig

logger = logging.getLogger(__name__)

REPAIR_INPUT_CHARS = 8000
DEGRADED_CONFIDENCE = 0.3

REPAIR_PROMPT = (
    "Fix this malformed JSON and return ONLY valid JSON. "
    "Do not include any explanation:\n\n{broken}"
)

# Observed wrapper shapes: account fields nested under a details key, and
# confidence/warnings/suggestions nested under a quality key.
DETAILS_WRAPPERS = ("accountDetails", "account_details")
QUALITY_WRAPPERS = ("quality",)
QUALITY_FIELDS = ("confidence", "warnings", "suggestions")


@dataclass
class InvocationResult:
    """Parsed model output plus the bookkeeping callers need for usage records."""

    data: dict[str, Any]
    provider_results: list[ProviderResult] = field(default_factory=list)
    repaired: bool = False
    degraded: bool = False

    @property
    def input_tokens(self) -> int:
        return sum(r.prompt_tokens for r in self.provider_results)

    @property
    def output_tokens(self) -> int:
        return sum(r.completion_tokens for r in self.provider_results)

    @property
    def latency_ms(self) -> float:
        return round(sum(r.latency_ms for r in self.provider_results), 2)

    @property
    def provider(self) -> str:
        return self.provider_results[0].provider if self.provider_results else ""

    @property
    def model(self) -> str:
        return self.provider_results[0].model if self.provider_results else ""

    @property
    def raw_text(self) -> str:
        return self.provider_results[-1].raw_text if self.provider_results else ""


def degraded_default(fallback: dict[str, Any], warning: str) -> dict[str, Any]:
    """Copy of *fallback* with confidence capped and *warning* appended."""
    data = copy.deepcopy(fallback)
    data["confidence"] = min(float(data.get("confidence") or 0.0), DEGRADED_CONFIDENCE)
    warnings = list(data.get("warnings") or [])
    warnings.append(warning)
    data["warnings"] = warnings
    return data


def normalize_shape(parsed: dict | list, fallback: dict[str, Any]) -> dict[str, Any]:
    """Reduce any parsed JSON value to a single flat record.

    - list: first element, or the degraded default when empty / not an object
    - details wrapper: its fields are lifted to the top level; top-level
      quality fields take precedence over nested ones
    - quality wrapper: confidence, warnings and suggestions are lifted
    """
    if isinstance(parsed, list):
        logger.info("Model returned array with %d items - using first item", len(parsed))
        first = parsed[0] if parsed else None
        if not isinstance(first, dict):
            return degraded_default(fallback, "Model returned an array response without a usable record")
        parsed = first

    record: dict[str, Any] = dict(parsed)

    for key in DETAILS_WRAPPERS:
        details = record.get(key)
        if isinstance(details, dict):
            logger.info("Flattening nested %s wrapper", key)
            outer = {k: v for k, v in record.items() if k != key}
            flattened = {**details}
            for k, v in outer.items():
                if k in QUALITY_FIELDS or k == "sampleTransactions":
                    flattened[k] = v or details.get(k)
                elif k not in flattened:
                    flattened[k] = v
            record = flattened
            break

    for key in QUALITY_WRAPPERS:
        quality = record.get(key)
        if isinstance(quality, dict):
            for name in QUALITY_FIELDS:
                if quality.get(name) is not None:
                    record[name] = quality[name]
            record.pop(key, None)

    for name in ("warnings", "suggestions"):
        value = record.get(name)
        if value is None:
            record[name] = []
        elif isinstance(value, str):
            record[name] = [value]
        elif not isinstance(value, list):
            record[name] = [str(value)]

    return record


async def invoke_structured(
    config: ResolvedConfig,
    prompt: str,
    *,
    fallback: dict[str, Any],
    attachment: Attachment | None = None,
    max_tokens: int | None = None,
) -> InvocationResult:
    """Call the model once and return a normalized dict.

    Provider errors from the first call propagate. Malformed output never does:
    it gets one repair call and then the degraded *fallback*.
    """
    first = await config.provider.generate(
        prompt,
        attachment=attachment,
        model=config.model,
        temperature=0.0,
        max_tokens=max_tokens or config.max_tokens,
        timeout_seconds=config.timeout_seconds,
        json_mode=True,
    )
    outcome = InvocationResult(data={}, provider_results=[first])

    parsed = extract_json(first.raw_text)
    if parsed is None:
        logger.warning(
            "JSON parse failed (len=%d), attempting repair. Head: %r",
            len(first.raw_text),
            first.raw_text[:200],
        )
        parsed = await _repair(config, first.raw_text, outcome)
        if parsed is None:
            outcome.degraded = True
            outcome.data = degraded_default(fallback, "Failed to parse AI response - please try again")
            return outcome
        outcome.repaired = True

    if isinstance(parsed, list) and not (parsed and isinstance(parsed[0], dict)):
        outcome.degraded = True
    outcome.data = normalize_shape(parsed, fallback)
    return outcome


async def _repair(config: ResolvedConfig, broken: str, outcome: InvocationResult) -> dict | list | None:
    try:
        fixed = await config.provider.generate(
            REPAIR_PROMPT.format(broken=broken[:REPAIR_INPUT_CHARS]),
            model=config.model,
            temperature=0.0,
            max_tokens=config.repair_max_tokens,
            timeout_seconds=config.timeout_seconds,
            json_mode=True,
        )
    except Exception as exc:
        logger.warning("JSON repair call failed: %s", exc)
        return None

    outcome.provider_results.append(fixed)
    parsed = extract_json(fixed.raw_text)
    if parsed is None:
        logger.warning("JSON repair returned unparseable output (len=%d)", len(fixed.raw_text))
    else:
        logger.info("JSON repair successful")
    return parsed
