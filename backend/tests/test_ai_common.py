"""Tests for the shared AI layer.

Covers:
- json_tools extraction
- invoker: repair call, degraded default, wrapper flattening
- provider factory and router resolution
- usage ledger rows
"""

import asyncio
import os
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docscan.models.statement import Base, UsageRecord
from fakes import ScriptedProvider, scripted_config


FALLBACK = {"bankName": "Unknown Bank", "confidence": 0.3, "warnings": [], "suggestions": []}


class JsonToolsTests(unittest.TestCase):
    """Tests for docscan.services.ai.common.json_tools.extract_json."""

    def test_valid_json_object(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('{"bankName": "Chase", "confidence": 0.9}')
        self.assertEqual(result["bankName"], "Chase")

    def test_markdown_fence_is_stripped(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('```json\n{"bankName": "ING"}\n```')
        self.assertEqual(result, {"bankName": "ING"})

    def test_json_with_prefix_text(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('Here you go: {"a": {"b": 1}} thanks')
        self.assertEqual(result["a"]["b"], 1)

    def test_scalar_counts_as_nothing(self):
        from docscan.services.ai.common.json_tools import extract_json

        self.assertIsNone(extract_json('"just a string"'))
        self.assertIsNone(extract_json("42"))

    def test_empty_and_plain_text_return_none(self):
        from docscan.services.ai.common.json_tools import extract_json

        self.assertIsNone(extract_json(""))
        self.assertIsNone(extract_json("no json here"))
        self.assertIsNone(extract_json("{broken"))

    def test_escaped_quotes_inside_strings(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('{"description": "ATM \\"Main St\\" {fee}"}')
        self.assertIn("Main St", result["description"])

    def test_trailing_commas_tolerated(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('Result:\n{"headers": [{"name": "Date"},], "confidence": 0.8,}')
        self.assertEqual(result["headers"], [{"name": "Date"}])

    def test_array_with_nested_objects(self):
        from docscan.services.ai.common.json_tools import extract_json

        result = extract_json('rows: [{"Date": "2024-01-01"}, {"Date": "2024-01-02"}] done')
        self.assertEqual(len(result), 2)

    def test_truncated_outer_object_ignores_inner_ones(self):
        from docscan.services.ai.common.json_tools import extract_json

        self.assertIsNone(extract_json('{"rules": {"headerRow": 0}, "bank'))


class InvokerTests(unittest.TestCase):
    """Tests for invoke_structured: one call, one repair, then the fallback."""

    def _invoke(self, provider, **kwargs):
        from docscan.services.ai.common.invoker import invoke_structured

        return asyncio.run(invoke_structured(scripted_config(provider), "scan this", fallback=FALLBACK, **kwargs))

    def test_valid_output_needs_no_repair(self):
        provider = ScriptedProvider('{"bankName": "Chase", "confidence": 0.95}')
        outcome = self._invoke(provider)

        self.assertEqual(outcome.data["bankName"], "Chase")
        self.assertFalse(outcome.repaired)
        self.assertFalse(outcome.degraded)
        self.assertEqual(len(provider.calls), 1)
        self.assertEqual(provider.calls[0]["temperature"], 0.0)
        self.assertEqual(outcome.data["warnings"], [])

    def test_malformed_output_is_repaired_once(self):
        provider = ScriptedProvider('{"bankName": "Chase", ', '{"bankName": "Chase", "confidence": 0.7}')
        outcome = self._invoke(provider)

        self.assertTrue(outcome.repaired)
        self.assertEqual(outcome.data["confidence"], 0.7)
        self.assertEqual(len(provider.calls), 2)
        self.assertEqual(provider.calls[1]["max_tokens"], 200)
        self.assertIn('{"bankName": "Chase", ', provider.calls[1]["prompt"])
        self.assertEqual(outcome.input_tokens, 20)
        self.assertEqual(outcome.output_tokens, 10)

    def test_repair_prompt_carries_only_the_head_of_long_output(self):
        from docscan.services.ai.common.invoker import REPAIR_INPUT_CHARS

        head = '{"rows": "' + "x" * (REPAIR_INPUT_CHARS - 10)
        broken = head + "OVERFLOW-TAIL " * 500
        provider = ScriptedProvider(broken, '{"rows": []}')

        outcome = self._invoke(provider)

        self.assertTrue(outcome.repaired)
        repair_prompt = provider.calls[1]["prompt"]
        self.assertEqual(len(head), 8000)
        self.assertTrue(repair_prompt.endswith(head))
        self.assertNotIn("OVERFLOW-TAIL", repair_prompt)

    def test_two_malformed_outputs_degrade(self):
        from docscan.services.ai.common.invoker import DEGRADED_CONFIDENCE

        provider = ScriptedProvider("not json", "still not json")
        outcome = self._invoke(provider)

        self.assertTrue(outcome.degraded)
        self.assertLessEqual(outcome.data["confidence"], DEGRADED_CONFIDENCE)
        self.assertIn("Failed to parse AI response - please try again", outcome.data["warnings"])
        self.assertEqual(outcome.data["bankName"], "Unknown Bank")
        self.assertEqual(len(provider.calls), 2)

    def test_failed_repair_call_degrades(self):
        provider = ScriptedProvider("garbage", RuntimeError("upstream 503"))
        outcome = self._invoke(provider)

        self.assertTrue(outcome.degraded)
        self.assertEqual(len(outcome.provider_results), 1)

    def test_first_call_error_propagates(self):
        provider = ScriptedProvider(RuntimeError("connection refused"))
        with self.assertRaises(RuntimeError):
            self._invoke(provider)

    def test_fallback_is_not_mutated(self):
        self._invoke(ScriptedProvider("x", "y"))
        self.assertEqual(FALLBACK["warnings"], [])

    def test_array_response_uses_first_record(self):
        provider = ScriptedProvider('[{"bankName": "ING"}, {"bankName": "HSBC"}]')
        outcome = self._invoke(provider)

        self.assertEqual(outcome.data["bankName"], "ING")
        self.assertFalse(outcome.degraded)

    def test_empty_array_degrades(self):
        outcome = self._invoke(ScriptedProvider("[]"))

        self.assertTrue(outcome.degraded)
        self.assertLessEqual(outcome.data["confidence"], 0.3)

    def test_details_wrapper_is_flattened(self):
        raw = (
            '{"accountDetails": {"bankName": "Wise", "accountNumber": "1234", "confidence": 0.4},'
            ' "confidence": 0.9, "warnings": "check currency"}'
        )
        outcome = self._invoke(ScriptedProvider(raw))

        self.assertEqual(outcome.data["bankName"], "Wise")
        self.assertEqual(outcome.data["accountNumber"], "1234")
        self.assertEqual(outcome.data["confidence"], 0.9)
        self.assertEqual(outcome.data["warnings"], ["check currency"])
        self.assertNotIn("accountDetails", outcome.data)

    def test_quality_wrapper_is_lifted(self):
        raw = '{"bankName": "ING", "quality": {"confidence": 0.6, "suggestions": ["verify period"]}}'
        outcome = self._invoke(ScriptedProvider(raw))

        self.assertEqual(outcome.data["confidence"], 0.6)
        self.assertEqual(outcome.data["suggestions"], ["verify period"])
        self.assertNotIn("quality", outcome.data)


class ProviderFactoryTests(unittest.TestCase):
    """Tests for provider factory (get_provider)."""

    @patch.dict(os.environ, {"AI_ALLOWED_PROVIDERS": "mock"}, clear=False)
    def test_provider_outside_allowlist_falls_back_to_mock(self):
        from docscan.services.ai.common.providers import get_provider
        from docscan.services.ai.common.providers.mock import MockProvider

        self.assertIsInstance(get_provider("gemini"), MockProvider)

    @patch.dict(os.environ, {"AI_ALLOWED_PROVIDERS": "gemini,mock", "GEMINI_API_KEY": ""}, clear=False)
    def test_gemini_without_key_falls_back_to_mock(self):
        from docscan.services.ai.common.providers import get_provider
        from docscan.services.ai.common.providers.mock import MockProvider

        self.assertIsInstance(get_provider("gemini"), MockProvider)

    @patch.dict(os.environ, {"AI_ALLOWED_PROVIDERS": "gemini,mock", "GEMINI_API_KEY": "k-123"}, clear=False)
    def test_gemini_with_key(self):
        from docscan.services.ai.common.providers import get_provider
        from docscan.services.ai.common.providers.gemini import GeminiProvider

        self.assertIsInstance(get_provider("Gemini"), GeminiProvider)

    @patch.dict(os.environ, {"AI_ALLOWED_PROVIDERS": "claude,mock", "ANTHROPIC_API_KEY": ""}, clear=False)
    def test_claude_without_key_falls_back_to_mock(self):
        from docscan.services.ai.common.providers import get_provider
        from docscan.services.ai.common.providers.mock import MockProvider

        self.assertIsInstance(get_provider("claude"), MockProvider)

    def test_mock_generate_returns_parseable_json(self):
        from docscan.services.ai.common.json_tools import extract_json
        from docscan.services.ai.common.providers.mock import MockProvider

        result = asyncio.run(MockProvider().generate("hello world"))
        self.assertEqual(result.provider, "mock")
        self.assertEqual(result.model, "mock-v1")
        self.assertEqual(extract_json(result.raw_text)["confidence"], 0.0)


class RouterTests(unittest.TestCase):
    """Tests for router resolve logic."""

    @patch.dict(
        os.environ,
        {
            "AI_SCAN_PROVIDER": "mock",
            "AI_SCAN_MODEL": "",
            "AI_ALLOWED_PROVIDERS": "mock",
            "AI_SCAN_MAX_TOKENS": "9000",
            "AI_TIMEOUT_SECONDS": "7",
        },
        clear=False,
    )
    def test_scan_scope_uses_scan_settings(self):
        from docscan.services.ai.common.providers.mock import MockProvider
        from docscan.services.ai.common.router import resolve

        config = resolve("statement_scan")
        self.assertIsInstance(config.provider, MockProvider)
        self.assertEqual(config.max_tokens, 9000)
        self.assertEqual(config.timeout_seconds, 7.0)
        self.assertEqual(config.temperature, 0.0)

    @patch.dict(
        os.environ,
        {"AI_EXTRACT_PROVIDER": "mock", "AI_ALLOWED_PROVIDERS": "mock", "AI_EXTRACT_MAX_TOKENS": "1234"},
        clear=False,
    )
    def test_extract_scope_uses_extract_settings(self):
        from docscan.services.ai.common.router import resolve

        self.assertEqual(resolve("pdf2sheet_extract").max_tokens, 1234)

    @patch.dict(
        os.environ,
        {
            "AI_SCAN_PROVIDER": "gemini",
            "AI_SCAN_MODEL": "gemini-9-ultra",
            "AI_ALLOWED_PROVIDERS": "gemini,mock",
            "GEMINI_API_KEY": "k-123",
        },
        clear=False,
    )
    def test_model_outside_allowlist_is_replaced(self):
        from docscan.core.config import DEFAULT_ALLOWED_MODELS
        from docscan.services.ai.common.router import resolve

        config = resolve("statement_scan")
        self.assertEqual(config.model, DEFAULT_ALLOWED_MODELS["gemini"][0])

    @patch.dict(
        os.environ,
        {"AI_SCAN_PROVIDER": "mock", "AI_ALLOWED_PROVIDERS": "mock", "ENABLE_AI_OVERRIDES": "false"},
        clear=False,
    )
    def test_override_ignored_when_disabled(self):
        from docscan.services.ai.common.router import resolve

        with patch("docscan.services.ai.common.router.get_provider") as mock_gp:
            resolve("statement_scan", override_provider="claude")
            mock_gp.assert_called_once_with("mock")

    @patch.dict(
        os.environ,
        {"AI_SCAN_PROVIDER": "mock", "AI_ALLOWED_PROVIDERS": "mock", "ENABLE_AI_OVERRIDES": "true"},
        clear=False,
    )
    def test_override_applied_when_enabled(self):
        from docscan.services.ai.common.router import resolve

        with patch("docscan.services.ai.common.router.get_provider") as mock_gp:
            resolve("statement_scan", override_provider="Claude")
            mock_gp.assert_called_once_with("claude")


class UsageLedgerTests(unittest.TestCase):
    """Tests for log_usage and cost estimation."""

    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def tearDown(self):
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_cost_uses_model_pricing(self):
        from docscan.services.ai.common.usage import calculate_cost

        self.assertAlmostEqual(calculate_cost("gpt-4o", 1_000_000, 1_000_000), 12.5)
        self.assertEqual(calculate_cost("unknown-model", 0, 0), 0.0)

    @patch.dict(os.environ, {"AI_DEBUG_STORE_RAW": "false"}, clear=False)
    def test_prompt_stored_as_hash_only(self):
        from docscan.services.ai.common.usage import UsageEvent, log_usage

        db = self.SessionLocal()
        try:
            log_usage(
                db,
                UsageEvent(
                    owner_id="user-1",
                    usage_type="scan",
                    provider="gemini",
                    model="gemini-2.5-flash",
                    input_tokens=100,
                    output_tokens=50,
                    prompt_text="secret statement text",
                    response_text="{}",
                    extra_meta={"repaired": False},
                ),
            )
            db.commit()

            row = db.query(UsageRecord).one()
            self.assertEqual(row.org_id, "personal")
            self.assertEqual(row.status, "success")
            self.assertEqual(len(row.usage_meta["prompt_hash"]), 64)
            self.assertNotIn("prompt_raw", row.usage_meta)
            self.assertFalse(row.usage_meta["repaired"])
        finally:
            db.close()

    @patch.dict(os.environ, {"AI_DEBUG_STORE_RAW": "true"}, clear=False)
    def test_debug_flag_stores_raw_text(self):
        from docscan.services.ai.common.usage import UsageEvent, log_usage

        db = self.SessionLocal()
        try:
            row = log_usage(
                db,
                UsageEvent(owner_id="user-1", usage_type="scan", provider="mock", model="", prompt_text="p"),
            )
            self.assertEqual(row.usage_meta["prompt_raw"], "p")
            self.assertEqual(row.ai_model, "unknown")
        finally:
            db.close()


class ConfigTests(unittest.TestCase):
    @patch.dict(os.environ, {"AI_EXTRACT_BATCH_SIZE": "0"}, clear=False)
    def test_batch_size_must_be_positive(self):
        from pydantic import ValidationError

        from docscan.core.config import Settings

        with self.assertRaises(ValidationError):
            Settings()

    @patch.dict(os.environ, {"AI_ALLOWED_MODELS": '{"gemini": ["gemini-2.5-pro"]}'}, clear=False)
    def test_allowed_models_json(self):
        from docscan.core.config import Settings

        self.assertEqual(Settings().ai_allowed_models, {"gemini": ["gemini-2.5-pro"]})

    @patch.dict(os.environ, {"AI_ALLOWED_PROVIDERS": "Gemini, mock"}, clear=False)
    def test_allowed_providers_lowercased(self):
        from docscan.core.config import Settings

        self.assertEqual(Settings().ai_allowed_providers, ["gemini", "mock"])


if __name__ == "__main__":
    unittest.main()
