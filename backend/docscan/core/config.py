from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except json.JSONDecodeError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


DEFAULT_ALLOWED_MODELS = {
    "gemini": ["gemini-3-flash-preview", "gemini-3-pro-preview", "gemini-2.5-pro", "gemini-2.5-flash"],
    "claude": ["claude-sonnet-4-5", "claude-3-5-haiku-20241022"],
    "openai": ["gpt-4o-mini-2024-07-18", "gpt-4o"],
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    storage_bucket: str = Field(
        default="documents",
        validation_alias=AliasChoices("STORAGE_BUCKET", "SUPABASE_STORAGE_BUCKET"),
    )
    storage_timeout_seconds: float = 30.0

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PATCH",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    # --- AI providers ---
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    ai_allowed_providers_raw: str = Field(
        default="gemini,claude,openai,mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    enable_ai_overrides: bool = False

    ai_scan_provider: str = "gemini"
    ai_scan_model: str = ""
    ai_extract_provider: str = "gemini"
    ai_extract_model: str = ""

    ai_scan_max_tokens: int = 50000
    ai_repair_max_tokens: int = 4096
    ai_extract_max_tokens: int = 16384
    ai_timeout_seconds: float = 120.0
    ai_page_timeout_seconds: float = 120.0
    ai_extract_batch_size: int = 5
    ai_debug_store_raw: bool = False

    csv_sample_lines: int = 15
    csv_char_ceiling: int = 50000

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("ai_extract_batch_size")
    @classmethod
    def _positive_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("AI_EXTRACT_BATCH_SIZE must be >= 1")
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        """Per-provider model allowlist.

        ``AI_ALLOWED_MODELS`` accepts a JSON object such as
        ``{"gemini": ["gemini-2.5-pro"]}``; when unset the built-in defaults apply.
        """
        raw = self.ai_allowed_models_raw.strip()
        if not raw:
            return DEFAULT_ALLOWED_MODELS
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return DEFAULT_ALLOWED_MODELS
        if not isinstance(parsed, dict):
            return DEFAULT_ALLOWED_MODELS
        return {
            str(k).lower(): [str(m).strip() for m in v if str(m).strip()] if isinstance(v, list) else _parse_list_value(str(v))
            for k, v in parsed.items()
        }


@lru_cache

def get_settings() -> Settings:
    return Settings()
