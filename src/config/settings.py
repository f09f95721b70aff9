"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    service_name: str = Field(default="voice-lead-bridge")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/calls.db",
        description="SQLAlchemy connection string.",
    )
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_enable_recording: bool = Field(
        default=False,
        description="Start a dual-channel recording when the media stream starts.",
    )
    twilio_api_base_url: str = Field(default="https://api.twilio.com/2010-04-01")

    # Realtime dialogue (speech recognition + response generation)
    realtime_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview")
    realtime_transcription_model: str = Field(default="whisper-1")
    realtime_protocol_revision: str = Field(default="2024-10-01")
    realtime_vad_silence_ms: int = Field(default=900, ge=100)
    realtime_vad_prefix_ms: int = Field(default=200, ge=0)

    # Secondary dialogue provider
    llm_provider: Literal["openai", "none"] = Field(default="none")
    llm_endpoint: str | None = Field(default=None)
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")

    # Text to speech
    tts_provider: Literal["elevenlabs", "openai"] = Field(default="elevenlabs")
    tts_secondary_provider: Literal["elevenlabs", "openai"] | None = Field(default=None)
    tts_voice: str | None = Field(
        default=None,
        description="Provider voice id; each provider falls back to its own default.",
    )
    tts_style: float = Field(default=0.0, ge=0.0, le=1.0)
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io")
    elevenlabs_model_id: str = Field(default="eleven_flash_v2_5")
    openai_tts_model: str = Field(default="gpt-4o-mini-tts")

    # Turn taking
    turn_debounce_ms: int = Field(default=350, ge=0)
    no_input_fallback_ms: int = Field(default=2500, ge=0)
    fallback_min_gap_ms: int = Field(default=1500, ge=0)
    fallback_cooldown_ms: int = Field(default=8000, ge=0)
    barge_in_suppression_ms: int = Field(default=600, ge=0)
    response_timeout_ms: int = Field(default=15000, ge=100)
    pacer_frame_ms: int = Field(default=20, ge=5)

    # Call limits
    idle_hangup_seconds: float = Field(default=30.0, gt=0)
    max_call_seconds: float = Field(default=600.0, gt=0)

    # Fixed utterances
    fallback_text: str = Field(default="Sorry, I didn't catch that. Could you say it again?")
    apology_text: str = Field(
        default="I'm sorry, I'm having a technical problem. Please try again in a moment."
    )

    # Lead capture
    default_language: Literal["en", "he"] = Field(default="en")
    subject_min_words: int = Field(default=3, ge=1)
    default_country_code: str = Field(default="972")
    time_zone: str = Field(default="Asia/Jerusalem")
    lead_summary_enabled: bool = Field(
        default=False,
        description="Ask the secondary LLM for a short CRM summary after the call.",
    )

    # Notification webhooks
    call_log_webhook_url: str | None = Field(default=None)
    final_webhook_url: str | None = Field(default=None)
    abandoned_webhook_url: str | None = Field(default=None)
    call_log_at_end: bool = Field(default=True)
    webhook_timeout_seconds: float = Field(default=7.0, gt=0)
    webhook_max_attempts: int = Field(default=3, ge=1)
    webhook_backoff_ms: int = Field(default=350, ge=0)

    # Recording resolution
    recording_max_attempts: int = Field(default=10, ge=1)
    recording_backoff_ms: int = Field(default=1500, ge=0)
    recording_backoff_cap_ms: int = Field(default=8000, ge=0)

    # Runtime context
    admin_secret: str | None = Field(
        default=None,
        description="Shared secret expected in the X-Admin-Secret header of admin routes.",
    )
    context_ttl_seconds: float = Field(default=60.0, gt=0)
    context_file: Path | None = Field(
        default=None,
        description="Optional JSON file with business settings and prompts.",
    )
    business_name: str = Field(default="our office")
    opening_script: str = Field(
        default="{GREETING}, you've reached {BUSINESS_NAME}. May I have your name, please?"
    )
    greeting_cache_enabled: bool = Field(default=True)

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("default_country_code")
    @classmethod
    def digits_only_country_code(cls, value: str) -> str:
        digits = value.strip().lstrip("+")
        if not digits.isdigit():
            raise ValueError("default_country_code must contain digits only")
        return digits


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
