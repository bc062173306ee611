"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
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

    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for provider webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Telephony
    phone_provider: Literal["telnyx", "twilio", "vapi"] = Field(default="telnyx")
    phone_account_sid: str | None = Field(
        default=None,
        description="Twilio account SID or Telnyx call control connection id.",
    )
    phone_auth_token: str | None = Field(
        default=None,
        description="Twilio auth token or Telnyx API v2 key.",
    )
    phone_number: str | None = Field(default=None, description="E.164 number calls are placed from.")
    user_phone_number: str | None = Field(default=None, description="E.164 number of the human to call.")

    vapi_api_key: str | None = Field(default=None)
    vapi_phone_number_id: str | None = Field(default=None)
    vapi_assistant_model: str = Field(default="gpt-4o-mini")
    vapi_voice_id: str = Field(default="21m00Tcm4TlvDq8ikWAM")

    # Text to speech
    tts_provider: Literal["google", "azure"] = Field(default="google")
    tts_voice: str = Field(default="en-US-Journey-F")
    language_code: str = Field(default="en-US")
    azure_speech_key: str | None = Field(default=None)
    azure_speech_region: str | None = Field(default=None)

    # Speech recognition
    stt_provider: Literal["google", "whisper"] = Field(default="google")
    stt_model: str = Field(default="latest_long")
    whisper_model_size: str = Field(default="Systran/faster-whisper-small")
    whisper_compute_type: str = Field(default="auto")  # e.g. float16, int8_float16
    whisper_device: str = Field(default="auto")

    # Turn protocol
    turn_timeout_seconds: float = Field(default=15.0, gt=0)
    connection_timeout_seconds: float = Field(default=15.0, gt=0)
    farewell_grace_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Pause after the farewell is sent before hanging up (direct media).",
    )
    relay_hangup_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay before hanging up a relay call so the voice agent can say goodbye.",
    )

    # Media streaming
    media_frame_bytes: int = Field(default=160, gt=0, description="20ms of 8kHz mu-law audio.")
    media_frame_interval_ms: int = Field(default=20, ge=0)

    agent_api_key: str | None = Field(
        default=None,
        description="Optional API key required to call the turn API.",
    )

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
