"""Factory returning the configured telephony provider."""

from __future__ import annotations

from config.settings import Settings, get_settings
from telephony.providers.base import TelephonyProvider
from telephony.providers.telnyx_provider import TelnyxProvider
from telephony.providers.twilio_provider import TwilioProvider, build_twilio_client, get_twilio_config
from telephony.providers.vapi_provider import VapiProvider


def build_telephony_provider(settings: Settings | None = None) -> TelephonyProvider:
    settings = settings or get_settings()

    if settings.phone_provider == "twilio":
        return TwilioProvider(build_twilio_client(get_twilio_config(settings)))
    if settings.phone_provider == "telnyx":
        if not settings.phone_auth_token or not settings.phone_account_sid:
            raise ValueError("Telnyx API key and connection id are not configured")
        return TelnyxProvider(settings.phone_auth_token, settings.phone_account_sid)
    if settings.phone_provider == "vapi":
        if not settings.vapi_api_key or not settings.vapi_phone_number_id:
            raise ValueError("Vapi API key and phone number id are not configured")
        return VapiProvider(
            settings.vapi_api_key,
            settings.vapi_phone_number_id,
            model=settings.vapi_assistant_model,
            voice_id=settings.vapi_voice_id,
        )
    raise ValueError(f"Unsupported phone_provider: {settings.phone_provider}")
