from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from calls.errors import ProviderRequestError
from config.settings import Settings
from telephony.providers.base import TelephonyProvider

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str


def get_twilio_config(settings: Settings) -> TwilioConfig:
    if not settings.phone_account_sid or not settings.phone_auth_token:
        raise ValueError("Twilio credentials are not configured")
    return TwilioConfig(account_sid=settings.phone_account_sid, auth_token=settings.phone_auth_token)


def build_twilio_client(cfg: TwilioConfig):
    from twilio.rest import Client

    return Client(cfg.account_sid, cfg.auth_token)


class TwilioProvider(TelephonyProvider):
    """Twilio Programmable Voice.

    Media streaming is started by the TwiML returned from the voice webhook,
    so `start_streaming` stays a no-op. The REST client is blocking and is
    driven from a worker thread.
    """

    name = "twilio"

    def __init__(self, client) -> None:
        self._client = client

    async def initiate_call(
        self,
        to: str,
        from_: str,
        webhook_url: str,
        opening_message: str | None = None,
    ) -> str:
        from twilio.base.exceptions import TwilioRestException

        try:
            call = await asyncio.to_thread(
                self._client.calls.create,
                to=to,
                from_=from_,
                url=webhook_url,
                method="POST",
                status_callback=webhook_url,
                status_callback_method="POST",
            )
        except TwilioRestException as exc:
            raise ProviderRequestError(f"Twilio call failed: {exc.status} {exc.msg}") from exc

        LOGGER.info("Twilio call created sid=%s", call.sid)
        return str(call.sid)

    async def hangup(self, provider_call_id: str) -> None:
        from twilio.base.exceptions import TwilioRestException

        try:
            await asyncio.to_thread(
                lambda: self._client.calls(provider_call_id).update(status="completed")
            )
        except TwilioRestException as exc:
            raise ProviderRequestError(f"Twilio hangup failed: {exc.status} {exc.msg}") from exc
