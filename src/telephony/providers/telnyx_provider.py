from __future__ import annotations

import base64
import logging

import httpx

from calls.errors import ProviderRequestError
from telephony.providers.base import TelephonyProvider

LOGGER = logging.getLogger(__name__)

TELNYX_API_URL = "https://api.telnyx.com/v2"


class TelnyxProvider(TelephonyProvider):
    """Telnyx Call Control over its v2 REST API."""

    name = "telnyx"

    def __init__(
        self,
        api_key: str,
        connection_id: str,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._connection_id = connection_id
        self._client = client or httpx.AsyncClient(
            base_url=TELNYX_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=10.0,
        )

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = await self._client.post(path, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderRequestError(
                f"Telnyx request {path} failed: {exc.response.status_code} {exc.response.text[:500]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderRequestError(f"Telnyx request {path} failed: {exc}") from exc
        return resp.json() if resp.content else {}

    async def initiate_call(
        self,
        to: str,
        from_: str,
        webhook_url: str,
        opening_message: str | None = None,
    ) -> str:
        data = await self._post(
            "/calls",
            {
                "to": to,
                "from": from_,
                "connection_id": self._connection_id,
                "webhook_url": webhook_url,
                "webhook_url_method": "POST",
            },
        )
        try:
            call_control_id = str(data["data"]["call_control_id"])
        except (KeyError, TypeError) as exc:
            raise ProviderRequestError("Telnyx response did not include a call_control_id") from exc

        LOGGER.info("Telnyx call created call_control_id=%s", call_control_id)
        return call_control_id

    async def hangup(self, provider_call_id: str) -> None:
        await self._post(
            f"/calls/{provider_call_id}/actions/hangup",
            {"client_state": base64.b64encode(b"hungup").decode("ascii")},
        )

    async def start_streaming(self, provider_call_id: str, stream_url: str) -> None:
        await self._post(
            f"/calls/{provider_call_id}/actions/streaming_start",
            {
                "stream_url": stream_url,
                "stream_track": "both_tracks",
                "stream_bidirectional_mode": "rtp",
                "stream_bidirectional_codec": "PCMU",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()
