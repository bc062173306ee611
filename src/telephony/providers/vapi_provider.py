from __future__ import annotations

import logging

import httpx

from calls.errors import ProviderRequestError
from calls.turns import END_CALL_SENTINEL
from telephony.providers.base import TelephonyProvider

LOGGER = logging.getLogger(__name__)

VAPI_API_URL = "https://api.vapi.ai"
RELAY_TOOL_NAME = "relay_to_agent"

RELAY_SYSTEM_PROMPT = f"""You are a voice relay between a human and an AI assistant.

CRITICAL INSTRUCTIONS:
1. After speaking your first message, wait for the user to respond.
2. When the user speaks, IMMEDIATELY call the "{RELAY_TOOL_NAME}" tool with exactly what they said.
3. The tool will return the assistant's response. Speak that response EXACTLY as returned.
4. Repeat steps 2-3 until the assistant ends the call.

NEVER make up responses. ALWAYS use the {RELAY_TOOL_NAME} tool for every user message.
If the tool returns a message containing "{END_CALL_SENTINEL}", say the rest of it, then end the call."""


class VapiProvider(TelephonyProvider):
    """Vapi phone calls driven by a transient relay assistant."""

    name = "vapi"
    relays_turns = True

    def __init__(
        self,
        api_key: str,
        phone_number_id: str,
        *,
        model: str = "gpt-4o-mini",
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._phone_number_id = phone_number_id
        self._model = model
        self._voice_id = voice_id
        self._client = client or httpx.AsyncClient(
            base_url=VAPI_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=15.0,
        )

    def build_assistant(self, webhook_url: str, opening_message: str | None) -> dict:
        return {
            "name": "Agent Voice Relay",
            "firstMessage": opening_message or "",
            "model": {
                "provider": "openai",
                "model": self._model,
                "messages": [{"role": "system", "content": RELAY_SYSTEM_PROMPT}],
                "tools": [
                    {
                        "type": "function",
                        "function": {
                            "name": RELAY_TOOL_NAME,
                            "description": (
                                "Send the user's message to the assistant and get the response. "
                                "MUST be called for every user message."
                            ),
                            "parameters": {
                                "type": "object",
                                "properties": {
                                    "user_message": {
                                        "type": "string",
                                        "description": "Exactly what the user just said",
                                    }
                                },
                                "required": ["user_message"],
                            },
                        },
                        "server": {"url": webhook_url},
                    }
                ],
            },
            "voice": {"provider": "11labs", "voiceId": self._voice_id},
            "endCallFunctionEnabled": True,
            "serverUrl": webhook_url,
        }

    async def initiate_call(
        self,
        to: str,
        from_: str,
        webhook_url: str,
        opening_message: str | None = None,
    ) -> str:
        payload = {
            "assistant": self.build_assistant(webhook_url, opening_message),
            "phoneNumberId": self._phone_number_id,
            "customer": {"number": to},
        }
        try:
            resp = await self._client.post("/call/phone", json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderRequestError(
                f"Vapi call failed: {exc.response.status_code} {exc.response.text[:500]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderRequestError(f"Vapi call failed: {exc}") from exc

        call_id = resp.json().get("id")
        if not call_id:
            raise ProviderRequestError("Vapi response did not include a call id")

        LOGGER.info("Vapi call created id=%s", call_id)
        return str(call_id)

    async def hangup(self, provider_call_id: str) -> None:
        LOGGER.info("Ending Vapi call %s", provider_call_id)
        try:
            resp = await self._client.delete(f"/call/{provider_call_id}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderRequestError(f"Vapi hangup failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
