"""Shared abstraction for telephony providers."""

from __future__ import annotations

from abc import ABC, abstractmethod


class TelephonyProvider(ABC):
    """Places and ends calls on one provider.

    Direct-media providers stream raw call audio to our media socket. Relay
    providers (`relays_turns = True`) run their own voice agent and deliver
    the human's turns through tool-call webhooks instead.
    """

    name: str = ""
    relays_turns: bool = False

    @abstractmethod
    async def initiate_call(
        self,
        to: str,
        from_: str,
        webhook_url: str,
        opening_message: str | None = None,
    ) -> str:
        """Place an outbound call and return the provider's call id."""

    @abstractmethod
    async def hangup(self, provider_call_id: str) -> None:
        """End the call on the provider side."""

    async def start_streaming(self, provider_call_id: str, stream_url: str) -> None:
        """Ask the provider to open the media socket. No-op unless overridden."""

    async def aclose(self) -> None:
        """Release HTTP clients."""
