"""Provider webhook normalization.

One handler per provider turns that provider's signaling payload into
orchestrator calls and builds the synchronous response the provider expects:

- Telnyx: JSON call-control events, answered with a JSON ack.
- Twilio: form-encoded voice/status callbacks, answered with TwiML.
- Vapi: tool-call JSON, answered with the tool results (the agent's replies).
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from calls.errors import ProviderRequestError
from calls.turns import END_CALL_SENTINEL
from telephony.providers.vapi_provider import RELAY_TOOL_NAME

if TYPE_CHECKING:  # pragma: no cover
    from calls.orchestrator import CallOrchestrator

LOGGER = logging.getLogger(__name__)

TWILIO_TERMINAL_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})
VAPI_ENDED_STATUSES = frozenset({"ended"})


def ok_response() -> JSONResponse:
    return JSONResponse({"status": "ok"})


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_empty() -> str:
    return "<Response/>"


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


async def _read_json(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        LOGGER.debug("Ignoring non-JSON webhook body (%d bytes)", len(body))
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def _read_form(request: Request) -> dict[str, str]:
    try:
        form = await request.form()
    except Exception:
        LOGGER.debug("Ignoring malformed form webhook body", exc_info=True)
        return {}
    return {key: str(value) for key, value in form.items()}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class WebhookHandler(ABC):
    provider: str = ""

    @abstractmethod
    async def handle(self, request: Request, orchestrator: CallOrchestrator) -> Response:
        """Apply one provider callback and return the provider-specific reply."""


class TelnyxWebhookHandler(WebhookHandler):
    provider = "telnyx"

    async def handle(self, request: Request, orchestrator: CallOrchestrator) -> Response:
        data = _as_dict((await _read_json(request)).get("data"))
        event_type = data.get("event_type")
        call_control_id = _as_dict(data.get("payload")).get("call_control_id")
        if not event_type or not call_control_id:
            return ok_response()

        LOGGER.debug("Telnyx event %s for %s", event_type, call_control_id)
        if event_type == "call.answered":
            try:
                await orchestrator.handle_call_answered(str(call_control_id))
            except ProviderRequestError:
                # The pending turn times out on the media connection and hangs up.
                LOGGER.exception("Could not start media streaming for %s", call_control_id)
        elif event_type == "call.hangup":
            await orchestrator.handle_call_ended(str(call_control_id))
        return ok_response()


class TwilioWebhookHandler(WebhookHandler):
    provider = "twilio"

    async def handle(self, request: Request, orchestrator: CallOrchestrator) -> Response:
        form = await _read_form(request)
        call_sid = form.get("CallSid", "").strip()
        if not call_sid:
            return _twiml_response(_twiml_empty())

        call_status = form.get("CallStatus", "").strip().lower()
        if call_status in TWILIO_TERMINAL_STATUSES:
            LOGGER.info("Twilio call %s reported status %s", call_sid, call_status)
            await orchestrator.handle_call_ended(call_sid)
            return _twiml_response(_twiml_empty())

        stream_url = orchestrator.stream_url_for(call_sid)
        if stream_url is None:
            return _twiml_response(_twiml_empty())
        return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


class VapiWebhookHandler(WebhookHandler):
    provider = "vapi"

    async def handle(self, request: Request, orchestrator: CallOrchestrator) -> Response:
        message = _as_dict((await _read_json(request)).get("message"))
        message_type = message.get("type")
        call_id = _as_dict(message.get("call")).get("id")

        if message_type == "tool-calls":
            results = []
            for tool_call in message.get("toolCallList") or []:
                tool_call = _as_dict(tool_call)
                tool_call_id = tool_call.get("id")
                if not tool_call_id:
                    continue
                result = await self._answer_tool_call(orchestrator, call_id, tool_call)
                results.append({"toolCallId": tool_call_id, "result": result})
            return JSONResponse({"results": results})

        if call_id and self._is_end_of_call(message):
            await orchestrator.handle_call_ended(str(call_id))
        return ok_response()

    async def _answer_tool_call(
        self,
        orchestrator: CallOrchestrator,
        call_id: Any,
        tool_call: dict[str, Any],
    ) -> str:
        function = _as_dict(tool_call.get("function"))
        if function.get("name") and function.get("name") != RELAY_TOOL_NAME:
            LOGGER.warning("Ignoring unknown Vapi tool %s", function.get("name"))
            return ""

        utterance = self.extract_utterance(function.get("arguments"))
        if not call_id or utterance is None:
            return ""

        reply = await orchestrator.relay_human_turn(str(call_id), utterance)
        if reply is None:
            # The session is gone; tell the voice agent to wrap up.
            return END_CALL_SENTINEL
        return reply

    @staticmethod
    def extract_utterance(arguments: Any) -> str | None:
        """Pull `user_message` out of tool arguments (a dict or a JSON string)."""

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                LOGGER.debug("Ignoring non-JSON tool arguments")
                return None
        utterance = _as_dict(arguments).get("user_message")
        return utterance if isinstance(utterance, str) else None

    @staticmethod
    def _is_end_of_call(message: dict[str, Any]) -> bool:
        message_type = message.get("type")
        if message_type == "end-of-call-report":
            return True
        return message_type == "status-update" and message.get("status") in VAPI_ENDED_STATUSES


_HANDLERS: dict[str, type[WebhookHandler]] = {
    handler.provider: handler
    for handler in (TelnyxWebhookHandler, TwilioWebhookHandler, VapiWebhookHandler)
}


def get_webhook_handler(provider: str) -> WebhookHandler:
    try:
        return _HANDLERS[provider]()
    except KeyError:
        raise ValueError(f"No webhook handler for provider: {provider}") from None
