"""Telephony components: provider adapters, webhook normalization, and the media bridge.

Direct-media providers (Telnyx, Twilio) stream raw 8kHz mu-law audio over a
websocket; relay providers (Vapi) run their own voice agent and forward the
human's utterances as tool calls.
"""
