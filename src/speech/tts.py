"""Text-to-speech synthesis producing audio ready for the call leg."""

from __future__ import annotations

import asyncio
import logging
from xml.sax.saxutils import escape

from config.settings import Settings, get_settings
from speech.audio import CALL_SAMPLE_RATE, to_call_audio
from speech.base import BaseSynthesizer

LOGGER = logging.getLogger(__name__)


class GoogleSynthesizer(BaseSynthesizer):
    """Wrapper around Google Cloud Text-to-Speech."""

    def __init__(self, settings: Settings | None = None) -> None:
        try:
            from google.cloud import texttospeech
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-cloud-texttospeech is required for GoogleSynthesizer."
            ) from exc

        settings = settings or get_settings()
        self._tts = texttospeech
        # Relies on GOOGLE_APPLICATION_CREDENTIALS or gcloud auth.
        self._client = texttospeech.TextToSpeechAsyncClient()
        self._voice = texttospeech.VoiceSelectionParams(
            language_code=settings.language_code,
            name=settings.tts_voice,
        )
        self._audio_config = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding.MULAW,
            sample_rate_hertz=CALL_SAMPLE_RATE,
        )

    async def synthesize(self, text: str) -> bytes:
        response = await self._client.synthesize_speech(
            input=self._tts.SynthesisInput(text=text),
            voice=self._voice,
            audio_config=self._audio_config,
        )
        if not response.audio_content:
            raise RuntimeError("No audio content received from TTS")

        # MULAW responses come wrapped in a WAV header.
        return to_call_audio(response.audio_content)


class AzureSynthesizer(BaseSynthesizer):
    """Wrapper around Azure Cognitive Services Speech SDK."""

    def __init__(self, settings: Settings | None = None) -> None:
        try:
            import azure.cognitiveservices.speech as speechsdk
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "azure-cognitiveservices-speech is required for AzureSynthesizer."
            ) from exc

        settings = settings or get_settings()
        if not settings.azure_speech_key or not settings.azure_speech_region:
            raise ValueError("Azure speech key and region must be configured.")

        speech_config = speechsdk.SpeechConfig(
            subscription=settings.azure_speech_key,
            region=settings.azure_speech_region,
        )
        speech_config.speech_synthesis_voice_name = settings.tts_voice
        speech_config.set_speech_synthesis_output_format(
            speechsdk.SpeechSynthesisOutputFormat.Raw8Khz8BitMonoMULaw
        )

        self._speechsdk = speechsdk
        self._speech_config = speech_config
        self._language = settings.language_code
        self._voice = settings.tts_voice

    async def synthesize(self, text: str) -> bytes:
        synthesizer = self._speechsdk.SpeechSynthesizer(
            speech_config=self._speech_config,
            audio_config=None,  # allow retrieving audio data directly
        )
        ssml = self._build_ssml(text=text, voice_name=self._voice, language=self._language)
        result = await asyncio.to_thread(lambda: synthesizer.speak_ssml_async(ssml).get())

        if result.reason == self._speechsdk.ResultReason.Canceled:
            cancellation = result.cancellation_details
            raise RuntimeError(f"Azure TTS canceled: {cancellation.error_details}")

        return bytes(result.audio_data)

    @staticmethod
    def _build_ssml(text: str, voice_name: str, language: str) -> str:
        return (
            f"<speak version='1.0' xml:lang='{escape(language)}'>"
            f"<voice name='{escape(voice_name)}'>{escape(text)}</voice>"
            "</speak>"
        )


def build_synthesizer(settings: Settings | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = settings or get_settings()
    if settings.tts_provider == "google":
        return GoogleSynthesizer(settings)
    if settings.tts_provider == "azure":
        return AzureSynthesizer(settings)
    raise ValueError(f"Unsupported TTS provider: {settings.tts_provider}")
