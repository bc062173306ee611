"""Streaming speech recognition for the inbound call leg."""

from __future__ import annotations

import asyncio
import logging

from config.settings import Settings, get_settings
from speech.audio import CALL_SAMPLE_RATE, pcm16_resample
from speech.base import BaseRecognizer, RecognitionSession
from speech.vad import EnergyVAD, VADConfig
from telephony.g711 import ulaw_decode

LOGGER = logging.getLogger(__name__)


class GoogleRecognitionSession(RecognitionSession):
    """Google Cloud Speech streaming session over 8kHz mu-law audio."""

    def __init__(self, client, streaming_config, speech_module) -> None:
        super().__init__()
        self._client = client
        self._streaming_config = streaming_config
        self._speech = speech_module
        self._audio: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        responses = await self._client.streaming_recognize(requests=self._requests())
        self._task = asyncio.create_task(self._consume(responses))

    def send_audio(self, audio: bytes) -> None:
        if not self.closed:
            self._audio.put_nowait(audio)

    async def _requests(self):
        yield self._speech.StreamingRecognizeRequest(streaming_config=self._streaming_config)
        while True:
            chunk = await self._audio.get()
            if chunk is None:
                return
            yield self._speech.StreamingRecognizeRequest(audio_content=chunk)

    async def _consume(self, responses) -> None:
        try:
            async for response in responses:
                for result in response.results:
                    if result.is_final and result.alternatives:
                        self._emit_final(result.alternatives[0].transcript)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Google streaming recognition failed")
            self._emit_error(exc)

    def _on_close(self) -> None:
        self._audio.put_nowait(None)
        if self._task is not None and not self._task.done():
            self._task.cancel()


class GoogleStreamingRecognizer(BaseRecognizer):
    """Wrapper around google-cloud-speech streaming recognition."""

    def __init__(self, settings: Settings | None = None) -> None:
        try:
            from google.cloud import speech
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-cloud-speech is required for GoogleStreamingRecognizer."
            ) from exc

        settings = settings or get_settings()
        self._speech = speech
        # Relies on GOOGLE_APPLICATION_CREDENTIALS or gcloud auth.
        self._client = speech.SpeechAsyncClient()
        self._streaming_config = speech.StreamingRecognitionConfig(
            config=speech.RecognitionConfig(
                encoding=speech.RecognitionConfig.AudioEncoding.MULAW,
                sample_rate_hertz=CALL_SAMPLE_RATE,
                language_code=settings.language_code,
                enable_automatic_punctuation=True,
                model=settings.stt_model,
                use_enhanced=True,
            ),
            interim_results=False,
        )

    def create_session(self) -> RecognitionSession:
        return GoogleRecognitionSession(self._client, self._streaming_config, self._speech)


class WhisperRecognitionSession(RecognitionSession):
    """Local recognition: energy VAD cuts utterances, Whisper transcribes them."""

    def __init__(self, transcriber, vad_config: VADConfig | None = None) -> None:
        super().__init__()
        self._transcriber = transcriber
        self._vad = EnergyVAD(vad_config)
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._vad.reset()

    def send_audio(self, audio: bytes) -> None:
        if self.closed:
            return
        for utterance in self._vad.feed(ulaw_decode(audio)):
            task = asyncio.create_task(self._transcribe(utterance))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _transcribe(self, pcm8k) -> None:
        from speech.transcriber import WHISPER_SAMPLE_RATE, merge_segments

        pcm16k = pcm16_resample(pcm8k, CALL_SAMPLE_RATE, WHISPER_SAMPLE_RATE)
        try:
            segments = await asyncio.to_thread(self._transcriber.transcribe, pcm16k)
        except Exception as exc:
            LOGGER.exception("Whisper transcription failed")
            self._emit_error(exc)
            return

        text = merge_segments(segments)
        if text and not self.closed:
            self._emit_final(text)

    def _on_close(self) -> None:
        for task in list(self._tasks):
            task.cancel()


class WhisperRecognizer(BaseRecognizer):
    def __init__(self, settings: Settings | None = None, transcriber=None) -> None:
        if transcriber is None:
            # Lazy import to avoid loading the model unless whisper is selected.
            from speech.transcriber import WhisperTranscriber

            transcriber = WhisperTranscriber(settings)
        self._transcriber = transcriber

    def create_session(self) -> RecognitionSession:
        return WhisperRecognitionSession(self._transcriber)


def build_recognizer(settings: Settings | None = None) -> BaseRecognizer:
    """Factory returning the configured recognizer."""

    settings = settings or get_settings()
    if settings.stt_provider == "google":
        return GoogleStreamingRecognizer(settings)
    if settings.stt_provider == "whisper":
        return WhisperRecognizer(settings)
    raise ValueError(f"Unsupported STT provider: {settings.stt_provider}")
