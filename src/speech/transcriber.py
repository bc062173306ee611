"""Local speech-to-text transcriber based on faster-whisper."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
from faster_whisper import WhisperModel

from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


@dataclass
class TranscriptionSegment:
    """Structured representation of a Whisper transcription segment."""

    start: float
    end: float
    text: str
    logprob: float


class WhisperTranscriber:
    """Blocking utterance transcription; call it from a worker thread."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._language = settings.language_code.split("-")[0] or None
        self._model = WhisperModel(
            model_size_or_path=settings.whisper_model_size,
            device=settings.whisper_device,
            compute_type=settings.whisper_compute_type,
        )
        LOGGER.info("Loaded whisper model %s", settings.whisper_model_size)

    def transcribe(self, pcm16k: np.ndarray) -> list[TranscriptionSegment]:
        """Transcribe one utterance of 16kHz PCM16 samples."""

        audio = pcm16k.astype(np.float32) / 32768.0
        segments, _info = self._model.transcribe(
            audio,
            beam_size=5,
            task="transcribe",
            language=self._language,
            condition_on_previous_text=False,
            vad_filter=False,
            temperature=0.0,
        )

        results: list[TranscriptionSegment] = []
        for segment in segments:
            text = segment.text.strip()
            if not text:
                continue
            results.append(
                TranscriptionSegment(
                    start=segment.start,
                    end=segment.end,
                    text=text,
                    logprob=segment.avg_logprob,
                )
            )

        return results


def merge_segments(segments: Iterable[TranscriptionSegment]) -> str:
    """Merge segments into a single string."""

    return " ".join(segment.text for segment in segments).strip()
