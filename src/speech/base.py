"""Shared abstractions for speech synthesis and streaming recognition."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

LOGGER = logging.getLogger(__name__)


class RecognitionError(Exception):
    """Raised to a waiting caller when the recognizer stream fails."""


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers."""

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """Return 8kHz mono G.711 mu-law audio for the given text."""


class RecognitionSession(ABC):
    """One streaming recognition session, fed with 8kHz mu-law audio.

    Final transcripts resolve the single outstanding `wait_for_transcript`
    call. Finals that arrive while nobody is waiting are discarded.
    """

    def __init__(self) -> None:
        self._waiter: asyncio.Future[str] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def start(self) -> None:
        """Open the underlying recognizer stream."""

    @abstractmethod
    def send_audio(self, audio: bytes) -> None:
        """Feed a chunk of inbound call audio."""

    async def wait_for_transcript(self, timeout: float) -> str:
        """Wait for the next final transcript; returns "" on timeout."""

        if self._closed:
            return ""
        if self._waiter is not None and not self._waiter.done():
            raise RuntimeError("Already waiting for a transcript")

        self._waiter = asyncio.get_running_loop().create_future()
        try:
            return await asyncio.wait_for(self._waiter, timeout)
        except asyncio.TimeoutError:
            LOGGER.info("Timeout waiting for transcript after %.1fs", timeout)
            return ""
        finally:
            self._waiter = None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close()
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result("")

    def _on_close(self) -> None:
        """Release recognizer resources. Must not raise."""

    def _emit_final(self, transcript: str) -> None:
        text = transcript.strip()
        if self._waiter is None or self._waiter.done():
            LOGGER.debug("Discarding transcript with no pending turn: %s", text)
            return
        LOGGER.info("Transcript: %s", text)
        self._waiter.set_result(text)

    def _emit_error(self, exc: BaseException) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(RecognitionError(str(exc)))


class BaseRecognizer(ABC):
    """Factory for per-call recognition sessions."""

    @abstractmethod
    def create_session(self) -> RecognitionSession:
        """Return a new, not yet started, recognition session."""
