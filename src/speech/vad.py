from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np


@dataclass(slots=True)
class VADConfig:
    frame_samples: int = 160  # 20ms at 8kHz
    start_frames: int = 3
    end_frames: int = 35  # ~700ms of trailing silence ends a phone utterance
    preroll_frames: int = 10
    min_utterance_frames: int = 15
    min_rms: float = 250.0
    threshold_mult: float = 3.0
    noise_alpha: float = 0.05


class EnergyVAD:
    """Energy-based utterance segmenter for telephone audio.

    Adapts to a per-call noise floor. Audio of any length is accepted; it is
    cut into fixed frames and complete utterances are yielded as PCM16 arrays.
    """

    def __init__(self, cfg: VADConfig | None = None) -> None:
        self.cfg = cfg or VADConfig()
        self._remainder = np.empty(0, dtype=np.int16)
        self.reset()

    def reset(self) -> None:
        self._noise_rms = 0.0
        self._in_speech = False
        self._speech_run = 0
        self._silence_run = 0
        self._preroll: deque[np.ndarray] = deque(maxlen=self.cfg.preroll_frames)
        self._utterance: list[np.ndarray] = []

    @property
    def in_speech(self) -> bool:
        return self._in_speech

    def threshold(self) -> float:
        return max(self.cfg.min_rms, self._noise_rms * self.cfg.threshold_mult)

    def feed(self, pcm: np.ndarray) -> Iterator[np.ndarray]:
        """Push PCM16 samples and yield every utterance completed by them."""

        size = self.cfg.frame_samples
        data = np.concatenate([self._remainder, pcm]) if self._remainder.size else pcm
        usable = data.size - (data.size % size)
        self._remainder = data[usable:].copy()

        for start in range(0, usable, size):
            utterance = self.push_frame(data[start : start + size])
            if utterance is not None:
                yield utterance

    def push_frame(self, frame: np.ndarray) -> np.ndarray | None:
        """Push one frame; returns the utterance when this frame ends one."""

        rms = _rms(frame)
        is_voice = rms >= self.threshold()

        if not self._in_speech:
            if not is_voice:
                self._noise_rms += self.cfg.noise_alpha * (rms - self._noise_rms)
            self._preroll.append(frame)
            self._speech_run = self._speech_run + 1 if is_voice else 0

            if self._speech_run >= self.cfg.start_frames:
                self._in_speech = True
                self._utterance = list(self._preroll)
                self._preroll.clear()
                self._silence_run = 0
            return None

        self._utterance.append(frame)
        self._silence_run = 0 if is_voice else self._silence_run + 1
        if self._silence_run < self.cfg.end_frames:
            return None

        frames = self._utterance
        self._utterance = []
        self._in_speech = False
        self._speech_run = 0
        self._silence_run = 0

        if len(frames) < self.cfg.min_utterance_frames:
            return None
        return np.concatenate(frames)


def _rms(frame: np.ndarray) -> float:
    if frame.size == 0:
        return 0.0
    x = frame.astype(np.float32)
    return float(np.sqrt(np.mean(x * x)))
