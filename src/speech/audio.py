"""Audio conversions between synthesizer output and the 8kHz mu-law call leg."""

from __future__ import annotations

import io

import numpy as np
import soundfile as sf

from telephony.g711 import ulaw_encode

CALL_SAMPLE_RATE = 8000


def pcm16_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate:
        return pcm
    if pcm.size == 0:
        return pcm.astype(np.int16)

    x_old = np.arange(pcm.size, dtype=np.float32)
    x_new = np.linspace(0, pcm.size - 1, int(pcm.size * dst_rate / src_rate), dtype=np.float32)

    y_new = np.interp(x_new, x_old, pcm.astype(np.float32))
    return np.clip(y_new, -32768, 32767).astype(np.int16)


def to_call_audio(audio: bytes) -> bytes:
    """Return 8kHz mu-law bytes for either raw mu-law or a WAV container.

    Raw input is assumed to already be 8kHz mu-law and is passed through.
    """

    if not audio.startswith(b"RIFF"):
        return audio

    with sf.SoundFile(io.BytesIO(audio), mode="r") as wav:
        pcm = wav.read(dtype="int16")
        src_rate = int(wav.samplerate)

    if pcm.ndim > 1:
        pcm = pcm.mean(axis=1).astype(np.int16)

    return ulaw_encode(pcm16_resample(pcm, src_rate, CALL_SAMPLE_RATE))
