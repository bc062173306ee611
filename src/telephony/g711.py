"""G.711 mu-law codec for 8kHz telephone audio."""

from __future__ import annotations

import numpy as np

BIAS = 0x84
CLIP = 32635


def _build_decode_table() -> np.ndarray:
    codes = np.bitwise_not(np.arange(256, dtype=np.uint8)).astype(np.int32)
    sign = codes & 0x80
    exponent = (codes & 0x70) >> 4
    mantissa = codes & 0x0F

    magnitude = ((mantissa << 3) + BIAS) << exponent
    pcm = magnitude - BIAS
    return np.where(sign != 0, -pcm, pcm).astype(np.int16)


_DECODE_TABLE = _build_decode_table()


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to a PCM16 int16 array."""

    return _DECODE_TABLE[np.frombuffer(ulaw_bytes, dtype=np.uint8)]


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode a PCM16 int16 array to G.711 mu-law bytes."""

    if pcm16.size == 0:
        return b""

    x = pcm16.astype(np.int32)
    sign = np.where(x < 0, 0x80, 0)
    magnitude = np.minimum(np.abs(x), CLIP) + BIAS

    # Segment = index of the highest set bit above bit 7.
    exponent = np.clip(np.floor(np.log2(magnitude)).astype(np.int32) - 7, 0, 7)
    mantissa = (magnitude >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not(sign | (exponent << 4) | mantissa).astype(np.uint8)
    return ulaw.tobytes()
