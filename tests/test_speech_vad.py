from __future__ import annotations

import numpy as np

from speech.vad import EnergyVAD, VADConfig


def _cfg() -> VADConfig:
    return VADConfig(
        start_frames=2,
        end_frames=3,
        preroll_frames=2,
        min_utterance_frames=2,
        min_rms=50.0,
        threshold_mult=2.0,
        noise_alpha=0.2,
    )


def test_energy_vad_detects_utterance_end() -> None:
    vad = EnergyVAD(_cfg())

    silence = np.zeros(160, dtype=np.int16)
    voice = (np.ones(160, dtype=np.int16) * 2000).astype(np.int16)

    # Prime noise floor with silence.
    for _ in range(5):
        assert vad.push_frame(silence) is None

    # Start speech.
    assert vad.push_frame(voice) is None
    assert vad.push_frame(voice) is None
    assert vad.in_speech is True

    # End speech with enough silence frames.
    for _ in range(2):
        assert vad.push_frame(silence) is None

    utt = vad.push_frame(silence)
    assert utt is not None
    assert utt.dtype == np.int16
    assert utt.size > 0
    assert vad.in_speech is False


def test_feed_accepts_arbitrary_chunk_sizes() -> None:
    vad = EnergyVAD(_cfg())

    silence = np.zeros(160 * 5, dtype=np.int16)
    voice = np.full(160 * 4, 2000, dtype=np.int16)
    stream = np.concatenate([silence, voice, silence])

    utterances = []
    for offset in range(0, stream.size, 37):
        utterances.extend(vad.feed(stream[offset : offset + 37]))

    assert len(utterances) == 1
    assert utterances[0].size % 160 == 0


def test_short_blips_are_not_utterances() -> None:
    cfg = _cfg()
    cfg.min_utterance_frames = 10
    vad = EnergyVAD(cfg)

    silence = np.zeros(160 * 5, dtype=np.int16)
    voice = np.full(160 * 2, 2000, dtype=np.int16)

    assert list(vad.feed(np.concatenate([silence, voice, silence]))) == []
