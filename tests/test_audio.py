"""Tests for AudioResampler and audio_level."""

from __future__ import annotations

import numpy as np
import pytest

from audio import AudioResampler, audio_level
from errors import AudioConversionError
from models import AudioFrame


def _float_frame(samples: np.ndarray, sample_rate: int = 48000, channels: int = 2) -> AudioFrame:
    return AudioFrame(
        data=samples.astype(np.float32).tobytes(),
        sample_rate=sample_rate,
        channels=channels,
        sample_format="float32",
    )


# ---------------------------------------------------------------
# AudioResampler
# ---------------------------------------------------------------

def test_stereo_48k_float_becomes_mono_16k_int16() -> None:
    stereo = np.zeros((4800, 2), dtype=np.float32)  # 100ms at 48kHz
    stereo[:, 0] = 0.5
    stereo[:, 1] = 0.5

    pcm = AudioResampler().resample(_float_frame(stereo.reshape(-1)))
    out = np.frombuffer(pcm, dtype="<i2")

    assert out.size == 1600
    assert np.all(np.abs(out.astype(np.int32) - 16384) <= 2)


def test_channels_are_averaged() -> None:
    stereo = np.array([[0.5, -0.5]] * 480, dtype=np.float32)
    pcm = AudioResampler().resample(_float_frame(stereo.reshape(-1)))

    assert np.all(np.frombuffer(pcm, dtype="<i2") == 0)


def test_int16_at_target_rate_passes_through() -> None:
    samples = np.arange(-800, 800, dtype=np.int16)
    frame = AudioFrame(
        data=samples.tobytes(), sample_rate=16000, channels=1, sample_format="int16"
    )

    pcm = AudioResampler().resample(frame)

    assert np.array_equal(np.frombuffer(pcm, dtype="<i2"), samples)


def test_variable_frame_counts_are_tolerated() -> None:
    resampler = AudioResampler()
    sizes = []
    for frames in (441, 1024, 4410, 7):
        mono = np.zeros(frames, dtype=np.float32)
        sizes.append(len(resampler.resample(_float_frame(mono, 44100, 1))) // 2)

    assert sizes == [160, 372, 1600, 3]


def _sine(freq: float, rate: int = 48000, frames: int = 4800, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(frames) / rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def _rms(pcm: bytes, trim: int = 50) -> float:
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float64) / 32768.0
    samples = samples[trim:-trim]
    return float(np.sqrt(np.mean(samples * samples)))


def test_content_above_target_nyquist_is_filtered_out() -> None:
    # 12 kHz would fold back to 4 kHz when decimating to 16 kHz.
    pcm = AudioResampler().resample(_float_frame(_sine(12000), 48000, 1))

    assert len(pcm) // 2 == 1600
    assert _rms(pcm) < 0.05


def test_speech_band_passes_through() -> None:
    pcm = AudioResampler().resample(_float_frame(_sine(1000), 48000, 1))

    assert _rms(pcm) == pytest.approx(0.5 / np.sqrt(2), rel=0.05)


def test_clipping_stays_in_int16_range() -> None:
    loud = np.full(960, 4.0, dtype=np.float32)
    pcm = AudioResampler().resample(_float_frame(loud, 48000, 1))

    assert np.all(np.frombuffer(pcm, dtype="<i2") == 32767)


def test_empty_buffer_gives_empty_bytes() -> None:
    assert AudioResampler().resample(_float_frame(np.zeros(0))) == b""


@pytest.mark.parametrize(
    "frame",
    [
        AudioFrame(data=b"\x00" * 8, sample_format="float64"),
        AudioFrame(data=b"\x00" * 7, channels=2, sample_format="float32"),
        AudioFrame(data=b"\x00" * 8, sample_rate=0, sample_format="float32"),
        AudioFrame(data=b"\x00" * 8, channels=0, sample_format="float32"),
    ],
)
def test_malformed_frames_raise_conversion_error(frame: AudioFrame) -> None:
    with pytest.raises(AudioConversionError):
        AudioResampler().resample(frame)


# ---------------------------------------------------------------
# audio_level
# ---------------------------------------------------------------

def test_silence_is_zero() -> None:
    assert audio_level(b"\x00\x00" * 1600) == 0.0


def test_full_scale_is_one() -> None:
    pcm = np.full(1600, 32767, dtype="<i2").tobytes()
    assert audio_level(pcm) == pytest.approx(1.0, abs=1e-3)


def test_minus_30_db_is_half() -> None:
    amplitude = int(round(32768 * 10 ** (-30 / 20)))
    pcm = np.full(1600, amplitude, dtype="<i2").tobytes()
    assert audio_level(pcm) == pytest.approx(0.5, abs=1e-3)


def test_empty_pcm_is_zero() -> None:
    assert audio_level(b"") == 0.0
