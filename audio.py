"""PCM conversion to the wire format and loudness metering."""

from __future__ import annotations

import math

import numpy as np
from scipy import signal

from errors import AudioConversionError
from models import AudioFrame

TARGET_SAMPLE_RATE = 16000

_DTYPES = {
    "int16": np.int16,
    "float32": np.float32,
}


class AudioResampler:
    """Convert native capture frames to mono 16-bit PCM at a fixed rate."""

    def __init__(self, target_rate: int = TARGET_SAMPLE_RATE) -> None:
        self.target_rate = target_rate

    def resample(self, frame: AudioFrame) -> bytes:
        """Return mono int16 little-endian bytes at ``target_rate``.

        Raises AudioConversionError when the frame cannot be decoded.
        """
        mono = self._to_mono(frame)
        if mono.size == 0:
            return b""
        if frame.sample_rate != self.target_rate:
            mono = self._resample_poly(mono, frame.sample_rate)
        return _to_int16(mono).astype("<i2").tobytes()

    def _to_mono(self, frame: AudioFrame) -> np.ndarray:
        dtype = _DTYPES.get(frame.sample_format)
        if dtype is None:
            raise AudioConversionError(f"unsupported sample format: {frame.sample_format}")
        if frame.channels <= 0 or frame.sample_rate <= 0:
            raise AudioConversionError(
                f"invalid stream format: {frame.channels} ch @ {frame.sample_rate} Hz"
            )
        frame_bytes = np.dtype(dtype).itemsize * frame.channels
        if len(frame.data) % frame_bytes:
            raise AudioConversionError(
                f"buffer of {len(frame.data)} bytes is not a whole number of frames"
            )

        samples = np.frombuffer(frame.data, dtype=dtype)
        if dtype is np.int16:
            samples = samples.astype(np.float32) / 32768.0
        else:
            samples = samples.astype(np.float32)
        if frame.channels > 1:
            samples = samples.reshape(-1, frame.channels).mean(axis=1)
        return samples

    def _resample_poly(self, mono: np.ndarray, source_rate: int) -> np.ndarray:
        # Low-passes below the target Nyquist before decimating.
        g = math.gcd(source_rate, self.target_rate)
        up = self.target_rate // g
        down = source_rate // g
        # Pad with the edge samples so chunk boundaries are not pulled toward zero.
        return signal.resample_poly(mono, up, down, padtype="edge")


def _to_int16(samples: np.ndarray) -> np.ndarray:
    scaled = np.clip(samples * 32768.0, -32768, 32767)
    return scaled.astype(np.int16)


def audio_level(pcm16: bytes) -> float:
    """Normalized loudness in [0, 1] on a -60..0 dBFS scale."""
    samples = np.frombuffer(pcm16, dtype="<i2")
    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float64) / 32768.0
    rms = float(np.sqrt(np.mean(normalized * normalized)))
    db = 20 * math.log10(max(rms, 1e-4))
    return min(max((db + 60) / 60, 0.0), 1.0)
