"""System audio recorder adapter.

Frames are delivered in the device's native format; conversion to the
wire format happens in the controller's capture worker.
"""

from __future__ import annotations

import logging
import threading
from queue import Full, Queue
from typing import Any, Optional

from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        device_name: str = "",
        chunk_ms: int = 100,
    ) -> None:
        self.device_name = device_name
        self.chunk_ms = chunk_ms
        self.sample_rate = 0
        self.channels = 0
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            device = self._find_device()
            info = sd.query_devices(device, "input")
            self.sample_rate = int(info["default_samplerate"])
            self.channels = max(1, min(2, int(info["max_input_channels"])))
            self._audio_queue = audio_queue
            self._stream = sd.RawInputStream(
                device=device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=int(self.sample_rate * (self.chunk_ms / 1000.0)),
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True
            logger.info(
                "Capturing from %s (%d ch @ %d Hz)",
                info.get("name", "default device"),
                self.channels,
                self.sample_rate,
            )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                self._emit_sentinel_if_needed()
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            self._emit_sentinel_if_needed()

    def _find_device(self) -> Optional[int]:
        """Index of the first input device whose name contains ``device_name``."""
        if not self.device_name:
            return None
        wanted = self.device_name.lower()
        for index, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0 and wanted in str(device["name"]).lower():
                return index
        logger.warning("Audio device %r not found, using default input", self.device_name)
        return None

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._audio_queue is None:
            return
        if status:
            logger.debug("Capture status: %s", status)
        frame = AudioFrame(
            data=bytes(indata),
            sample_rate=self.sample_rate,
            channels=self.channels,
            sample_format="float32",
        )
        try:
            self._audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel_if_needed(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            pass
