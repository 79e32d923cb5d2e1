"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    READY = "READY"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


class MessageType(str, Enum):
    SESSION_STARTED = "session_started"
    PARTIAL_TRANSCRIPT = "partial_transcript"
    COMMITTED_TRANSCRIPT = "committed_transcript"
    COMMITTED_TRANSCRIPT_WITH_TIMESTAMPS = "committed_transcript_with_timestamps"
    INPUT_AUDIO_CHUNK = "input_audio_chunk"


@dataclass
class AudioFrame:
    """A raw capture buffer in the device's native, interleaved format."""

    data: bytes
    sample_rate: int = 48000
    channels: int = 2
    sample_format: str = "float32"


@dataclass
class ServerMessage:
    message_type: str
    text: str = ""
    error: str = ""
