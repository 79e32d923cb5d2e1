"""Shared error codes and user-facing messages."""

from __future__ import annotations

NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
TRANSCRIBER_ERROR = "TRANSCRIBER_ERROR"
INPUT_ERROR = "INPUT_ERROR"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
CONNECTION_LOST = "CONNECTION_LOST"
AUDIO_CONVERSION_FAILED = "AUDIO_CONVERSION_FAILED"
MISSING_API_KEY = "MISSING_API_KEY"

ERROR_MESSAGES = {
    NETWORK_ERROR: "Reconnecting...",
    AUTH_FAILED: "There was an error. Is your token correct?",
    QUOTA_EXCEEDED: "Transcription quota exceeded.",
    TRANSCRIBER_ERROR: "Transcriber failed on the server.",
    INPUT_ERROR: "Server rejected the audio input.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    CONNECTION_LOST: "Connection lost. Pausing...",
    AUDIO_CONVERSION_FAILED: "Audio chunk could not be converted.",
    MISSING_API_KEY: "API key required.",
}

# Inbound ``message_type`` values mapped to their error code.
SERVICE_ERROR_CODES = {
    "auth_error": AUTH_FAILED,
    "quota_exceeded": QUOTA_EXCEEDED,
    "transcriber_error": TRANSCRIBER_ERROR,
    "input_error": INPUT_ERROR,
    "error": ASR_PROTOCOL_ERROR,
}


class AudioConversionError(ValueError):
    """Raised when a captured buffer cannot be converted to 16 kHz PCM."""
