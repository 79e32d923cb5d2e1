"""JSON-based config store, session policy settings and API key lookup."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Callable, Optional

from dotenv import dotenv_values

from interfaces import CredentialCallback

logger = logging.getLogger(__name__)

API_KEY_ENV = "ELEVENLABS_API_KEY"
AUDIO_DEVICE_ENV = "AUDIO_INPUT_DEVICE"


@dataclass(frozen=True)
class SessionSettings:
    endpoint: str = "wss://api.elevenlabs.io/v1/speech-to-text/realtime"
    model_id: str = "scribe_v2_realtime"
    max_reconnect_attempts: int = 5
    backoff_cap_s: float = 30.0
    heartbeat_interval_s: float = 15.0
    heartbeat_timeout_s: float = 30.0
    max_buffer_chars: int = 2000
    paragraph_pause_s: float = 1.2
    send_queue_maxsize: int = 100
    capture_queue_maxsize: int = 50

    def with_overrides(self, overrides: dict) -> "SessionSettings":
        """Return a copy with known keys from ``overrides`` applied."""
        known = {f.name for f in fields(self)}
        values = {}
        for key, value in overrides.items():
            if key not in known:
                logger.warning("Ignoring unknown session setting %r", key)
                continue
            current = getattr(self, key)
            try:
                values[key] = type(current)(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid value for %s: %r", key, value)
        return replace(self, **values)


def load_env_value(key: str, env_path: Path | None = None) -> Optional[str]:
    """Look ``key`` up in the environment, then in a ``.env`` file."""
    value = os.environ.get(key, "")
    if value:
        return value

    path = env_path or Path.cwd() / ".env"
    if not path.is_file():
        return None
    return dotenv_values(path).get(key) or None


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "caption_layer" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def remove_api_key(self) -> None:
        data = self._read_all()
        if data.pop("api_key", None) is not None:
            self._write_all(data)

    def get_audio_device(self) -> str:
        data = self._read_all()
        return str(data.get("audio_device", "")) or (load_env_value(AUDIO_DEVICE_ENV) or "")

    def get_session_settings(self) -> SessionSettings:
        overrides = self._read_all().get("session", {})
        if not isinstance(overrides, dict):
            return SessionSettings()
        return SessionSettings().with_overrides(overrides)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class StoredCredentialProvider:
    """API key provider backed by the config store, env and ``.env``.

    ``prompt`` asks the user for a key and returns it, or None when the
    user cancels. It is only called from ``request_credential``.
    """

    def __init__(
        self,
        store: JsonConfigStore,
        prompt: Callable[[], Optional[str]],
        env_path: Path | None = None,
    ) -> None:
        self._store = store
        self._prompt = prompt
        self._env_path = env_path

    def get_credential(self) -> Optional[str]:
        return self._store.get_api_key() or load_env_value(API_KEY_ENV, self._env_path)

    def request_credential(self, callback: CredentialCallback) -> None:
        value = (self._prompt() or "").strip()
        if value:
            self._store.set_api_key(value)
        callback(value or None)

    def invalidate(self) -> None:
        self._store.remove_api_key()
