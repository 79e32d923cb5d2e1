"""Protocol interfaces used by SessionController and StreamSession."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Optional, Protocol, Union

from models import AudioFrame

CredentialCallback = Callable[[Optional[str]], None]


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class CaptionSink(Protocol):
    def on_display_text_changed(self, text: str) -> None: ...

    def on_audio_level_changed(self, level: float) -> None: ...

    def on_fatal_auth_error(self) -> None: ...

    def on_connection_lost(self) -> None: ...


class CredentialProvider(Protocol):
    def get_credential(self) -> Optional[str]: ...

    def request_credential(self, callback: CredentialCallback) -> None: ...

    def invalidate(self) -> None: ...


class Connection(Protocol):
    """The subset of a synchronous websocket client used by StreamSession."""

    def send(self, message: str) -> None: ...

    def recv(self) -> Union[str, bytes]: ...

    def ping(self) -> object: ...

    def close(self) -> None: ...
