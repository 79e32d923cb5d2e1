"""Running transcript built from partial and committed fragments."""

from __future__ import annotations

import time
from typing import Callable, Optional

PLACEHOLDER = "Listening..."
MARKER_TOKEN = "[tab]"


class TranscriptAssembler:
    """Merge streaming transcript fragments into a bounded caption buffer.

    Committed text only ever grows at the end; when it exceeds
    ``max_chars`` the oldest characters are dropped. A commit that arrives
    ``paragraph_pause_s`` or more after the previous one starts a new line.
    """

    def __init__(
        self,
        max_chars: int = 2000,
        paragraph_pause_s: float = 1.2,
        placeholder: str = PLACEHOLDER,
        marker_token: str = MARKER_TOKEN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_chars = max_chars
        self._paragraph_pause_s = paragraph_pause_s
        self._placeholder = placeholder
        self._marker_token = marker_token
        self._clock = clock

        self.committed_text = ""
        self.partial_text = ""
        self.last_commit_at: Optional[float] = None

    def apply_partial(self, text: str) -> None:
        self.partial_text = text

    def apply_commit(self, text: str) -> None:
        if text:
            now = self._clock()
            self.committed_text = self._truncate(
                (self.committed_text + self._separator(now) + text).strip()
            )
            self.last_commit_at = now
        self.partial_text = ""

    def insert_marker(self) -> None:
        prefix = " " if self.committed_text else ""
        self.committed_text = self._truncate(
            self.committed_text + prefix + self._marker_token + " "
        )

    def reset(self) -> None:
        self.committed_text = ""
        self.partial_text = ""

    def display_text(self) -> str:
        combined = (self.committed_text + " " + self.partial_text).strip()
        return combined or self._placeholder

    def _separator(self, now: float) -> str:
        if not self.committed_text:
            return ""
        if self.last_commit_at is None or now - self.last_commit_at >= self._paragraph_pause_s:
            return "\n"
        return " "

    def _truncate(self, text: str) -> str:
        if len(text) <= self._max_chars:
            return text
        return text[len(text) - self._max_chars:]
