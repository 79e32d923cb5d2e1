"""Lifecycle orchestration for the caption pipeline."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, Optional

from audio import AudioResampler, audio_level
from config import SessionSettings
from errors import (
    AUDIO_CONVERSION_FAILED,
    AUTH_FAILED,
    ERROR_MESSAGES,
    MISSING_API_KEY,
    AudioConversionError,
)
from interfaces import CaptionSink, CredentialProvider, Recorder
from models import AudioFrame, SessionState
from stream_session import StreamSession
from transcript import TranscriptAssembler

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., StreamSession]

PAUSED_TEXT = "Paused"
CAPTURE_FAILED_TEXT = "Unable to capture system audio."


class SessionController:
    def __init__(
        self,
        recorder: Recorder,
        credentials: CredentialProvider,
        sink: CaptionSink,
        settings: Optional[SessionSettings] = None,
        session_factory: SessionFactory = StreamSession,
        resampler: Optional[AudioResampler] = None,
        transcript: Optional[TranscriptAssembler] = None,
    ) -> None:
        self._recorder = recorder
        self._credentials = credentials
        self._sink = sink
        self._settings = settings or SessionSettings()
        self._resampler = resampler or AudioResampler()
        self._transcript = transcript or TranscriptAssembler(
            max_chars=self._settings.max_buffer_chars,
            paragraph_pause_s=self._settings.paragraph_pause_s,
        )
        self._session = session_factory(
            settings=self._settings,
            on_ready=self._handle_ready,
            on_partial=self._handle_partial,
            on_commit=self._handle_commit,
            on_status=self._publish,
            on_auth_error=self._handle_auth_error,
            on_connection_lost=self._handle_connection_lost,
        )

        # _transcript_lock is always taken before _lock, never after.
        self._lock = threading.RLock()
        self._transcript_lock = threading.Lock()
        self._credential: Optional[str] = None
        self._running = False
        self._ui_paused = False
        self._pending_text: Optional[str] = None
        self._audio_queue: Queue[AudioFrame | None] = Queue(
            maxsize=self._settings.capture_queue_maxsize
        )
        self._worker: Optional[threading.Thread] = None
        self.dropped_chunks = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def session_state(self) -> SessionState:
        return self._session.state

    def display_text(self) -> str:
        with self._transcript_lock:
            return self._transcript.display_text()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            credential = self._credential or self._credentials.get_credential()
        if credential:
            self._begin(credential)
            return
        self._credentials.request_credential(self._handle_credential)

    def stop(self) -> None:
        self._shutdown(PAUSED_TEXT)

    def pause_ui_updates(self, paused: bool) -> None:
        with self._lock:
            self._ui_paused = paused
            if paused:
                return
            text, self._pending_text = self._pending_text, None
            if text is not None:
                self._sink.on_display_text_changed(text)

    def clear(self) -> None:
        with self._transcript_lock:
            self._transcript.reset()
            self._publish(self._transcript.display_text())

    def insert_marker(self) -> None:
        with self._transcript_lock:
            self._transcript.insert_marker()
            self._publish(self._transcript.display_text())

    def _handle_credential(self, credential: Optional[str]) -> None:
        if not credential:
            logger.error("Missing ELEVENLABS_API_KEY")
            self._publish(ERROR_MESSAGES[MISSING_API_KEY])
            return
        self._begin(credential)

    def _begin(self, credential: str) -> None:
        with self._lock:
            if self._running:
                return
            self._credential = credential
            self._running = True
            self._audio_queue = Queue(maxsize=self._audio_queue.maxsize)
            audio_queue = self._audio_queue
            self._worker = threading.Thread(
                target=self._capture_worker,
                args=(audio_queue,),
                name="capture-worker",
                daemon=True,
            )
            self._worker.start()

        self._publish(self.display_text())
        self._session.start(credential)
        try:
            self._recorder.start(audio_queue)
        except Exception as exc:
            logger.error("System audio capture error: %s", exc)
            self._publish(CAPTURE_FAILED_TEXT)

    def _shutdown(self, status: Optional[str]) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            audio_queue = self._audio_queue
            worker = self._worker
            self._worker = None

        self._safe_stop_recorder()
        _put_sentinel(audio_queue)
        self._session.stop()
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=0.5)
        if status is not None:
            self._publish(status)

    # ------------------------------------------------------------------
    # Audio pipeline (capture worker thread)
    # ------------------------------------------------------------------

    def _capture_worker(self, audio_queue: Queue[AudioFrame | None]) -> None:
        while True:
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                if not self._running:
                    return
                continue
            if frame is None:  # Sentinel
                return
            self.process_frame(frame)

    def process_frame(self, frame: AudioFrame) -> bool:
        """Convert one captured frame and hand it to the session."""
        try:
            pcm = self._resampler.resample(frame)
        except AudioConversionError as exc:
            self.dropped_chunks += 1
            logger.warning("%s %s", ERROR_MESSAGES[AUDIO_CONVERSION_FAILED], exc)
            return False
        if not pcm:
            return False
        self._sink.on_audio_level_changed(audio_level(pcm))
        return self._session.send_audio(pcm)

    # ------------------------------------------------------------------
    # Session callbacks (receive thread)
    # ------------------------------------------------------------------

    def _handle_ready(self) -> None:
        self._publish(self.display_text())

    def _handle_partial(self, text: str) -> None:
        with self._transcript_lock:
            self._transcript.apply_partial(text)
            self._publish(self._transcript.display_text())

    def _handle_commit(self, text: str) -> None:
        with self._transcript_lock:
            self._transcript.apply_commit(text)
            self._publish(self._transcript.display_text())

    def _handle_auth_error(self) -> None:
        logger.error("API key rejected, removing stored credential")
        with self._lock:
            self._credential = None
        self._credentials.invalidate()
        self._shutdown(ERROR_MESSAGES[AUTH_FAILED])
        self._sink.on_fatal_auth_error()

    def _handle_connection_lost(self) -> None:
        # The session has already published the status text.
        self._shutdown(None)
        self._sink.on_connection_lost()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _publish(self, text: str) -> None:
        with self._lock:
            if self._ui_paused:
                self._pending_text = text
                return
            self._sink.on_display_text_changed(text)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception as exc:
            logger.warning("Failed to stop recorder: %s", exc)


def _put_sentinel(audio_queue: Queue[AudioFrame | None]) -> None:
    while True:
        try:
            audio_queue.put_nowait(None)
            return
        except Full:
            try:
                audio_queue.get_nowait()
            except Empty:
                pass
