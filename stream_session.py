"""Realtime transcription session over a persistent WebSocket.

The session owns the connection state machine::

    IDLE -> CONNECTING -> READY -> RECONNECTING -> CONNECTING ... -> CLOSED

Each connection attempt runs on its own receive thread, with a companion
send thread draining a FIFO of encoded audio chunks and a watchdog thread
that pings the server and detects silent connections. Failures schedule a
reconnect with exponential backoff until the retry limit is reached.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Callable, Optional, Union
from urllib.parse import urlencode

from websockets.sync.client import connect as ws_connect

from audio import TARGET_SAMPLE_RATE
from config import SessionSettings
from errors import CONNECTION_LOST, ERROR_MESSAGES, NETWORK_ERROR, SERVICE_ERROR_CODES
from interfaces import Connection
from models import MessageType, ServerMessage, SessionState

logger = logging.getLogger(__name__)

Connector = Callable[[str, dict], Connection]
TimerFactory = Callable[..., Any]
TextCallback = Callable[[str], None]
NotifyCallback = Callable[[], None]

API_KEY_HEADER = "xi-api-key"

_COMMITTED_TYPES = (
    MessageType.COMMITTED_TRANSCRIPT.value,
    MessageType.COMMITTED_TRANSCRIPT_WITH_TIMESTAMPS.value,
)
_LIVE_STATES = (SessionState.CONNECTING, SessionState.READY)


def default_connector(url: str, headers: dict) -> Connection:
    return ws_connect(url, additional_headers=headers, open_timeout=10, close_timeout=2)


def parse_message(raw: Union[str, bytes]) -> Optional[ServerMessage]:
    """Decode an inbound frame, or return None if it is not a protocol message."""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    message_type = data.get("message_type")
    if not isinstance(message_type, str):
        return None
    text = data.get("text")
    error = data.get("error")
    return ServerMessage(
        message_type=message_type,
        text=text if isinstance(text, str) else "",
        error=error if isinstance(error, str) else "",
    )


def encode_audio_chunk(pcm16: bytes, sample_rate: int = TARGET_SAMPLE_RATE) -> str:
    return json.dumps(
        {
            "message_type": MessageType.INPUT_AUDIO_CHUNK.value,
            "audio_base_64": base64.b64encode(pcm16).decode("ascii"),
            "sample_rate": sample_rate,
        }
    )


class StreamSession:
    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        on_ready: Optional[NotifyCallback] = None,
        on_partial: Optional[TextCallback] = None,
        on_commit: Optional[TextCallback] = None,
        on_status: Optional[TextCallback] = None,
        on_auth_error: Optional[NotifyCallback] = None,
        on_connection_lost: Optional[NotifyCallback] = None,
        connector: Connector = default_connector,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or SessionSettings()
        self._on_ready = on_ready
        self._on_partial = on_partial
        self._on_commit = on_commit
        self._on_status = on_status
        self._on_auth_error = on_auth_error
        self._on_connection_lost = on_connection_lost
        self._connector = connector
        self._timer_factory = timer_factory
        self._clock = clock

        # _dispatch_lock is always taken before _lock, never after.
        self._lock = threading.RLock()
        self._dispatch_lock = threading.RLock()
        self._state = SessionState.IDLE
        self._credential: Optional[str] = None
        self._generation = 0
        self._connection_id = 0
        self._reconnect_token = 0
        self._reconnect_attempts = 0
        self._last_message_at = 0.0
        self._auth_error_reported = False
        self._connection: Optional[Connection] = None
        self._send_queue: Optional[Queue[str | None]] = None
        self._watchdog_stop: Optional[threading.Event] = None
        self._reconnect_timer: Any = None
        self.dropped_chunks = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def last_message_at(self) -> float:
        return self._last_message_at

    @property
    def url(self) -> str:
        query = urlencode(
            {
                "model_id": self._settings.model_id,
                "audio_format": f"pcm_{TARGET_SAMPLE_RATE}",
                "commit_strategy": "vad",
                "include_timestamps": "false",
                "include_language_detection": "false",
            }
        )
        return f"{self._settings.endpoint}?{query}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, credential: str) -> None:
        with self._lock:
            if self._state not in (SessionState.IDLE, SessionState.CLOSED):
                return
            self._generation += 1
            self._credential = credential
            self._reconnect_attempts = 0
            self._auth_error_reported = False
            self._open_locked()

    def stop(self) -> None:
        """Close the session. Safe to call repeatedly and from callbacks."""
        with self._lock:
            self._generation += 1
            self._reconnect_token += 1
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None
            connection = self._teardown_locked()
            self._reconnect_attempts = 0
            self._set_state_locked(SessionState.CLOSED)
        self._close_quietly(connection)
        # Wait out a transcript callback that is already running.
        with self._dispatch_lock:
            pass

    def send_audio(self, pcm16: bytes, sample_rate: int = TARGET_SAMPLE_RATE) -> bool:
        """Queue a chunk for sending. Chunks outside READY are dropped."""
        with self._lock:
            if self._state != SessionState.READY or self._send_queue is None:
                return False
            send_queue = self._send_queue
        try:
            send_queue.put_nowait(encode_audio_chunk(pcm16, sample_rate))
        except Full:
            self.dropped_chunks += 1
            logger.warning("Send queue full, dropping audio chunk")
            return False
        return True

    # ------------------------------------------------------------------
    # Connection threads
    # ------------------------------------------------------------------

    def _open_locked(self) -> None:
        self._connection_id += 1
        self._last_message_at = self._clock()
        self._set_state_locked(SessionState.CONNECTING)
        self._start_watchdog_locked()
        threading.Thread(
            target=self._run_connection,
            args=(self._connection_id, self._credential),
            name="stream-session-recv",
            daemon=True,
        ).start()

    def _run_connection(self, connection_id: int, credential: Optional[str]) -> None:
        logger.info("Connecting to %s", self._settings.endpoint)
        try:
            connection = self._connector(self.url, {API_KEY_HEADER: credential or ""})
        except Exception as exc:
            logger.warning("Connection failed: %s", exc)
            self._connection_failed(connection_id, "connect failed")
            return

        send_queue: Queue[str | None] = Queue(maxsize=self._settings.send_queue_maxsize)
        with self._lock:
            current = connection_id == self._connection_id
            if current:
                self._connection = connection
                self._send_queue = send_queue
        if not current:
            self._close_quietly(connection)
            return

        threading.Thread(
            target=self._send_loop,
            args=(connection_id, connection, send_queue),
            name="stream-session-send",
            daemon=True,
        ).start()

        while True:
            try:
                raw = connection.recv()
            except Exception as exc:
                if self._is_current(connection_id):
                    logger.warning("WebSocket receive failed: %s", exc)
                self._connection_failed(connection_id, "receive failed")
                return
            if not self._handle_frame(connection_id, raw):
                return

    def _send_loop(
        self,
        connection_id: int,
        connection: Connection,
        send_queue: Queue[str | None],
    ) -> None:
        while True:
            payload = send_queue.get()
            if payload is None or not self._is_current(connection_id):
                return
            try:
                connection.send(payload)
            except Exception as exc:
                # The receive thread sees the same failure and reconnects.
                logger.warning("WebSocket send failed: %s", exc)
                return

    def _handle_frame(self, connection_id: int, raw: Union[str, bytes]) -> bool:
        """Apply one inbound frame. Returns False once the connection is stale."""
        message = parse_message(raw)
        if message is None:
            logger.debug("Ignoring malformed frame")
            return self._is_current(connection_id)

        with self._dispatch_lock:
            with self._lock:
                if connection_id != self._connection_id or self._state not in _LIVE_STATES:
                    return False
                self._reconnect_attempts = 0
                self._last_message_at = self._clock()
                if message.message_type == MessageType.SESSION_STARTED.value:
                    self._set_state_locked(SessionState.READY)
            self._dispatch(message)
        return True

    def _dispatch(self, message: ServerMessage) -> None:
        message_type = message.message_type
        if message_type == MessageType.SESSION_STARTED.value:
            logger.info("Transcription session started")
            if self._on_ready:
                self._on_ready()
        elif message_type == MessageType.PARTIAL_TRANSCRIPT.value:
            if self._on_partial:
                self._on_partial(message.text)
        elif message_type in _COMMITTED_TYPES:
            if self._on_commit:
                self._on_commit(message.text)
        elif message_type in SERVICE_ERROR_CODES:
            logger.warning(
                "Scribe error %s (%s): %s",
                SERVICE_ERROR_CODES[message_type],
                message_type,
                message.error or "Unknown error",
            )
            if message_type == "auth_error":
                self._report_auth_error()
        else:
            logger.debug("Ignoring message type %s", message_type)

    def _report_auth_error(self) -> None:
        with self._lock:
            if self._auth_error_reported:
                return
            self._auth_error_reported = True
        if self._on_auth_error:
            self._on_auth_error()

    # ------------------------------------------------------------------
    # Heartbeat watchdog
    # ------------------------------------------------------------------

    def _start_watchdog_locked(self) -> None:
        stop_event = threading.Event()
        self._watchdog_stop = stop_event
        threading.Thread(
            target=self._watchdog_loop,
            args=(self._connection_id, stop_event),
            name="stream-session-watchdog",
            daemon=True,
        ).start()

    def _watchdog_loop(self, connection_id: int, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._settings.heartbeat_interval_s):
            if not self.check_heartbeat(connection_id):
                return

    def check_heartbeat(self, connection_id: Optional[int] = None) -> bool:
        """Run one watchdog tick. Returns whether the watchdog should keep going."""
        with self._lock:
            if connection_id is None:
                connection_id = self._connection_id
            if connection_id != self._connection_id or self._state not in _LIVE_STATES:
                return False
            silent_for = self._clock() - self._last_message_at
            connection = self._connection

        if silent_for > self._settings.heartbeat_timeout_s:
            logger.warning("No message from server for %.1fs", silent_for)
            self._connection_failed(connection_id, "heartbeat timeout")
            return False
        if connection is None:
            return True
        try:
            connection.ping()
        except Exception as exc:
            logger.warning("WebSocket ping failed: %s", exc)
            self._connection_failed(connection_id, "ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _connection_failed(self, connection_id: int, reason: str) -> None:
        notify: list[NotifyCallback] = []
        connection: Optional[Connection] = None
        with self._lock:
            if connection_id != self._connection_id or self._state not in _LIVE_STATES:
                return
            connection = self._teardown_locked()
            self._reconnect_attempts += 1
            attempts = self._reconnect_attempts

            if attempts > self._settings.max_reconnect_attempts:
                logger.error("Giving up after %s: retry limit reached", reason)
                self._set_state_locked(SessionState.CLOSED)
                notify.append(lambda: self._emit_status(ERROR_MESSAGES[CONNECTION_LOST]))
                if self._on_connection_lost:
                    notify.append(self._on_connection_lost)
            else:
                delay = min(2**attempts, self._settings.backoff_cap_s)
                logger.warning("%s, reconnecting in %ss (attempt %d)", reason, delay, attempts)
                self._set_state_locked(SessionState.RECONNECTING)
                self._reconnect_token += 1
                timer = self._timer_factory(
                    delay,
                    self._reconnect,
                    args=(self._generation, self._reconnect_token),
                )
                timer.daemon = True
                timer.start()
                self._reconnect_timer = timer
                notify.append(lambda: self._emit_status(ERROR_MESSAGES[NETWORK_ERROR]))

        self._close_quietly(connection)
        for callback in notify:
            callback()

    def _reconnect(self, generation: int, token: int) -> None:
        with self._lock:
            if generation != self._generation or token != self._reconnect_token:
                return
            if self._state != SessionState.RECONNECTING:
                return
            self._reconnect_timer = None
            self._open_locked()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _teardown_locked(self) -> Optional[Connection]:
        """Invalidate the current connection and return it for closing."""
        self._connection_id += 1
        if self._watchdog_stop is not None:
            self._watchdog_stop.set()
            self._watchdog_stop = None
        if self._send_queue is not None:
            _discard_pending(self._send_queue)
            self._send_queue = None
        connection = self._connection
        self._connection = None
        return connection

    def _is_current(self, connection_id: int) -> bool:
        with self._lock:
            return connection_id == self._connection_id

    def _set_state_locked(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("Session state %s -> %s", from_state.value, to_state.value)

    def _emit_status(self, text: str) -> None:
        if self._on_status:
            self._on_status(text)

    @staticmethod
    def _close_quietly(connection: Optional[Connection]) -> None:
        if connection is None:
            return
        try:
            connection.close()
        except Exception as exc:
            logger.debug("Error while closing WebSocket: %s", exc)


def _discard_pending(send_queue: Queue[str | None]) -> None:
    """Drop queued chunks and wake the send thread with a sentinel."""
    while True:
        while not send_queue.empty():
            try:
                send_queue.get_nowait()
            except Empty:
                break
        try:
            send_queue.put_nowait(None)
            return
        except Full:
            continue
