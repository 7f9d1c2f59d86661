"""
Lifecycle of one transcription run: idle -> processing -> completed | error.

A session owns the upstream Fireflies connection, the fragment buffer, the
periodic flush timer and the inactivity watchdog. Connection events, timer
callbacks and API calls all run on the same event loop, so buffer and state
changes never interleave mid-mutation; a flush may await the record store
while new fragments keep arriving for the next flush.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from caption_relay.core.config import get_settings
from caption_relay.core.exceptions import ConnectFailure, SessionStateError
from caption_relay.core.logger import get_logger
from caption_relay.schemas.transcript import RecordStatus, TranscriptFragment
from caption_relay.services.fireflies_client import (
    ConnectionEvent,
    DisconnectKind,
    EventKind,
    EventSink,
    FirefliesConnection,
    classify_disconnect,
)
from caption_relay.services.fragment_buffer import FragmentBuffer, format_transcript
from caption_relay.services.record_store import RecordStore
from caption_relay.workers.scheduler import PeriodicTimer, Watchdog

log = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


ConnectionFactory = Callable[[str, EventSink], FirefliesConnection]


def default_connection_factory(transcript_id: str, sink: EventSink) -> FirefliesConnection:
    settings = get_settings()
    if not settings.FIREFLIES_API_KEY:
        raise ConnectFailure("FIREFLIES_API_KEY is not configured")
    return FirefliesConnection(api_key=settings.FIREFLIES_API_KEY, transcript_id=transcript_id, sink=sink)


def _cancel_task(task: Optional[asyncio.Task]) -> None:
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class TranscriptionSession:
    """State machine for a single relay run."""

    def __init__(
        self,
        request_id: str,
        transcript_id: str,
        store: RecordStore,
        connection_factory: Optional[ConnectionFactory] = None,
        flush_interval: Optional[float] = None,
        inactivity_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.request_id = request_id
        self.transcript_id = transcript_id
        self.flush_interval = flush_interval if flush_interval is not None else settings.FLUSH_INTERVAL
        self.inactivity_timeout = inactivity_timeout if inactivity_timeout is not None else settings.INACTIVITY_TIMEOUT
        self.started_at: Optional[datetime] = None
        self.error_message: Optional[str] = None

        self._store = store
        self._connection_factory = connection_factory or default_connection_factory
        self._clock = clock
        self._state = SessionState.IDLE
        self._stopping = False
        self._buffer = FragmentBuffer()
        self._connection: Optional[FirefliesConnection] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self._last_flush_at = 0.0
        self.flush_count = 0

        self._flush_timer = PeriodicTimer(self.on_flush_tick, self.flush_interval, name=f"flush-{request_id}")
        self._watchdog = Watchdog(self.inactivity_timeout, self.on_inactivity_timeout, name=f"inactivity-{request_id}")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state is SessionState.PROCESSING

    @property
    def buffer(self) -> FragmentBuffer:
        return self._buffer

    @property
    def connection(self) -> Optional[FirefliesConnection]:
        return self._connection

    # -------------------------
    # Public lifecycle
    # -------------------------
    async def start(self) -> None:
        """Begin relaying. Connection setup continues in the background.

        The request record must already exist in the `processing` state.
        Raises ConnectFailure (after moving to `error`) if the connection
        cannot be created.
        """
        if self._state is not SessionState.IDLE:
            raise SessionStateError(f"Session {self.request_id} cannot start from state {self._state.value}")

        self._buffer.clear()
        self.started_at = datetime.now(timezone.utc)
        self._last_flush_at = self._clock()
        self._state = SessionState.PROCESSING
        log.info("Starting transcription session %s (transcript %s)", self.request_id, self.transcript_id)

        try:
            self._connection = self._connection_factory(self.transcript_id, self._handle_event)
        except Exception as e:
            log.error("Failed to start transcription session %s: %s", self.request_id, e)
            await self.handle_error(f"Failed to start transcription session: {e}")
            raise

        self._flush_timer.start()
        self._watchdog.arm()
        self._connect_task = asyncio.create_task(self._connect(), name=f"connect-{self.request_id}")
        log.info("Transcription session %s started", self.request_id)

    async def stop(self) -> None:
        """Flush what is buffered, close the feed and mark the record completed."""
        if not self.is_processing or self._stopping:
            raise SessionStateError(f"Session {self.request_id} is not processing (state={self._state.value})")

        self._stopping = True
        log.info("Stopping transcription session %s", self.request_id)
        self._disarm()
        await self._finish(SessionState.COMPLETED)
        log.info("Transcription session %s stopped", self.request_id)

    async def handle_error(self, message: str) -> None:
        """Move to `error` and record `message`. Never raises; no-op once terminal."""
        if self._state in (SessionState.COMPLETED, SessionState.ERROR) or self._stopping:
            log.debug("Ignoring error for finished session %s: %s", self.request_id, message)
            return

        self._stopping = True
        self.error_message = message
        log.error("Transcription error in session %s: %s", self.request_id, message)
        try:
            self._disarm()
            await self._finish(SessionState.ERROR, error_message=message)
        except Exception:
            log.exception("Error while handling failure of session %s", self.request_id)
            self._state = SessionState.ERROR

    # -------------------------
    # Event handlers
    # -------------------------
    async def _handle_event(self, event: ConnectionEvent) -> None:
        if event.kind is EventKind.FRAGMENT and event.fragment is not None:
            await self.on_fragment(event.fragment)
        elif event.kind is EventKind.DISCONNECTED:
            await self.on_disconnect(event.reason)
        elif event.kind is EventKind.AUTH_FAILED:
            await self.handle_error(f"Authentication failed: {event.reason}")
        elif event.kind is EventKind.CONNECT_ERROR:
            if event.during_reconnect:
                log.warning("Connection error during reconnect of session %s: %s", self.request_id, event.reason)
            else:
                await self.handle_error(f"WebSocket connection error: {event.reason}")
        elif event.kind is EventKind.CONNECTED:
            log.info("Session %s connected to transcript %s", self.request_id, self.transcript_id)

    async def on_fragment(self, fragment: TranscriptFragment) -> None:
        if not self.is_processing or self._stopping:
            log.debug("Dropping fragment %s for inactive session %s", fragment.chunk_id, self.request_id)
            return

        self._buffer.put(fragment)
        self._watchdog.arm()

        # Backstop for an overdue tick; the timer normally does this.
        if self._clock() - self._last_flush_at >= self.flush_interval and not self._flush_lock.locked():
            try:
                await self._flush()
            except Exception:
                log.exception("Flush on fragment arrival failed for session %s", self.request_id)

    async def on_disconnect(self, reason: Optional[str]) -> None:
        if not self.is_processing or self._stopping:
            return

        kind = classify_disconnect(reason)
        log.warning("Unexpected disconnect of session %s (%s): %s", self.request_id, kind.value, reason)
        if kind is DisconnectKind.RECOVERABLE:
            if not self._reconnecting:
                self._reconnect_task = asyncio.create_task(self._reconnect(), name=f"reconnect-{self.request_id}")
        else:
            await self.handle_error(f"WebSocket disconnected unexpectedly: {reason}")

    async def on_inactivity_timeout(self) -> None:
        if not self.is_processing or self._stopping:
            return

        log.warning(
            "No Fireflies messages received for %.1f minutes; stopping session %s",
            self.inactivity_timeout / 60,
            self.request_id,
        )
        self._watchdog.cancel()
        if self._buffer:
            log.info("Flushing buffer before inactivity stop of session %s", self.request_id)
            try:
                await self._flush()
            except Exception:
                log.exception("Flush before inactivity stop failed for session %s", self.request_id)
        # A caller may have stopped the session while the flush was running.
        if not self.is_processing or self._stopping:
            return
        await self.stop()

    # -------------------------
    # Internals
    # -------------------------
    @property
    def _reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def _connect(self) -> None:
        if self._connection is None:
            return
        try:
            await self._connection.connect()
        except ConnectFailure as e:
            await self.handle_error(str(e))

    async def _reconnect(self) -> None:
        if self._connection is None:
            return
        log.info("Attempting to reconnect session %s", self.request_id)
        try:
            await self._connection.reconnect()
        except ConnectFailure as e:
            await self.handle_error(str(e))
        else:
            log.info("Session %s reconnected", self.request_id)

    async def on_flush_tick(self) -> None:
        if not self.is_processing or self._stopping:
            return
        # A backstop flush just ran; keep to one flush per interval.
        if self._clock() - self._last_flush_at < self.flush_interval / 2:
            return
        try:
            await self._flush()
        except Exception:
            log.exception("Periodic flush failed for session %s; buffer kept for next flush", self.request_id)

    async def _flush(self) -> None:
        """Append the compacted buffer to the record.

        On failure the fragments go back into the buffer and the error
        propagates.
        """
        async with self._flush_lock:
            self._last_flush_at = self._clock()
            if not self._buffer:
                return
            fragments = self._buffer.take()
            transcript = format_transcript(fragments)
            if not transcript:
                return
            try:
                record = await self._store.append_content(self.request_id, transcript)
            except Exception:
                self._buffer.restore(fragments)
                raise
            self.flush_count += 1
            if record is None:
                log.warning("Record %s not found; dropped %d flushed chunks", self.request_id, len(fragments))
                return
            log.debug("Buffer flushed for session %s (%d chars)", self.request_id, len(transcript))

    def _disarm(self) -> None:
        self._flush_timer.cancel()
        self._watchdog.cancel()
        _cancel_task(self._connect_task)
        _cancel_task(self._reconnect_task)

    async def _finish(self, state: SessionState, error_message: Optional[str] = None) -> None:
        """Final drain-and-persist, release the feed, record the terminal status."""
        async with self._flush_lock:
            fragments: List[TranscriptFragment] = self._buffer.take()
            transcript = format_transcript(fragments)

            if self._connection is not None:
                try:
                    await self._connection.close()
                except Exception:
                    log.exception("Failed to close connection of session %s", self.request_id)

            status = RecordStatus.COMPLETED if state is SessionState.COMPLETED else RecordStatus.ERROR
            try:
                await self._store.append_content(self.request_id, transcript, status=status, error_message=error_message)
                if transcript:
                    self.flush_count += 1
            except Exception:
                # The in-memory state still becomes terminal; the record may lag.
                log.exception(
                    "Failed to persist %s status for session %s (%d chunks lost)",
                    status.value,
                    self.request_id,
                    len(fragments),
                )
            finally:
                self._state = state
