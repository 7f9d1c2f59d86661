"""
Fireflies realtime feed adapter (Socket.IO).

Responsibilities:
- Open an authenticated Socket.IO connection to the Fireflies realtime API
  for one transcript id.
- Translate provider events into `ConnectionEvent` messages and hand them to
  a single sink, one at a time and in arrival order.
- Reconnect on request with a bounded number of attempts and a fixed delay.

Notes:
- The Socket.IO client's built-in reconnection is disabled; the retry count
  and backoff live here so the session can see and bound them.
- Authentication failures are reported as events and never retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import socketio
from socketio import exceptions as sio_exceptions
from pydantic import ValidationError

from caption_relay.core.config import get_settings
from caption_relay.core.exceptions import ConnectFailure
from caption_relay.core.logger import get_logger
from caption_relay.schemas.transcript import BroadcastMessage, TranscriptFragment

log = get_logger(__name__)


class EventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"
    CONNECT_ERROR = "connect_error"
    FRAGMENT = "fragment"


@dataclass
class ConnectionEvent:
    kind: EventKind
    reason: Optional[str] = None
    fragment: Optional[TranscriptFragment] = None
    # Set by the connection when emitted inside reconnect().
    during_reconnect: bool = False


class DisconnectKind(str, Enum):
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


# Client- or server-initiated closes; anything else (transport errors,
# ping timeouts, unknown) ends the session.
RECOVERABLE_REASONS = frozenset(
    {
        "client disconnect",
        "server disconnect",
        "io client disconnect",
        "io server disconnect",
    }
)


def classify_disconnect(reason: Optional[str]) -> DisconnectKind:
    if reason and reason.strip().lower() in RECOVERABLE_REASONS:
        return DisconnectKind.RECOVERABLE
    return DisconnectKind.FATAL


EventSink = Callable[[ConnectionEvent], Awaitable[None]]
ClientFactory = Callable[[], Any]


def _default_client_factory() -> socketio.AsyncClient:
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class FirefliesConnection:
    """One Socket.IO connection to the Fireflies realtime feed."""

    def __init__(
        self,
        api_key: str,
        transcript_id: str,
        sink: EventSink,
        url: Optional[str] = None,
        socket_path: Optional[str] = None,
        handshake_timeout: Optional[float] = None,
        reconnect_attempts: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key
        self.transcript_id = transcript_id
        self.url = url or settings.FIREFLIES_URL
        self.socket_path = socket_path or settings.FIREFLIES_SOCKET_PATH
        self.handshake_timeout = handshake_timeout or settings.HANDSHAKE_TIMEOUT
        self.reconnect_attempts = reconnect_attempts if reconnect_attempts is not None else settings.RECONNECT_ATTEMPTS
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else settings.RECONNECT_DELAY
        self.attempts = 0
        self._reconnecting = False

        self._sink = sink
        self._client_factory = client_factory or _default_client_factory
        self._sio: Optional[Any] = None
        self._queue: asyncio.Queue[Optional[ConnectionEvent]] = asyncio.Queue()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return bool(self._sio is not None and getattr(self._sio, "connected", False))

    def _build_client(self) -> Any:
        sio = self._client_factory()
        sio.on("connect", self._on_connect)
        sio.on("disconnect", self._on_disconnect)
        sio.on("connect_error", self._on_connect_error)
        sio.on("auth.success", self._on_auth_success)
        sio.on("auth.failed", self._on_auth_failed)
        sio.on("transcription.broadcast", self._on_broadcast)
        return sio

    def _auth(self) -> dict:
        return {"token": f"Bearer {self.api_key}", "transcriptId": self.transcript_id}

    def _ensure_dispatcher(self) -> None:
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(
                self._dispatch(), name=f"fireflies-dispatch-{self.transcript_id}"
            )

    async def connect(self) -> None:
        """Open the connection; raises ConnectFailure if the handshake fails."""
        if not self.api_key:
            raise ConnectFailure("Fireflies API key is not configured")
        if self._closed:
            raise ConnectFailure("Connection already closed")

        self._ensure_dispatcher()
        if self._sio is None:
            self._sio = self._build_client()

        log.info("Connecting to %s%s for transcript %s", self.url, self.socket_path, self.transcript_id)
        try:
            await asyncio.wait_for(
                self._sio.connect(
                    self.url,
                    auth=self._auth(),
                    transports=["websocket"],
                    socketio_path=self.socket_path,
                    wait_timeout=self.handshake_timeout,
                ),
                timeout=self.handshake_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectFailure(f"Handshake timed out after {self.handshake_timeout}s") from e
        except sio_exceptions.ConnectionError as e:
            raise ConnectFailure(f"WebSocket connection error: {e}") from e

    async def reconnect(self) -> None:
        """Re-issue connect() up to `reconnect_attempts` times, `reconnect_delay` apart."""
        if not self.api_key:
            raise ConnectFailure("Fireflies API key is not configured")

        self._reconnecting = True
        try:
            await self._reconnect_loop()
        finally:
            self._reconnecting = False

    async def _reconnect_loop(self) -> None:
        last_error: Optional[ConnectFailure] = None
        for attempt in range(1, self.reconnect_attempts + 1):
            if self._closed:
                raise ConnectFailure("Connection closed during reconnect")
            self.attempts = attempt
            log.info(
                "Reconnect attempt %d/%d for transcript %s",
                attempt,
                self.reconnect_attempts,
                self.transcript_id,
            )
            try:
                await self.connect()
            except ConnectFailure as e:
                last_error = e
                log.warning("Reconnect attempt %d failed: %s", attempt, e)
                if attempt < self.reconnect_attempts:
                    await asyncio.sleep(self.reconnect_delay)
            else:
                self.attempts = 0
                return
        raise ConnectFailure(f"Reconnect failed after {self.reconnect_attempts} attempts: {last_error}")

    async def close(self) -> None:
        """Disconnect and stop event delivery. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        sio, self._sio = self._sio, None
        if sio is not None:
            try:
                await sio.disconnect()
            except Exception:
                log.exception("Error disconnecting Fireflies client for transcript %s", self.transcript_id)
        # Sentinel ends the dispatcher after already-queued events.
        self._queue.put_nowait(None)
        log.info("Fireflies connection closed for transcript %s", self.transcript_id)

    def _emit(self, event: ConnectionEvent) -> None:
        if self._closed:
            log.debug("Dropping %s event after close", event.kind.value)
            return
        event.during_reconnect = self._reconnecting
        self._queue.put_nowait(event)

    async def _dispatch(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            try:
                await self._sink(event)
            except Exception:
                log.exception("Event sink failed on %s", event.kind.value)

    # -------------------------
    # Socket.IO handlers
    # -------------------------
    async def _on_connect(self) -> None:
        log.info("WebSocket connected for transcript %s", self.transcript_id)
        self._emit(ConnectionEvent(EventKind.CONNECTED))

    async def _on_disconnect(self, reason: Optional[str] = None) -> None:
        reason = str(reason) if reason is not None else "unknown"
        log.info("WebSocket disconnected for transcript %s: %s", self.transcript_id, reason)
        self._emit(ConnectionEvent(EventKind.DISCONNECTED, reason=reason))

    async def _on_connect_error(self, data: Any = None) -> None:
        message = data.get("message") if isinstance(data, dict) else data
        reason = str(message or "unknown")
        log.error("WebSocket connection error for transcript %s: %s", self.transcript_id, reason)
        self._emit(ConnectionEvent(EventKind.CONNECT_ERROR, reason=reason))

    async def _on_auth_success(self, data: Any = None) -> None:
        log.info("Authentication successful for transcript %s: %s", self.transcript_id, data)

    async def _on_auth_failed(self, data: Any = None) -> None:
        log.error("Authentication failed for transcript %s: %s", self.transcript_id, data)
        self._emit(ConnectionEvent(EventKind.AUTH_FAILED, reason=str(data)))

    async def _on_broadcast(self, data: Any = None) -> None:
        try:
            message = BroadcastMessage.model_validate(data)
        except ValidationError as e:
            log.warning(
                "Dropping transcription.broadcast with missing or invalid payload (transcript %s): %s",
                self.transcript_id,
                e.errors(include_url=False),
            )
            return
        log.debug("Received transcription.broadcast chunk %s", message.payload.chunk_id)
        self._emit(ConnectionEvent(EventKind.FRAGMENT, fragment=message.payload))
