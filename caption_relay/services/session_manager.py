from __future__ import annotations

from typing import Optional

from caption_relay.core.exceptions import SessionStateError
from caption_relay.core.logger import get_logger
from caption_relay.services.record_store import RecordStore, get_record_store
from caption_relay.services.transcription_session import ConnectionFactory, TranscriptionSession

log = get_logger(__name__)


class SessionManager:
    """Owns the one transcription session a process runs at a time.

    Each start builds a fresh TranscriptionSession; the previous one is kept
    only until it is replaced so its final state can still be inspected.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        flush_interval: Optional[float] = None,
        inactivity_timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._connection_factory = connection_factory
        self._flush_interval = flush_interval
        self._inactivity_timeout = inactivity_timeout
        self._current: Optional[TranscriptionSession] = None

    @property
    def current(self) -> Optional[TranscriptionSession]:
        return self._current

    @property
    def is_processing(self) -> bool:
        return self._current is not None and self._current.is_processing

    @property
    def active_request_id(self) -> Optional[str]:
        return self._current.request_id if self.is_processing else None

    async def start_session(self, request_id: str, transcript_id: str) -> TranscriptionSession:
        if self.is_processing:
            raise SessionStateError(f"Session {self.active_request_id} is already processing")

        session = TranscriptionSession(
            request_id=request_id,
            transcript_id=transcript_id,
            store=self._store or get_record_store(),
            connection_factory=self._connection_factory,
            flush_interval=self._flush_interval,
            inactivity_timeout=self._inactivity_timeout,
        )
        self._current = session
        await session.start()
        return session

    async def stop_session(self, request_id: str) -> TranscriptionSession:
        if not self.is_processing:
            raise SessionStateError("No active transcription session to stop.")
        session = self._current
        if session.request_id != request_id:
            raise SessionStateError("The provided requestId does not match the currently active session.")
        await session.stop()
        return session

    async def shutdown(self) -> None:
        if not self.is_processing:
            return
        log.info("Shutting down active session %s", self._current.request_id)
        try:
            await self._current.stop()
        except Exception:
            log.exception("Failed to stop session %s on shutdown", self._current.request_id)


_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager
