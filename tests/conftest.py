from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from caption_relay.core.exceptions import ConnectFailure, PersistenceError
from caption_relay.schemas.transcript import RecordStatus, TranscriptFragment, TranscriptRecord
from caption_relay.services.fireflies_client import ConnectionEvent, EventKind
from caption_relay.services.record_store import join_content
from caption_relay.services.transcription_session import TranscriptionSession


class FakeRecordStore:
    """In-memory stand-in for SupabaseRecordStore."""

    def __init__(self) -> None:
        self.records: Dict[str, TranscriptRecord] = {}
        self.appends: List[dict] = []
        self.fail_appends = 0

    async def create_record(self, request_id: str, transcription_id: str) -> None:
        now = datetime.now(timezone.utc)
        self.records[request_id] = TranscriptRecord(
            id=request_id,
            transcription_id=transcription_id,
            status=RecordStatus.PROCESSING,
            created_at=now,
            updated_at=now,
        )

    async def append_content(self, request_id, text, status=None, error_message=None):
        if self.fail_appends > 0:
            self.fail_appends -= 1
            raise PersistenceError("store unavailable")
        self.appends.append({"id": request_id, "text": text, "status": status, "error_message": error_message})
        record = self.records.get(request_id)
        if record is None:
            return None
        updates = {"content": join_content(record.content, text), "updated_at": datetime.now(timezone.utc)}
        if status is not None:
            updates["status"] = status
        if error_message is not None:
            updates["error_message"] = error_message
        self.records[request_id] = record.model_copy(update=updates)
        return self.records[request_id]

    async def get_record(self, request_id: str) -> Optional[TranscriptRecord]:
        return self.records.get(request_id)

    async def ping(self) -> bool:
        return True

    def content(self, request_id: str) -> Optional[str]:
        return self.records[request_id].content


class FakeConnection:
    """Stands in for FirefliesConnection; tests push events with deliver()."""

    def __init__(self, transcript_id, sink, fail_connect=False, fail_reconnect=False, reconnect_gate=None) -> None:
        self.api_key = "test-key"
        self.transcript_id = transcript_id
        self.sink = sink
        self.fail_connect = fail_connect
        self.fail_reconnect = fail_reconnect
        self.reconnect_gate = reconnect_gate
        self.connect_calls = 0
        self.reconnect_calls = 0
        self.closed = False

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectFailure("handshake refused")
        await self.sink(ConnectionEvent(EventKind.CONNECTED))

    async def reconnect(self) -> None:
        self.reconnect_calls += 1
        if self.reconnect_gate is not None:
            await self.reconnect_gate.wait()
        if self.fail_reconnect:
            raise ConnectFailure("Reconnect failed after 5 attempts")

    async def close(self) -> None:
        self.closed = True

    async def deliver(self, event: ConnectionEvent) -> None:
        await self.sink(event)

    async def fragment(self, chunk_id, text, speaker="Alice", start=0.0, end=1.0) -> None:
        await self.deliver(
            ConnectionEvent(
                EventKind.FRAGMENT,
                fragment=TranscriptFragment(
                    chunk_id=chunk_id,
                    text=text,
                    speaker_name=speaker,
                    start_time=start,
                    end_time=end,
                ),
            )
        )


class ManualClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ConnectionRecorder:
    """Connection factory that remembers what it built."""

    def __init__(self, **options) -> None:
        self.options = options
        self.connections: List[FakeConnection] = []

    def __call__(self, transcript_id, sink) -> FakeConnection:
        conn = FakeConnection(transcript_id, sink, **self.options)
        self.connections.append(conn)
        return conn

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


def make_fragment(chunk_id, text, speaker="Alice", start=0.0, end=1.0) -> TranscriptFragment:
    return TranscriptFragment(chunk_id=chunk_id, text=text, speaker_name=speaker, start_time=start, end_time=end)


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1000.0)


@pytest.fixture
def connections() -> ConnectionRecorder:
    return ConnectionRecorder()


@pytest_asyncio.fixture
async def make_session(store, clock, connections):
    """Build sessions with long real timers so only the test drives flushes."""
    created: List[TranscriptionSession] = []

    async def _make(request_id="r1", transcript_id="t1", **kwargs) -> TranscriptionSession:
        await store.create_record(request_id, transcript_id)
        kwargs.setdefault("connection_factory", connections)
        kwargs.setdefault("flush_interval", 15.0)
        kwargs.setdefault("inactivity_timeout", 600.0)
        kwargs.setdefault("clock", clock)
        session = TranscriptionSession(request_id, transcript_id, store, **kwargs)
        created.append(session)
        return session

    yield _make

    for session in created:
        session._disarm()
