from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class RecordStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class TranscriptFragment(BaseModel):
    """One speech-recognition result from the realtime feed.

    The provider may resend the same `chunk_id` with corrected text; the
    latest copy wins in the buffer.
    """

    chunk_id: str
    text: str = ""
    speaker_name: str = ""
    start_time: float
    end_time: float
    transcript_id: Optional[str] = None

    @field_validator("chunk_id", "transcript_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("text", "speaker_name", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class BroadcastMessage(BaseModel):
    """Wrapper around a `transcription.broadcast` event."""

    type: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[str] = None
    payload: TranscriptFragment


class TranscriptRecord(BaseModel):
    """Row of the `transcription_requests` table."""

    id: str
    transcription_id: str
    status: RecordStatus
    content: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
