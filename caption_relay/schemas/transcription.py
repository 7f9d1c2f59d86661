from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from caption_relay.schemas.transcript import RecordStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class StartRequest(_CamelModel):
    """Body of POST /api/transcription/start.

    `requestId` is optional; a UUID4 is generated when the caller does not
    supply one.
    """

    transcription_id: str = Field(alias="transcriptionId", min_length=1)
    request_id: Optional[str] = Field(default=None, alias="requestId")


class StartResponse(_CamelModel):
    request_id: str = Field(serialization_alias="requestId")
    status: RecordStatus = RecordStatus.PROCESSING
    message: str


class StopRequest(_CamelModel):
    request_id: str = Field(alias="requestId", min_length=1)


class StopResponse(_CamelModel):
    request_id: str = Field(serialization_alias="requestId")
    status: RecordStatus = RecordStatus.COMPLETED
    message: str


class StatusResponse(_CamelModel):
    request_id: str = Field(serialization_alias="requestId")
    status: RecordStatus
    content: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")
