"""
Supabase record store (async, httpx) for transcription requests.

Talks to the PostgREST endpoint of a Supabase project directly:
`<SUPABASE_URL>/rest/v1/<table>`. Content is append-only: each flush adds a
new block after the existing content, separated by a newline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

from caption_relay.core.config import get_settings
from caption_relay.core.exceptions import PersistenceError
from caption_relay.core.logger import get_logger
from caption_relay.schemas.transcript import RecordStatus, TranscriptRecord

log = get_logger(__name__)


class RecordStore(Protocol):
    async def create_record(self, request_id: str, transcription_id: str) -> None: ...

    async def append_content(
        self,
        request_id: str,
        text: str,
        status: Optional[RecordStatus] = None,
        error_message: Optional[str] = None,
    ) -> Optional[TranscriptRecord]: ...

    async def get_record(self, request_id: str) -> Optional[TranscriptRecord]: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def join_content(existing: Optional[str], text: str) -> Optional[str]:
    """Append `text` to `existing` on a new line; empty text changes nothing."""
    if not text:
        return existing
    return f"{existing}\n{text}" if existing else text


class SupabaseRecordStore:
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        table: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = get_settings()
        self.url = (url or self._settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or self._settings.supabase_key
        self.table = table or self._settings.SUPABASE_TABLE
        self._timeout = timeout or self._settings.PERSISTENCE_TIMEOUT
        self._transport = transport
        self._aclient: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"{self.url}/rest/v1/{self.table}"

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._aclient is None:
            self._aclient = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._aclient

    async def _request(
        self,
        method: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if not self.url:
            raise PersistenceError("SUPABASE_URL is not configured")
        headers = {"Prefer": prefer} if prefer else None
        try:
            client = self._get_async_client()
            resp = await client.request(method, self.endpoint, params=params, json=json, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"Supabase {method} failed: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise PersistenceError(f"Supabase {method} failed: {e!r}") from e
        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    async def create_record(self, request_id: str, transcription_id: str) -> None:
        """Insert a new request row in the `processing` state."""
        now = _now_iso()
        row = {
            "id": request_id,
            "transcription_id": transcription_id,
            "status": RecordStatus.PROCESSING.value,
            "content": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now,
            "last_event_at": None,
        }
        try:
            await self._request("POST", json=row, prefer="return=minimal")
        except PersistenceError:
            log.error("Failed to create transcription request %s", request_id)
            raise
        log.info("Transcription request %s created", request_id)

    async def get_record(self, request_id: str) -> Optional[TranscriptRecord]:
        rows = await self._request("GET", params={"id": f"eq.{request_id}", "select": "*"})
        if not rows:
            log.warning("Transcription request %s not found", request_id)
            return None
        return TranscriptRecord.model_validate(rows[0])

    async def append_content(
        self,
        request_id: str,
        text: str,
        status: Optional[RecordStatus] = None,
        error_message: Optional[str] = None,
    ) -> Optional[TranscriptRecord]:
        """Append `text` to the stored content and optionally update status.

        Returns the updated record, or None when the request does not exist.
        """
        existing = await self.get_record(request_id)
        if existing is None:
            return None

        now = _now_iso()
        updates: Dict[str, Any] = {
            "content": join_content(existing.content, text),
            "updated_at": now,
        }
        if text:
            updates["last_event_at"] = now
        if status is not None:
            updates["status"] = RecordStatus(status).value
        if error_message is not None:
            updates["error_message"] = error_message

        log.debug(
            "Updating transcription request %s (status=%s, appended=%d chars)",
            request_id,
            updates.get("status", existing.status.value),
            len(text),
        )
        rows = await self._request(
            "PATCH",
            params={"id": f"eq.{request_id}"},
            json=updates,
            prefer="return=representation",
        )
        if not rows:
            return None
        return TranscriptRecord.model_validate(rows[0])

    async def ping(self) -> bool:
        """Return True when the table answers a minimal select."""
        try:
            await self._request("GET", params={"select": "id", "limit": "1"})
        except PersistenceError as e:
            log.warning("Record store unreachable: %s", e)
            return False
        return True

    async def aclose(self) -> None:
        if self._aclient is not None:
            await self._aclient.aclose()
            self._aclient = None


_store: Optional[SupabaseRecordStore] = None


def get_record_store() -> SupabaseRecordStore:
    global _store
    if _store is None:
        _store = SupabaseRecordStore()
    return _store
