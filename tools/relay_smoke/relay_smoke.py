"""
Smoke test for a running caption-relay server.

Usage:
1. Make sure `.env` has SUPABASE_URL and a Supabase key, and that the server
   is running (`caption-relay` or `uvicorn caption_relay.main:app`).
2. Run: `python tools/relay_smoke/relay_smoke.py <transcriptionId>`
   Optional flags:
     --base-url http://localhost:3000   # server address
     --wait 60                          # seconds to let fragments flow before polling
     --polls 1                          # status polls, one every --wait seconds
     --store-only                       # only check Supabase connectivity

The script first checks that the `transcription_requests` table answers,
then calls /start, polls /status and finally /stop.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

# Ensure repo root is on sys.path so `import caption_relay` works when running this script directly
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from caption_relay.core.config import get_settings  # noqa: E402
from caption_relay.core.logger import get_logger  # noqa: E402
from caption_relay.services.record_store import SupabaseRecordStore  # noqa: E402

log = get_logger("relay_smoke")


async def check_store() -> bool:
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.supabase_key:
        log.error("SUPABASE_URL or a Supabase key is missing from the environment")
        return False

    store = SupabaseRecordStore()
    try:
        ok = await store.ping()
    finally:
        await store.aclose()
    if ok:
        log.info("Supabase table %s reachable at %s", store.table, store.url)
    else:
        log.error("Supabase table %s is not reachable; check the URL, key and RLS policies", store.table)
    return ok


def _show(label: str, resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        data = {"raw": resp.text}
    log.info("%s -> %d %s", label, resp.status_code, data)
    return data


async def run_flow(base_url: str, transcription_id: str, wait: float, polls: int) -> bool:
    api = f"{base_url.rstrip('/')}/api/transcription"
    request_id = str(uuid.uuid4())

    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(f"{api}/start", json={"transcriptionId": transcription_id, "requestId": request_id})
        data = _show("start", resp)
        if resp.status_code != 202 or not data.get("requestId"):
            log.error("Start did not return 202 with a requestId")
            return False
        request_id = data["requestId"]

        status: Optional[Dict[str, Any]] = None
        for i in range(max(polls, 1)):
            log.info("Waiting %.0fs for fragments and a flush (poll %d/%d)", wait, i + 1, polls)
            await asyncio.sleep(wait)
            status = _show("status", await client.get(f"{api}/status/{request_id}"))
            if status.get("status") != "processing":
                break

        if status and status.get("status") == "processing":
            _show("stop", await client.post(f"{api}/stop", json={"requestId": request_id}))
            status = _show("status", await client.get(f"{api}/status/{request_id}"))

    if status and status.get("content"):
        log.info("Transcript so far:\n%s", status["content"])
    return bool(status) and status.get("status") in ("completed", "processing")


async def run_async(args: argparse.Namespace) -> int:
    if not await check_store():
        return 1
    if args.store_only:
        return 0
    if not args.transcription_id:
        log.error("A transcriptionId is required unless --store-only is given")
        return 2
    ok = await run_flow(args.base_url, args.transcription_id, args.wait, args.polls)
    return 0 if ok else 1


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Drive start/status/stop against a running caption-relay server.")
    parser.add_argument("transcription_id", nargs="?", help="Fireflies transcript id to relay")
    parser.add_argument(
        "--base-url",
        default=f"http://localhost:{settings.PORT}",
        help=f"Server base URL (default: http://localhost:{settings.PORT})",
    )
    parser.add_argument("--wait", type=float, default=60.0, help="Seconds between status polls (default: 60)")
    parser.add_argument("--polls", type=int, default=1, help="Number of status polls before stopping (default: 1)")
    parser.add_argument("--store-only", action="store_true", help="Only check Supabase connectivity")
    args = parser.parse_args()
    sys.exit(asyncio.run(run_async(args)))


if __name__ == "__main__":
    main()
