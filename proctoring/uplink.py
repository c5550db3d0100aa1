"""
Event Buffer & Uplink - decouples event production from network delivery

The frame loop appends to the buffer; an independent task drains it on a fixed
interval and posts the whole batch. A failed batch goes back to the front of
the buffer, so delivery is at-least-once: a batch the server stored but whose
response was lost will be sent again.
"""

import asyncio
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import httpx

from .config import BACKEND_URL, FINAL_FLUSH_RETRIES, FLUSH_INTERVAL_SECONDS
from .errors import UplinkError, UploadError
from .logs import log_flush_failed
from .schemas import EventIn

logger = logging.getLogger(__name__)

Sender = Callable[[str, List[EventIn]], Awaitable[Any]]


class EventBuffer:
    """Ordered in-memory queue; the drain is a single locked swap."""

    def __init__(self):
        self._events: Deque[EventIn] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: EventIn):
        with self._lock:
            self._events.append(event)

    def drain(self) -> List[EventIn]:
        """Remove and return everything currently buffered."""
        with self._lock:
            batch = list(self._events)
            self._events.clear()
        return batch

    def requeue(self, batch: List[EventIn]):
        """Put a failed batch back in front of newer events, keeping its order."""
        with self._lock:
            self._events.extendleft(reversed(batch))

    def snapshot(self) -> List[EventIn]:
        with self._lock:
            return list(self._events)


class EventUplink:
    """
    Periodic flusher for one session's buffer.

    Args:
        buffer: Buffer filled by the frame loop
        send: Coroutine posting one batch; any exception counts as a failure
        session_id: Session the events belong to
        interval_s: Seconds between flushes
        final_retries: Extra attempts when the final flush on stop fails
        retry_delay_s: Pause before each extra attempt
    """

    def __init__(
        self,
        buffer: EventBuffer,
        send: Sender,
        session_id: str,
        interval_s: float = FLUSH_INTERVAL_SECONDS,
        final_retries: int = FINAL_FLUSH_RETRIES,
        retry_delay_s: float = 1.0,
    ):
        self.buffer = buffer
        self.send = send
        self.session_id = session_id
        self.interval_s = interval_s
        self.final_retries = final_retries
        self.retry_delay_s = retry_delay_s
        self.delivered = 0
        self.failures = 0
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def flush(self) -> bool:
        """
        Submit everything buffered as one batch.

        Returns:
            True if the batch was delivered or there was nothing to send
        """
        batch = self.buffer.drain()
        if not batch:
            return True

        try:
            await self.send(self.session_id, batch)
        except asyncio.CancelledError:
            self.buffer.requeue(batch)
            raise
        except Exception as e:
            self.buffer.requeue(batch)
            self.failures += 1
            log_flush_failed(self.session_id, len(batch), repr(e))
            return False

        self.delivered += len(batch)
        logger.debug(f"Flushed {len(batch)} events for {self.session_id}")
        return True

    async def _run(self):
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                await self.flush()

    def start(self):
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self, final_flush: bool = True) -> bool:
        """
        Stop the timer. A flush already in flight is allowed to finish.

        Returns:
            Result of the final flush (True when skipped)
        """
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        if not final_flush:
            return True

        delivered = await self.flush()
        for _ in range(max(0, self.final_retries)):
            if delivered:
                break
            await asyncio.sleep(self.retry_delay_s)
            delivered = await self.flush()
        return delivered


def spill_events(buffer: EventBuffer, path: Path) -> int:
    """
    Move undelivered events into a JSON-lines file, appending to it.

    Returns:
        Number of events written
    """
    batch = buffer.drain()
    if not batch:
        return 0
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        for event in batch:
            f.write(event.model_dump_json() + "\n")
    return len(batch)


async def resend_spilled(client: "BackendClient", spool_dir: Path) -> int:
    """
    Post events spilled by earlier runs, one file per session.

    A file is removed only once its events were accepted; a failure leaves it
    in place for the next run.

    Returns:
        Number of events delivered
    """
    if not spool_dir.is_dir():
        return 0

    delivered = 0
    for path in sorted(spool_dir.glob("*.jsonl")):
        session_id = path.stem
        lines = path.read_text(encoding="utf-8").splitlines()
        events = [EventIn.model_validate_json(line) for line in lines if line.strip()]
        if events:
            try:
                await client.post_events(session_id, events)
            except UplinkError as e:
                log_flush_failed(session_id, len(events), repr(e))
                continue
        path.unlink()
        delivered += len(events)
        logger.info(f"Resent {len(events)} spilled events for {session_id}")
    return delivered


class BackendClient:
    """HTTP client for the proctoring backend."""

    def __init__(self, base_url: str = BACKEND_URL, timeout: float = 10.0, transport=None):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def create_session(self, candidate_name: Optional[str] = None) -> Dict[str, Any]:
        response = await self._client.post("/sessions", json={"candidate_name": candidate_name})
        response.raise_for_status()
        return response.json()

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        response = await self._client.get(f"/sessions/{session_id}")
        response.raise_for_status()
        return response.json()

    async def patch_session(self, session_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.patch(f"/sessions/{session_id}", json=fields)
        response.raise_for_status()
        return response.json()

    async def end_session(self, session_id: str) -> Dict[str, Any]:
        response = await self._client.post(f"/sessions/{session_id}/end")
        response.raise_for_status()
        return response.json()

    async def post_events(self, session_id: str, events: List[EventIn]) -> int:
        payload = {"events": [e.model_dump(mode="json") for e in events]}
        try:
            response = await self._client.post(f"/sessions/{session_id}/events", json=payload)
        except httpx.HTTPError as e:
            raise UplinkError(f"Event upload failed: {e}") from e
        if response.status_code >= 300:
            raise UplinkError(f"Event upload rejected: HTTP {response.status_code}")
        return response.json().get("inserted", len(events))

    async def upload_recording(self, session_id: str, path: Path, content_type: str = "video/webm") -> str:
        """
        Upload a finished recording and return its storage reference.

        Raises:
            UploadError: on network failure or non-success response
        """
        try:
            data = Path(path).read_bytes()
            response = await self._client.post(
                f"/sessions/{session_id}/video",
                files={"file": (Path(path).name, data, content_type)},
            )
            response.raise_for_status()
        except (OSError, httpx.HTTPError) as e:
            raise UploadError(f"Recording upload failed: {e}") from e
        return response.json()["recording_ref"]
