"""
Proctoring Agent - runs one session's detection loop next to its uplink timer

Two independent tasks share the event loop: the frame loop (capture →
inference → debounce → buffer) and the uplink flusher. All per-class detection
state belongs to this agent and is dropped when the session stops.
"""

import argparse
import asyncio
import inspect
import logging
import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence

import httpx

from .adapters import InferenceAdapter, default_adapters
from .capture import CameraSource, VideoRecorder, now_ms, pick_supported_format
from .config import BACKEND_URL, FLUSH_INTERVAL_SECONDS, LOG_LEVEL, MAX_FPS, SPOOL_DIR, VIDEO_DIR
from .debounce import DebounceEngine, FiredSignal
from .errors import UploadError
from .logs import log_session_end, log_session_start, log_signal_fired, setup_logging
from .models import Detection, utcnow
from .schemas import EventIn
from .signals import default_signal_classes
from .uplink import BackendClient, EventBuffer, EventUplink, resend_spilled, spill_events

logger = logging.getLogger(__name__)


class ProctoringAgent:
    """
    Owns the capture device, inference adapters, debounce state and event
    buffer of a single active session.
    """

    def __init__(
        self,
        session_id: str,
        source: CameraSource,
        adapters: Sequence[InferenceAdapter],
        engine: DebounceEngine,
        buffer: EventBuffer,
        uplink: EventUplink,
        recorder: Optional[VideoRecorder] = None,
        max_fps: float = MAX_FPS,
    ):
        self.session_id = session_id
        self.source = source
        self.adapters = list(adapters)
        self.engine = engine
        self.buffer = buffer
        self.uplink = uplink
        self.recorder = recorder
        self.max_fps = max_fps
        self.started_at_ms: Optional[float] = None
        self.events_emitted = 0
        self.recording: Optional[Path] = None
        self._task: Optional[asyncio.Task] = None
        self._halted = False
        self._released = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, candidate_name: Optional[str] = None):
        """
        Open the camera and schedule the frame loop and the uplink timer.

        Raises:
            CaptureError: if the camera cannot be opened
        """
        self.source.open()
        self.started_at_ms = now_ms()
        self._halted = False
        self._released = False
        self._task = asyncio.create_task(self._frame_loop())
        self.uplink.start()
        log_session_start(self.session_id, candidate_name)

    async def _detect(self, adapter: InferenceAdapter, image) -> List[Detection]:
        if inspect.iscoroutinefunction(adapter.detect):
            return await adapter.detect(image)
        result = await asyncio.to_thread(adapter.detect, image)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _to_event(self, fired: FiredSignal) -> EventIn:
        score = fired.detection.score
        return EventIn(
            offset_ms=max(0, int(fired.at_ms - (self.started_at_ms or fired.at_ms))),
            event_type=fired.event_type,
            confidence=min(1.0, max(0.0, score)),
            metadata=fired.metadata(),
            created_at=utcnow(),
            client_event_id=str(uuid.uuid4()),
        )

    async def tick(self) -> Optional[List[EventIn]]:
        """
        Process one frame.

        Returns:
            Events emitted for the frame, or None when the source is exhausted
        """
        frame = await asyncio.to_thread(self.source.read)
        if frame is None:
            return None
        if self.recorder is not None:
            self.recorder.write(frame.image)

        detections: List[Detection] = []
        for adapter in self.adapters:
            detections.extend(await self._detect(adapter, frame.image))

        # timestamps come from the capture, not from when inference finished
        events = []
        for fired in self.engine.process(detections, frame.captured_at_ms):
            event = self._to_event(fired)
            self.buffer.append(event)
            events.append(event)
            log_signal_fired(
                self.session_id, fired.event_type.value, fired.detection.label,
                fired.detection.score, fired.persisted_ms,
            )
        self.events_emitted += len(events)
        return events

    async def _frame_loop(self):
        min_interval = 1.0 / self.max_fps if self.max_fps > 0 else 0.0
        while not self._halted:
            tick_start = time.monotonic()
            try:
                events = await self.tick()
            except Exception:
                logger.exception(f"Frame processing failed for {self.session_id}")
                return
            if events is None:
                logger.info(f"Frame source ended for {self.session_id}")
                return
            await asyncio.sleep(max(0.0, min_interval - (time.monotonic() - tick_start)))

    async def wait(self):
        """Wait until the frame loop ends on its own."""
        if self._task is not None:
            await asyncio.shield(self._task)

    def halt(self):
        """Stop scheduling ticks. A tick already running finishes first."""
        self._halted = True

    def _release(self) -> Optional[Path]:
        if self._released:
            return self.recording
        self._released = True

        self.source.release()
        for adapter in self.adapters:
            adapter.close()
        self.engine.reset()
        if self.recorder is not None:
            self.recording = self.recorder.close()
        return self.recording

    async def stop(self, spool_dir: Optional[Path] = SPOOL_DIR) -> Optional[Path]:
        """
        Halt the frame loop, release capture and model resources once the
        current tick is done, then stop the uplink timer and flush what is left.
        Events the final flush could not deliver are spilled to `spool_dir`.

        Returns:
            Path of the finished recording, if any
        """
        self.halt()
        if self._task is not None:
            # exits between ticks, never while a worker thread holds the camera or a model
            await asyncio.wait({self._task})
            self._task = None
        recording = self._release()

        delivered = await self.uplink.stop(final_flush=True)
        if not delivered and spool_dir is not None:
            path = Path(spool_dir) / f"{self.session_id}.jsonl"
            count = spill_events(self.buffer, path)
            logger.warning(f"Spilled {count} undelivered events for {self.session_id} to {path}")
        log_session_end(self.session_id, len(self.buffer))
        return recording


async def finish_session(
    client: BackendClient,
    session_id: str,
    recording: Optional[Path],
    content_type: str = "video/webm",
) -> Optional[str]:
    """
    Mark the session ended and attach its recording.

    Raises:
        UploadError: if the end time or recording could not be attached; the
            session and its events stay intact and the upload can be retried
    """
    try:
        await client.end_session(session_id)
    except httpx.HTTPError as e:
        raise UploadError(f"Could not mark session {session_id} as ended: {e}") from e

    if recording is None:
        return None
    ref = await client.upload_recording(session_id, recording, content_type)
    logger.info(f"Recording attached to {session_id}: {ref}")
    return ref


async def run_session(args: argparse.Namespace):
    client = BackendClient(args.backend)
    try:
        resent = await resend_spilled(client, SPOOL_DIR)
        if resent:
            print(f"Delivered {resent} events left over from earlier sessions")

        session = await client.create_session(args.candidate)
        session_id = session["id"]

        fmt = None
        recorder = None
        if args.record:
            fmt = pick_supported_format()
            recorder = VideoRecorder(args.output, session_id, fmt, fps=args.fps)

        buffer = EventBuffer()
        agent = ProctoringAgent(
            session_id=session_id,
            source=CameraSource(args.camera),
            adapters=default_adapters(args.model),
            engine=DebounceEngine(default_signal_classes()),
            buffer=buffer,
            uplink=EventUplink(buffer, client.post_events, session_id, args.flush_interval),
            recorder=recorder,
            max_fps=args.fps,
        )
        await agent.start(args.candidate)
        print(f"Proctoring session {session_id} running, press Ctrl-C to stop")
        try:
            await agent.wait()
        finally:
            recording = await agent.stop()
            try:
                ref = await finish_session(
                    client, session_id, recording, fmt.content_type if fmt else "video/webm"
                )
                print(f"Session {session_id} finished, recording: {ref or '-'}")
            except UploadError as e:
                logger.error(str(e))
                print(f"Upload failed, the session is saved without a recording: {e}")
    finally:
        await client.close()


def main(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(description="Record and proctor a webcam session")
    parser.add_argument("--backend", default=BACKEND_URL, help="Proctoring backend URL")
    parser.add_argument("--candidate", default=None, help="Candidate name")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    parser.add_argument("--model", default=None, help="YOLO weights for object detection")
    parser.add_argument("--fps", type=float, default=MAX_FPS, help="Max processed frames per second")
    parser.add_argument("--flush-interval", type=float, default=FLUSH_INTERVAL_SECONDS)
    parser.add_argument("--output", type=Path, default=VIDEO_DIR, help="Recording directory")
    parser.add_argument("--no-record", dest="record", action="store_false", help="Skip video recording")
    args = parser.parse_args(argv)

    setup_logging(LOG_LEVEL)
    try:
        asyncio.run(run_session(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
