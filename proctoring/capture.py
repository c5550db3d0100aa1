"""
Camera capture and session recording with OpenCV
"""

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import cv2
import numpy as np

from .errors import CaptureError, UnsupportedFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordingFormat:
    extension: str
    fourcc: str
    content_type: str


# Tried in order, first supported wins
RECORDING_FORMATS = (
    RecordingFormat(".webm", "VP90", "video/webm"),
    RecordingFormat(".webm", "VP80", "video/webm"),
    RecordingFormat(".mp4", "mp4v", "video/mp4"),
)


@dataclass
class Frame:
    image: Any
    # wall-clock capture time in ms
    captured_at_ms: float


def now_ms() -> float:
    return time.time() * 1000.0


class CameraSource:
    """Webcam frames with their capture timestamps."""

    def __init__(self, index: int = 0, width: int = 1280, height: int = 720):
        self.index = index
        self.width = width
        self.height = height
        self._cap = None

    def open(self):
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CaptureError(
                f"Camera {self.index} could not be opened. Check that it is connected, "
                "that camera access is allowed for this application, and that no other "
                "application (Zoom, Teams, ...) is using it."
            )
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        logger.info(f"Camera {self.index} opened")

    def read(self) -> Optional[Frame]:
        if self._cap is None:
            raise CaptureError("Camera is not open")
        ok, image = self._cap.read()
        captured_at = now_ms()
        if not ok:
            return None
        return Frame(image=image, captured_at_ms=captured_at)

    def release(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Camera {self.index} released")


def writer_supports(fmt: RecordingFormat, size=(64, 48)) -> bool:
    """Check whether OpenCV can encode this format on this machine."""
    fd, path = tempfile.mkstemp(suffix=fmt.extension)
    os.close(fd)
    try:
        writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*fmt.fourcc), 10.0, size)
        ok = writer.isOpened()
        writer.release()
        return ok
    finally:
        os.remove(path)


def pick_supported_format(
    candidates: Sequence[RecordingFormat] = RECORDING_FORMATS,
    supported: Callable[[RecordingFormat], bool] = writer_supports,
) -> RecordingFormat:
    for fmt in candidates:
        if supported(fmt):
            return fmt
    raise UnsupportedFormatError(
        "None of the recording formats are supported: "
        + ", ".join(f"{f.fourcc}{f.extension}" for f in candidates)
    )


class VideoRecorder:
    """Writes session frames to a single video file."""

    def __init__(self, output_dir: Path, session_id: str, fmt: RecordingFormat, fps: float = 24.0):
        self.fmt = fmt
        self.fps = fps
        self.path = Path(output_dir) / f"{session_id}{fmt.extension}"
        self._writer = None
        self.frames = 0

    def write(self, image: np.ndarray):
        if self._writer is None:
            height, width = image.shape[:2]
            self.path.parent.mkdir(parents=True, exist_ok=True)
            writer = cv2.VideoWriter(
                str(self.path), cv2.VideoWriter_fourcc(*self.fmt.fourcc), self.fps, (width, height)
            )
            if not writer.isOpened():
                raise UnsupportedFormatError(f"Cannot write {self.fmt.fourcc} to {self.path}")
            self._writer = writer
        self._writer.write(image)
        self.frames += 1

    def close(self) -> Optional[Path]:
        """Finish the file. Returns its path, or None if nothing was recorded."""
        if self._writer is None:
            return None
        self._writer.release()
        self._writer = None
        logger.info(f"Recording closed: {self.path} ({self.frames} frames)")
        return self.path

