"""
Frame Inference Adapters - thin wrappers around external vision models

Adapters only translate model output into `Detection` lists; persistence,
cooldown and scoring live elsewhere. Models are loaded lazily on first use.
"""

import logging
from typing import Any, Awaitable, List, Optional, Protocol, Union

import cv2

from .models import Detection
from .signals import FaceObservation, face_detections

logger = logging.getLogger(__name__)

# COCO classes the object signals care about
OBJECT_LABELS = {"cell phone", "book", "laptop", "tv", "keyboard", "mouse"}


class InferenceAdapter(Protocol):
    name: str

    def detect(self, frame: Any) -> Union[List[Detection], Awaitable[List[Detection]]]:
        ...

    def close(self) -> None:
        ...


class YoloObjectAdapter:
    """Prohibited object detection with an Ultralytics YOLO model."""

    name = "object"

    def __init__(self, model_path: str = "yolov8n.pt", confidence: float = 0.4):
        self.model_path = model_path
        self.confidence = confidence
        self.model = None

    def _ensure_model(self):
        if self.model is None:
            from ultralytics import YOLO  # type: ignore

            self.model = YOLO(self.model_path)
            logger.info(f"YOLO model loaded: {self.model_path}")

    def detect(self, frame: Any) -> List[Detection]:
        if frame is None:
            return []
        self._ensure_model()

        detections: List[Detection] = []
        for result in self.model.predict(frame, conf=self.confidence, verbose=False):
            if result.boxes is None:
                continue
            for box in result.boxes:
                label = str(self.model.names.get(int(box.cls[0]), "")).lower()
                if label not in OBJECT_LABELS:
                    continue
                x1, y1, x2, y2 = (float(v) for v in box.xyxy[0].tolist())
                detections.append(Detection(
                    label=label,
                    score=float(box.conf[0]),
                    bbox=(x1, y1, x2 - x1, y2 - y1),
                    extra={"source": self.name, "model": self.model_path},
                ))
        return detections

    def close(self):
        self.model = None


class FaceMeshAdapter:
    """Face presence and head orientation with MediaPipe Face Mesh."""

    name = "face"

    # Face mesh landmark indices
    NOSE_TIP = 1
    CHIN = 152
    LEFT_EYE_OUTER = 33
    RIGHT_EYE_OUTER = 263

    def __init__(self, max_faces: int = 2):
        self.max_faces = max_faces
        self._mesh = None

    def _ensure_model(self):
        if self._mesh is None:
            import mediapipe as mp  # type: ignore

            self._mesh = mp.solutions.face_mesh.FaceMesh(
                max_num_faces=self.max_faces,
                refine_landmarks=True,
            )

    @classmethod
    def orientation(cls, landmarks) -> tuple:
        """Rough yaw/pitch deviation (0..1) from normalized landmarks."""
        nose = landmarks[cls.NOSE_TIP]
        left = landmarks[cls.LEFT_EYE_OUTER]
        right = landmarks[cls.RIGHT_EYE_OUTER]
        chin = landmarks[cls.CHIN]

        half_eye = abs(right.x - left.x) / 2 or 1e-6
        mid_x = (left.x + right.x) / 2
        yaw = min(1.0, abs(nose.x - mid_x) / half_eye)

        eye_y = (left.y + right.y) / 2
        span = (chin.y - eye_y) or 1e-6
        # nose sits ~40% of the way from the eye line to the chin when frontal
        pitch = min(1.0, abs((nose.y - eye_y) / span - 0.4) / 0.4)
        return yaw, pitch

    def observe(self, frame: Any) -> FaceObservation:
        self._ensure_model()
        results = self._mesh.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        faces = results.multi_face_landmarks or []
        if not faces:
            return FaceObservation(faces=0)

        yaw, pitch = self.orientation(faces[0].landmark)
        return FaceObservation(faces=len(faces), yaw=yaw, pitch=pitch)

    def detect(self, frame: Any) -> List[Detection]:
        if frame is None:
            return []
        return face_detections(self.observe(frame))

    def close(self):
        if self._mesh is not None:
            self._mesh.close()
            self._mesh = None


def default_adapters(model_path: Optional[str] = None) -> List[InferenceAdapter]:
    return [FaceMeshAdapter(), YoloObjectAdapter(model_path or "yolov8n.pt")]
