from __future__ import annotations

import logging
import urllib.request
from pathlib import Path
from typing import Any, List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

from .config import DetectionSettings
from .service import FrameObservation


logger = logging.getLogger("focal.landmarks")

MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task"
MODEL_PATH = Path(__file__).resolve().parent.parent / "artifacts" / "face_landmarker.task"

Point = Tuple[float, float, float]


def _iter_landmarks(face_landmarks: Any):
    return getattr(face_landmarks, "landmark", face_landmarks)


def landmarks_to_points(face_landmarks: Any) -> List[Point]:
    return [(float(lmk.x), float(lmk.y), float(getattr(lmk, "z", 0.0))) for lmk in _iter_landmarks(face_landmarks)]


def _ensure_model(model_path: Path) -> None:
    if model_path.exists():
        return
    model_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading face landmarker model to %s", model_path)
    urllib.request.urlretrieve(MODEL_URL, model_path)


def decode_jpeg(payload: bytes) -> Optional[np.ndarray]:
    buf = np.frombuffer(payload, dtype=np.uint8)
    if buf.size == 0:
        return None
    return cv2.imdecode(buf, cv2.IMREAD_COLOR)


class _MeshDetector:
    """Legacy ``mp.solutions`` face mesh, tracking across frames."""

    api = "solutions"

    def __init__(self, settings: DetectionSettings):
        self._mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=settings.min_detection_confidence,
            min_tracking_confidence=settings.min_tracking_confidence,
        )

    def __call__(self, rgb: np.ndarray) -> Optional[Any]:
        faces = self._mesh.process(rgb).multi_face_landmarks
        return faces[0] if faces else None

    def close(self) -> None:
        self._mesh.close()


class _TaskDetector:
    """``mediapipe.tasks`` face landmarker, for builds that ship without ``solutions``."""

    api = "tasks"

    def __init__(self, settings: DetectionSettings, model_path: Path = MODEL_PATH):
        from mediapipe.tasks import python as mp_python
        from mediapipe.tasks.python import vision as mp_vision

        _ensure_model(model_path)
        self._landmarker = mp_vision.FaceLandmarker.create_from_options(
            mp_vision.FaceLandmarkerOptions(
                base_options=mp_python.BaseOptions(model_asset_path=str(model_path)),
                num_faces=1,
                min_face_detection_confidence=settings.min_detection_confidence,
                min_tracking_confidence=settings.min_tracking_confidence,
                running_mode=mp_vision.RunningMode.IMAGE,
            )
        )

    def __call__(self, rgb: np.ndarray) -> Optional[Any]:
        faces = self._landmarker.detect(mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)).face_landmarks
        return faces[0] if faces else None

    def close(self) -> None:
        self._landmarker.close()


def open_detector(settings: DetectionSettings):
    if getattr(mp, "solutions", None) is not None:
        return _MeshDetector(settings)
    return _TaskDetector(settings)


class FaceMeshLandmarker:
    """Turns BGR frames into observations of the first detected face."""

    def __init__(self, settings: DetectionSettings, detector=None):
        self.settings = settings
        self.detector = detector or open_detector(settings)
        logger.info("Face landmarker ready (%s API)", getattr(self.detector, "api", "custom"))

    def close(self) -> None:
        self.detector.close()

    def observe(self, frame: np.ndarray, timestamp: float) -> FrameObservation:
        face_landmarks = self.detector(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        if face_landmarks is None:
            return FrameObservation(timestamp=timestamp, face_detected=False, landmarks=None, confidence=0.0)

        # The face mesh does not report a per-face score, so a detected face gets a fixed confidence.
        return FrameObservation(
            timestamp=timestamp,
            face_detected=True,
            landmarks=landmarks_to_points(face_landmarks),
            confidence=self.settings.landmark_confidence,
        )
