from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np


MIN_LANDMARKS = 468

NOSE_TIP = 1
NOSE_BRIDGE = 6
LEFT_EYE_CORNER = 33
RIGHT_EYE_CORNER = 263
LEFT_MOUTH = 61
RIGHT_MOUTH = 291

# (top lid, bottom lid, inner corner, outer corner)
LEFT_EYE = (159, 145, 33, 133)
RIGHT_EYE = (386, 374, 362, 263)

DEPTH_YAW_BASELINE = 0.1
MOUTH_YAW_SCALE = 180.0
DEPTH_YAW_WEIGHT = 0.3
MOUTH_YAW_WEIGHT = 0.7
EAR_OPEN_THRESHOLD = 0.15

_MALFORMED = (AttributeError, IndexError, KeyError, TypeError, ValueError)


@dataclass(frozen=True)
class HeadPose:
    yaw: float
    pitch: float
    roll: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _point(landmark: Any) -> np.ndarray:
    """
    Accepts MediaPipe landmark objects, {"x", "y", "z"} mappings or (x, y, z) sequences.
    """
    if hasattr(landmark, "x"):
        coords = (landmark.x, landmark.y, getattr(landmark, "z", 0.0))
    elif isinstance(landmark, dict):
        coords = (landmark["x"], landmark["y"], landmark.get("z", 0.0))
    else:
        coords = (landmark[0], landmark[1], landmark[2] if len(landmark) > 2 else 0.0)
    point = np.array([float(c) for c in coords], dtype=np.float64)
    if not np.all(np.isfinite(point)):
        raise ValueError("non-finite landmark coordinate")
    return point


def _iter_landmarks(landmarks: Any) -> Sequence[Any]:
    return getattr(landmarks, "landmark", landmarks)


def _has_enough(landmarks: Any) -> bool:
    try:
        return landmarks is not None and len(_iter_landmarks(landmarks)) >= MIN_LANDMARKS
    except TypeError:
        return False


def estimate_head_pose(landmarks: Any) -> Optional[HeadPose]:
    if not _has_enough(landmarks):
        return None

    points = _iter_landmarks(landmarks)
    try:
        nose_tip = _point(points[NOSE_TIP])
        nose_bridge = _point(points[NOSE_BRIDGE])
        left_eye = _point(points[LEFT_EYE_CORNER])
        right_eye = _point(points[RIGHT_EYE_CORNER])
        left_mouth = _point(points[LEFT_MOUTH])
        right_mouth = _point(points[RIGHT_MOUTH])
    except _MALFORMED:
        return None

    eye_center = (left_eye + right_eye) / 2.0
    yaw_depth = math.degrees(math.atan2(nose_tip[2] - eye_center[2], DEPTH_YAW_BASELINE))

    mouth_center_x = (left_mouth[0] + right_mouth[0]) / 2.0
    yaw_mouth = (nose_tip[0] - mouth_center_x) * MOUTH_YAW_SCALE

    yaw = yaw_depth * DEPTH_YAW_WEIGHT + yaw_mouth * MOUTH_YAW_WEIGHT

    nose_vector = nose_tip - nose_bridge
    pitch = math.degrees(math.atan2(nose_vector[2], nose_vector[1]))

    eye_delta = right_eye - left_eye
    roll = math.degrees(math.atan2(eye_delta[1], eye_delta[0]))

    return HeadPose(
        yaw=_clamp(yaw, -90.0, 90.0),
        pitch=_clamp(pitch, -90.0, 90.0),
        roll=_clamp(roll, -180.0, 180.0),
    )


def eye_aspect_ratio(top: Any, bottom: Any, inner: Any, outer: Any) -> float:
    top_p, bottom_p, inner_p, outer_p = (_point(p)[:2] for p in (top, bottom, inner, outer))
    vertical = float(np.linalg.norm(top_p - bottom_p))
    horizontal = float(np.linalg.norm(inner_p - outer_p))
    return vertical / horizontal if horizontal > 0 else 0.0


def average_eye_aspect_ratio(landmarks: Any) -> Optional[float]:
    if not _has_enough(landmarks):
        return None

    points = _iter_landmarks(landmarks)
    try:
        left = eye_aspect_ratio(*(points[i] for i in LEFT_EYE))
        right = eye_aspect_ratio(*(points[i] for i in RIGHT_EYE))
    except _MALFORMED:
        return None
    return (left + right) / 2.0


def eyes_open(landmarks: Any, threshold: float = EAR_OPEN_THRESHOLD) -> bool:
    # Unreadable eyes count as open so bad input never raises an alarm.
    ear = average_eye_aspect_ratio(landmarks)
    if ear is None:
        return True
    return ear > threshold
