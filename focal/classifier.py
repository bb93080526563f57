from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import ClassifierThresholds
from .pose import HeadPose


class AttentionState(str, Enum):
    FOCUSED = "FOCUSED"
    DISTRACTED = "DISTRACTED"
    IDLE = "IDLE"
    UNKNOWN = "UNKNOWN"


class DistractionCause(str, Enum):
    PHONE_USE = "PHONE_USE"
    LOOKING_AWAY = "LOOKING_AWAY"
    EYES_CLOSED = "EYES_CLOSED"
    AWAY_FROM_DESK = "AWAY_FROM_DESK"
    GENERIC = "GENERIC"


ORACLE_NO_FACE_MIN_CONFIDENCE = 0.8
ORACLE_NO_FACE_SCALE = 0.7
ORACLE_LOW_CONFIDENCE_MIN = 0.7
ORACLE_LOW_CONFIDENCE_SCALE = 0.8
ORACLE_NO_POSE_SCALE = 0.9
NO_POSE_CONFIDENCE = 0.5
WINNER_WEIGHT = 0.7
LOSER_WEIGHT = 0.3

REASON_NO_FACE = "No face detected in frame"
REASON_LOW_CONFIDENCE = "Face detection confidence too low"
REASON_NO_POSE = "Head pose estimation unavailable"
REASON_EYES_CLOSED = "Eyes appear closed"
REASON_FOCUSED = "Looking at screen"


def _clamp_unit(value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class OracleVerdict:
    state: AttentionState
    reason: str
    confidence: float
    cause: Optional[DistractionCause] = None

    def __post_init__(self) -> None:
        if self.state == AttentionState.UNKNOWN:
            raise ValueError("oracle verdicts are never UNKNOWN")
        object.__setattr__(self, "confidence", _clamp_unit(self.confidence))


@dataclass(frozen=True)
class ClassifierInput:
    face_detected: bool
    head_pose: Optional[HeadPose]
    eyes_open: bool
    confidence: float
    oracle_verdict: Optional[OracleVerdict] = None


@dataclass(frozen=True)
class ClassifierResult:
    state: AttentionState
    confidence: float
    reason: str
    cause: Optional[DistractionCause] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp_unit(self.confidence))

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "cause": self.cause.value if self.cause else None,
        }


DEFAULT_THRESHOLDS = ClassifierThresholds()


def _from_oracle(oracle: OracleVerdict, scale: float) -> ClassifierResult:
    return ClassifierResult(
        state=oracle.state,
        confidence=oracle.confidence * scale,
        reason=f"AI: {oracle.reason}",
        cause=oracle.cause,
    )


def _local_verdict(inp: ClassifierInput, pose: HeadPose, thresholds: ClassifierThresholds) -> ClassifierResult:
    abs_yaw = abs(pose.yaw)
    abs_pitch = abs(pose.pitch)

    if abs_yaw > thresholds.yaw_distracted_deg:
        direction = "right" if pose.yaw > 0 else "left"
        return ClassifierResult(
            state=AttentionState.DISTRACTED,
            confidence=min(1.0, abs_yaw / thresholds.yaw_full_confidence_deg),
            reason=f"Looking {direction} ({round(abs_yaw)}°)",
            cause=DistractionCause.LOOKING_AWAY,
        )
    if abs_pitch > thresholds.pitch_distracted_deg:
        direction = "down" if pose.pitch > 0 else "up"
        return ClassifierResult(
            state=AttentionState.DISTRACTED,
            confidence=min(1.0, abs_pitch / thresholds.pitch_full_confidence_deg),
            reason=f"Looking {direction} ({round(abs_pitch)}°)",
            cause=DistractionCause.LOOKING_AWAY,
        )
    if not inp.eyes_open:
        return ClassifierResult(
            state=AttentionState.DISTRACTED,
            confidence=thresholds.eyes_closed_confidence,
            reason=REASON_EYES_CLOSED,
            cause=DistractionCause.EYES_CLOSED,
        )
    return ClassifierResult(state=AttentionState.FOCUSED, confidence=inp.confidence, reason=REASON_FOCUSED)


def _fuse(local: ClassifierResult, oracle: OracleVerdict) -> ClassifierResult:
    if local.state == oracle.state:
        cause = oracle.cause if oracle.cause == DistractionCause.PHONE_USE else local.cause
        return ClassifierResult(
            state=local.state,
            confidence=(local.confidence + oracle.confidence) / 2.0,
            reason=f"{local.reason} | AI: {oracle.reason}",
            cause=cause,
        )

    if oracle.confidence > local.confidence:
        return ClassifierResult(
            state=oracle.state,
            confidence=oracle.confidence * WINNER_WEIGHT + local.confidence * LOSER_WEIGHT,
            reason=f"AI: {oracle.reason} (Local: {local.reason})",
            cause=oracle.cause,
        )
    return ClassifierResult(
        state=local.state,
        confidence=local.confidence * WINNER_WEIGHT + oracle.confidence * LOSER_WEIGHT,
        reason=f"{local.reason} (AI: {oracle.reason})",
        cause=local.cause,
    )


def classify(inp: ClassifierInput, thresholds: ClassifierThresholds = DEFAULT_THRESHOLDS) -> ClassifierResult:
    """
    Fuses the local pose signal with the optional oracle verdict.

    Rules are evaluated in order and the first match wins:
    no face, low local confidence, missing pose, then the pose thresholds,
    whose verdict is blended with the oracle when one is present.
    """
    oracle = inp.oracle_verdict

    if not inp.face_detected:
        if (
            oracle is not None
            and oracle.state == AttentionState.FOCUSED
            and oracle.confidence > ORACLE_NO_FACE_MIN_CONFIDENCE
        ):
            return _from_oracle(oracle, ORACLE_NO_FACE_SCALE)
        return ClassifierResult(
            state=AttentionState.IDLE,
            confidence=1.0,
            reason=REASON_NO_FACE,
            cause=DistractionCause.AWAY_FROM_DESK,
        )

    if inp.confidence < thresholds.min_confidence:
        if oracle is not None and oracle.confidence > ORACLE_LOW_CONFIDENCE_MIN:
            return _from_oracle(oracle, ORACLE_LOW_CONFIDENCE_SCALE)
        return ClassifierResult(state=AttentionState.UNKNOWN, confidence=inp.confidence, reason=REASON_LOW_CONFIDENCE)

    if inp.head_pose is None:
        if oracle is not None:
            return _from_oracle(oracle, ORACLE_NO_POSE_SCALE)
        return ClassifierResult(state=AttentionState.UNKNOWN, confidence=NO_POSE_CONFIDENCE, reason=REASON_NO_POSE)

    local = _local_verdict(inp, inp.head_pose, thresholds)
    if oracle is None:
        return local
    return _fuse(local, oracle)
