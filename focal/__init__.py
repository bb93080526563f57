"""
Attention classification and escalation core for focal.
"""

from .classifier import (
    AttentionState,
    ClassifierInput,
    ClassifierResult,
    DistractionCause,
    OracleVerdict,
    classify,
)
from .config import FocalSettings
from .escalation import EscalationEngine, EscalationState, SessionStats
from .oracle import OracleFeed, parse_oracle_payload
from .pose import HeadPose, estimate_head_pose, eyes_open
from .service import FocusService, FrameObservation

__all__ = [
    "AttentionState",
    "ClassifierInput",
    "ClassifierResult",
    "DistractionCause",
    "EscalationEngine",
    "EscalationState",
    "FocalSettings",
    "FocusService",
    "FrameObservation",
    "HeadPose",
    "OracleFeed",
    "OracleVerdict",
    "SessionStats",
    "classify",
    "estimate_head_pose",
    "eyes_open",
    "parse_oracle_payload",
]
