from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class ClassifierSchema(BaseModel):
    yaw_distracted_deg: float = 25.0
    pitch_distracted_deg: float = 20.0
    yaw_full_confidence_deg: float = 45.0
    pitch_full_confidence_deg: float = 40.0
    min_confidence: float = 0.5
    eyes_closed_confidence: float = 0.6
    ear_threshold: float = 0.15


class EscalationSchema(BaseModel):
    level_1_delay_seconds: float = 5.0
    level_2_delay_seconds: float = 10.0
    level_3_delay_seconds: float = 15.0
    reset_focus_seconds: float = 30.0
    poll_interval_seconds: float = 0.5
    reset_on_terminal_dismiss: bool = True


class OracleSchema(BaseModel):
    stale_after_seconds: float = 10.0
    default_confidence: float = 0.8


class MessagesSchema(BaseModel):
    model: str = "gemini-1.5-flash"
    temperature: float = 0.9
    max_output_tokens: int = 150
    timeout_seconds: float = 5.0


class DetectionSchema(BaseModel):
    fps: float = 10.0
    landmark_confidence: float = 0.9
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5


class SettingsSchema(BaseModel):
    classifier: ClassifierSchema = ClassifierSchema()
    escalation: EscalationSchema = EscalationSchema()
    oracle: OracleSchema = OracleSchema()
    messages: MessagesSchema = MessagesSchema()
    detection: DetectionSchema = DetectionSchema()


class LandmarkSchema(BaseModel):
    x: float
    y: float
    z: float = 0.0


class ObservationSchema(BaseModel):
    face_detected: bool
    landmarks: Optional[List[LandmarkSchema]] = None
    confidence: float = Field(0.9, ge=0.0, le=1.0)


class OraclePayloadSchema(BaseModel):
    data: Union[str, Dict[str, Any]]


class OracleVerdictSchema(BaseModel):
    accepted: bool
    state: Optional[str] = None
    reason: Optional[str] = None
    confidence: Optional[float] = None
    cause: Optional[str] = None


class StatsSchema(BaseModel):
    started_at: float
    distraction_count: int
    total_focused_time: float
    total_distracted_time: float
    max_level: int


class EscalationStatusSchema(BaseModel):
    active: bool
    running: bool = False
    level: int
    pending_message: Optional[str] = None
    attention_state: Optional[str] = None
    reason: Optional[str] = None
    generating: bool = False
    stats: Optional[StatsSchema] = None
    last_result: Optional[Dict[str, Any]] = None
