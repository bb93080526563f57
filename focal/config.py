from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ClassifierThresholds:
    yaw_distracted_deg: float = 25.0
    pitch_distracted_deg: float = 20.0
    yaw_full_confidence_deg: float = 45.0
    pitch_full_confidence_deg: float = 40.0
    min_confidence: float = 0.5
    eyes_closed_confidence: float = 0.6
    ear_threshold: float = 0.15


@dataclass
class EscalationTimings:
    level_1_delay_seconds: float = 5.0
    level_2_delay_seconds: float = 10.0
    level_3_delay_seconds: float = 15.0
    reset_focus_seconds: float = 30.0
    poll_interval_seconds: float = 0.5
    reset_on_terminal_dismiss: bool = True


@dataclass
class OracleSettings:
    stale_after_seconds: float = 10.0
    default_confidence: float = 0.8


@dataclass
class MessageSettings:
    api_key: str = ""
    model: str = "gemini-1.5-flash"
    temperature: float = 0.9
    max_output_tokens: int = 150
    timeout_seconds: float = 5.0


@dataclass
class DetectionSettings:
    fps: float = 10.0
    landmark_confidence: float = 0.9
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5


@dataclass
class FocalSettings:
    thresholds: ClassifierThresholds = field(default_factory=ClassifierThresholds)
    escalation: EscalationTimings = field(default_factory=EscalationTimings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    messages: MessageSettings = field(default_factory=MessageSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)

    @classmethod
    def from_dict(cls, payload: dict) -> "FocalSettings":
        classifier_data = payload.get("classifier", {}) or {}
        escalation_data = payload.get("escalation", {}) or {}
        oracle_data = payload.get("oracle", {}) or {}
        messages_data = payload.get("messages", {}) or {}
        detection_data = payload.get("detection", {}) or {}

        thresholds = ClassifierThresholds(
            yaw_distracted_deg=float(classifier_data.get("yaw_distracted_deg", 25.0)),
            pitch_distracted_deg=float(classifier_data.get("pitch_distracted_deg", 20.0)),
            yaw_full_confidence_deg=float(classifier_data.get("yaw_full_confidence_deg", 45.0)),
            pitch_full_confidence_deg=float(classifier_data.get("pitch_full_confidence_deg", 40.0)),
            min_confidence=float(classifier_data.get("min_confidence", 0.5)),
            eyes_closed_confidence=float(classifier_data.get("eyes_closed_confidence", 0.6)),
            ear_threshold=float(classifier_data.get("ear_threshold", 0.15)),
        )
        escalation = EscalationTimings(
            level_1_delay_seconds=float(escalation_data.get("level_1_delay_seconds", 5.0)),
            level_2_delay_seconds=float(escalation_data.get("level_2_delay_seconds", 10.0)),
            level_3_delay_seconds=float(escalation_data.get("level_3_delay_seconds", 15.0)),
            reset_focus_seconds=float(escalation_data.get("reset_focus_seconds", 30.0)),
            poll_interval_seconds=float(escalation_data.get("poll_interval_seconds", 0.5)),
            reset_on_terminal_dismiss=bool(escalation_data.get("reset_on_terminal_dismiss", True)),
        )
        oracle = OracleSettings(
            stale_after_seconds=float(oracle_data.get("stale_after_seconds", 10.0)),
            default_confidence=float(oracle_data.get("default_confidence", 0.8)),
        )
        messages = MessageSettings(
            api_key=str(messages_data.get("api_key", "") or ""),
            model=str(messages_data.get("model", "gemini-1.5-flash")),
            temperature=float(messages_data.get("temperature", 0.9)),
            max_output_tokens=int(messages_data.get("max_output_tokens", 150)),
            timeout_seconds=float(messages_data.get("timeout_seconds", 5.0)),
        )
        detection = DetectionSettings(
            fps=float(detection_data.get("fps", 10.0)),
            landmark_confidence=float(detection_data.get("landmark_confidence", 0.9)),
            min_detection_confidence=float(detection_data.get("min_detection_confidence", 0.5)),
            min_tracking_confidence=float(detection_data.get("min_tracking_confidence", 0.5)),
        )
        return cls(
            thresholds=thresholds,
            escalation=escalation,
            oracle=oracle,
            messages=messages,
            detection=detection,
        )

    def to_dict(self) -> dict:
        return {
            "classifier": {
                "yaw_distracted_deg": self.thresholds.yaw_distracted_deg,
                "pitch_distracted_deg": self.thresholds.pitch_distracted_deg,
                "yaw_full_confidence_deg": self.thresholds.yaw_full_confidence_deg,
                "pitch_full_confidence_deg": self.thresholds.pitch_full_confidence_deg,
                "min_confidence": self.thresholds.min_confidence,
                "eyes_closed_confidence": self.thresholds.eyes_closed_confidence,
                "ear_threshold": self.thresholds.ear_threshold,
            },
            "escalation": {
                "level_1_delay_seconds": self.escalation.level_1_delay_seconds,
                "level_2_delay_seconds": self.escalation.level_2_delay_seconds,
                "level_3_delay_seconds": self.escalation.level_3_delay_seconds,
                "reset_focus_seconds": self.escalation.reset_focus_seconds,
                "poll_interval_seconds": self.escalation.poll_interval_seconds,
                "reset_on_terminal_dismiss": self.escalation.reset_on_terminal_dismiss,
            },
            "oracle": {
                "stale_after_seconds": self.oracle.stale_after_seconds,
                "default_confidence": self.oracle.default_confidence,
            },
            "messages": {
                "model": self.messages.model,
                "temperature": self.messages.temperature,
                "max_output_tokens": self.messages.max_output_tokens,
                "timeout_seconds": self.messages.timeout_seconds,
            },
            "detection": {
                "fps": self.detection.fps,
                "landmark_confidence": self.detection.landmark_confidence,
                "min_detection_confidence": self.detection.min_detection_confidence,
                "min_tracking_confidence": self.detection.min_tracking_confidence,
            },
        }
