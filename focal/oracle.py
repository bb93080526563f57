from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from typing import Any, Optional

from .classifier import AttentionState, DistractionCause, OracleVerdict


logger = logging.getLogger("focal.oracle")

DEFAULT_CONFIDENCE = 0.8

IDLE_KEYWORDS = ("away", "empty", "no user")
PHONE_KEYWORDS = ("phone", "mobile", "device")
EYES_KEYWORDS = ("eyes closed", "eyes are closed", "sleep", "dozing")
LOOKING_KEYWORDS = ("looking", "turned", "glancing")

_STATE_ALIASES = {
    "focused": AttentionState.FOCUSED,
    "distracted": AttentionState.DISTRACTED,
    "idle": AttentionState.IDLE,
}
_LEADING_NO = re.compile(r"^\s*no\b[,.:;!]?\s*", re.IGNORECASE)


def derive_cause(state: AttentionState, text: str) -> Optional[DistractionCause]:
    if state == AttentionState.FOCUSED:
        return None
    if state == AttentionState.IDLE:
        return DistractionCause.AWAY_FROM_DESK

    lowered = text.lower()
    if any(k in lowered for k in PHONE_KEYWORDS):
        return DistractionCause.PHONE_USE
    if any(k in lowered for k in EYES_KEYWORDS):
        return DistractionCause.EYES_CLOSED
    if any(k in lowered for k in LOOKING_KEYWORDS):
        return DistractionCause.LOOKING_AWAY
    return DistractionCause.GENERIC


def _not_focused_state(text: str) -> AttentionState:
    lowered = text.lower()
    if any(k in lowered for k in IDLE_KEYWORDS):
        return AttentionState.IDLE
    return AttentionState.DISTRACTED


def _parse_text(text: str, confidence: float) -> Optional[OracleVerdict]:
    stripped = text.strip()
    lowered = stripped.lower()
    if re.match(r"^\s*yes\b", lowered):
        return OracleVerdict(state=AttentionState.FOCUSED, reason="Looking at screen", confidence=confidence)
    if re.match(r"^\s*no\b", lowered):
        reason = _LEADING_NO.sub("", stripped).strip() or "Distracted"
        state = _not_focused_state(stripped)
        return OracleVerdict(state=state, reason=reason, confidence=confidence, cause=derive_cause(state, reason))
    return None


def _parse_mapping(data: dict, confidence: float) -> Optional[OracleVerdict]:
    reason = str(data.get("reason") or "")
    raw_confidence = data.get("confidence", confidence)
    try:
        confidence = float(raw_confidence)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(confidence):
        logger.warning("Oracle confidence is not a finite number: %r", raw_confidence)
        return None

    raw_state = data.get("state")
    if isinstance(raw_state, str) and raw_state.strip().lower() in _STATE_ALIASES:
        state = _STATE_ALIASES[raw_state.strip().lower()]
    elif data.get("focused") is True:
        state = AttentionState.FOCUSED
    elif data.get("focused") is False:
        state = _not_focused_state(reason)
    else:
        return None

    if not reason:
        reason = "Looking at screen" if state == AttentionState.FOCUSED else "Distracted"
    return OracleVerdict(state=state, reason=reason, confidence=confidence, cause=derive_cause(state, reason))


def parse_oracle_payload(payload: Any, default_confidence: float = DEFAULT_CONFIDENCE) -> Optional[OracleVerdict]:
    """
    Turns a raw oracle answer into a verdict.

    The oracle is prompted with a yes/no question, so plain text such as
    "Yes" or "No, the user is on their phone" is the common case. Mappings
    (or JSON strings) with "state"/"focused", "reason" and "confidence" keys
    are accepted as well. Anything else yields None.
    """
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]

    if isinstance(payload, str):
        text = payload.strip()
        if text.startswith("{"):
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Discarding malformed oracle payload: %r", text[:200])
                return None
        else:
            verdict = _parse_text(text, default_confidence)
            if verdict is None:
                logger.warning("Oracle answer is neither yes nor no: %r", text[:200])
            return verdict

    if isinstance(payload, dict):
        verdict = _parse_mapping(payload, default_confidence)
        if verdict is None:
            logger.warning("Discarding oracle payload without a usable state: %r", payload)
        return verdict

    logger.warning("Unsupported oracle payload type %s", type(payload).__name__)
    return None


class OracleFeed:
    """Holds the most recent oracle verdict; verdicts older than the window read as absent."""

    def __init__(self, stale_after_seconds: float = 10.0, clock=time.monotonic):
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock
        self._verdict: Optional[OracleVerdict] = None
        self._received_at: Optional[float] = None
        self._stale_logged = False
        self.lock = threading.Lock()

    def receive(self, verdict: OracleVerdict, now: Optional[float] = None) -> None:
        ts = self.clock() if now is None else now
        with self.lock:
            self._verdict = verdict
            self._received_at = ts
            self._stale_logged = False
        logger.debug("Oracle verdict %s (%.2f): %s", verdict.state.value, verdict.confidence, verdict.reason)

    def latest(self, now: Optional[float] = None) -> Optional[OracleVerdict]:
        ts = self.clock() if now is None else now
        with self.lock:
            if self._verdict is None or self._received_at is None:
                return None
            if ts - self._received_at > self.stale_after_seconds:
                if not self._stale_logged:
                    logger.info("Oracle silent for %.1fs, classifying on local signal only", ts - self._received_at)
                    self._stale_logged = True
                return None
            return self._verdict

    def clear(self) -> None:
        with self.lock:
            self._verdict = None
            self._received_at = None
            self._stale_logged = False
