from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .classifier import AttentionState, ClassifierResult, DistractionCause
from .config import EscalationTimings
from .messages import MessageGenerator, MessageRequest, fallback_message, spoken_message


logger = logging.getLogger("focal.escalation")

MAX_LEVEL = 3
DEFAULT_MESSAGE_TIMEOUT = 5.0


@dataclass
class SessionStats:
    started_at: float = 0.0
    distraction_count: int = 0
    total_focused_time: float = 0.0
    total_distracted_time: float = 0.0
    max_level: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EscalationState:
    level: int = 0
    distraction_start_time: Optional[float] = None
    last_escalation_time: Optional[float] = None
    focused_since_time: Optional[float] = None
    pending_message: Optional[str] = None
    attention_state: AttentionState = AttentionState.UNKNOWN
    reason: str = "Detecting focus..."
    cause: Optional[DistractionCause] = None
    last_poll_time: Optional[float] = None
    session_stats: SessionStats = field(default_factory=SessionStats)


@dataclass
class EscalationEvent:
    kind: str
    timestamp: float
    level: int
    attention_state: AttentionState
    reason: str = ""
    message: Optional[str] = None
    spoken_message: Optional[str] = None
    stats: Optional[SessionStats] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "level": self.level,
            "attention_state": self.attention_state.value,
            "reason": self.reason,
            "message": self.message,
            "spoken_message": self.spoken_message,
            "stats": self.stats.to_dict() if self.stats else None,
        }


Listener = Callable[[EscalationEvent], None]


def next_level(
    timings: EscalationTimings,
    level: int,
    distraction_duration: float,
    since_last_escalation: float,
) -> Optional[int]:
    if level == 0 and distraction_duration >= timings.level_1_delay_seconds:
        return 1
    if level == 1 and since_last_escalation >= timings.level_2_delay_seconds:
        return 2
    if level == 2 and since_last_escalation >= timings.level_3_delay_seconds:
        return MAX_LEVEL
    return None


class EscalationEngine:
    """
    Timed intervention ladder driven by a fixed-interval poll.

    The engine is the only writer of EscalationState. Verdicts are handed in
    with submit(); each poll() applies the latest one, then checks either the
    sustained-focus reset or the distraction escalation. While an intervention
    message is being generated, further polls are ignored.
    """

    def __init__(
        self,
        timings: Optional[EscalationTimings] = None,
        generator: Optional[MessageGenerator] = None,
        message_timeout: float = DEFAULT_MESSAGE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        on_session_end: Optional[Callable[[SessionStats], None]] = None,
    ):
        self.timings = timings or EscalationTimings()
        self.generator = generator
        self.message_timeout = message_timeout
        self.clock = clock
        self.rng = rng or random.Random()
        self.on_session_end = on_session_end

        self.state: Optional[EscalationState] = None
        self.latest: Optional[ClassifierResult] = None
        self.listeners: List[Listener] = []
        self._generating = False
        self._epoch = 0

    # Queries

    @property
    def is_active(self) -> bool:
        return self.state is not None

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def level(self) -> int:
        return self.state.level if self.state else 0

    @property
    def pending_message(self) -> Optional[str]:
        return self.state.pending_message if self.state else None

    @property
    def session_stats(self) -> Optional[SessionStats]:
        return self.state.session_stats if self.state else None

    def snapshot(self) -> Dict[str, Any]:
        if self.state is None:
            return {"active": False, "level": 0, "pending_message": None, "attention_state": None, "stats": None}
        return {
            "active": True,
            "level": self.state.level,
            "pending_message": self.state.pending_message,
            "attention_state": self.state.attention_state.value,
            "reason": self.state.reason,
            "generating": self._generating,
            "stats": self.state.session_stats.to_dict(),
        }

    # Subscribers

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def _emit(self, kind: str, now: float, **extra: Any) -> None:
        state = self.state
        event = EscalationEvent(
            kind=kind,
            timestamp=now,
            level=state.level if state else 0,
            attention_state=state.attention_state if state else AttentionState.UNKNOWN,
            reason=state.reason if state else "",
            **extra,
        )
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Escalation listener %r failed on %s", listener, kind)

    # Session boundary

    def start_session(self, now: Optional[float] = None) -> None:
        ts = self.clock() if now is None else now
        self._epoch += 1
        self._generating = False
        self.latest = None
        self.state = EscalationState(session_stats=SessionStats(started_at=ts))
        logger.info("Session started")
        self._emit("session_started", ts)

    def end_session(self, now: Optional[float] = None) -> Optional[SessionStats]:
        if self.state is None:
            logger.warning("end_session called with no active session")
            return None
        ts = self.clock() if now is None else now
        self._accumulate(ts)
        stats = self.state.session_stats
        self._emit("session_ended", ts, stats=stats)
        # Bumping the epoch makes any in-flight message generation discard its result.
        self._epoch += 1
        self.state = None
        self.latest = None
        self._generating = False
        logger.info(
            "Session ended: %d distractions, %.1fs focused, %.1fs distracted, max level %d",
            stats.distraction_count,
            stats.total_focused_time,
            stats.total_distracted_time,
            stats.max_level,
        )
        if self.on_session_end is not None:
            self.on_session_end(stats)
        return stats

    # Commands

    def submit(self, result: ClassifierResult) -> None:
        self.latest = result

    def dismiss(self, now: Optional[float] = None) -> None:
        if self.state is None:
            logger.warning("dismiss called with no active session")
            return
        self.state.pending_message = None
        self._emit("dismissed", self.clock() if now is None else now)

    def reset_ladder(self, now: Optional[float] = None) -> None:
        if self.state is None:
            logger.warning("reset_ladder called with no active session")
            return
        self._reset(self.clock() if now is None else now)

    def _reset(self, now: float) -> None:
        state = self.state
        state.level = 0
        state.distraction_start_time = None
        state.last_escalation_time = None
        state.focused_since_time = None
        state.pending_message = None
        logger.info("Escalation ladder reset")
        self._emit("reset", now)

    # Tick

    def _accumulate(self, now: float) -> None:
        state = self.state
        if state.last_poll_time is not None:
            elapsed = max(now - state.last_poll_time, 0.0)
            if state.attention_state == AttentionState.FOCUSED:
                state.session_stats.total_focused_time += elapsed
            elif state.attention_state == AttentionState.DISTRACTED:
                state.session_stats.total_distracted_time += elapsed
        state.last_poll_time = now

    def _apply(self, result: ClassifierResult, now: float) -> None:
        state = self.state
        previous = state.attention_state
        state.reason = result.reason
        state.cause = result.cause
        if result.state == previous:
            return

        if previous == AttentionState.DISTRACTED:
            state.distraction_start_time = None
        if previous == AttentionState.FOCUSED:
            state.focused_since_time = None

        if result.state == AttentionState.DISTRACTED:
            state.session_stats.distraction_count += 1
            state.distraction_start_time = now
            state.focused_since_time = None
        elif result.state == AttentionState.FOCUSED:
            if state.focused_since_time is None:
                state.focused_since_time = now

        state.attention_state = result.state
        logger.debug("Attention %s -> %s (%s)", previous.value, result.state.value, result.reason)
        self._emit("state_changed", now)

    async def poll(self, now: Optional[float] = None) -> None:
        if self.state is None or self._generating:
            return
        ts = self.clock() if now is None else now

        self._accumulate(ts)
        if self.latest is not None:
            self._apply(self.latest, ts)

        state = self.state
        if state.attention_state == AttentionState.FOCUSED:
            if (
                state.level > 0
                and state.focused_since_time is not None
                and ts - state.focused_since_time >= self.timings.reset_focus_seconds
            ):
                logger.info("Focused for %.0fs, resetting escalation", ts - state.focused_since_time)
                self._reset(ts)
            return

        if state.attention_state != AttentionState.DISTRACTED or state.distraction_start_time is None:
            return

        distraction = ts - state.distraction_start_time
        if state.last_escalation_time is not None and state.last_escalation_time >= state.distraction_start_time:
            since_last = ts - state.last_escalation_time
        else:
            since_last = distraction

        new_level = next_level(self.timings, state.level, distraction, since_last)
        if new_level is not None and new_level > state.level:
            await self._escalate(new_level, distraction, ts)

    async def _escalate(self, new_level: int, distraction: float, now: float) -> None:
        state = self.state
        if new_level > MAX_LEVEL:
            logger.error("Refusing to escalate past level %d", MAX_LEVEL)
            return

        request = MessageRequest(
            state=state.attention_state,
            reason=state.reason,
            cause=state.cause,
            distraction_duration_seconds=distraction,
            level=new_level,
            distraction_count=state.session_stats.distraction_count,
        )
        epoch = self._epoch
        logger.info("Escalating to level %d after %.1fs distracted", new_level, distraction)

        self._generating = True
        try:
            message = await self._compose(request)
        finally:
            if epoch == self._epoch:
                self._generating = False

        if epoch != self._epoch or self.state is None:
            logger.info("Session ended while generating level %d message, discarding it", new_level)
            return

        state = self.state
        state.level = new_level
        state.pending_message = message
        state.last_escalation_time = now
        state.session_stats.max_level = max(state.session_stats.max_level, new_level)
        self._emit(
            "escalated",
            now,
            message=message,
            spoken_message=spoken_message(request.state, request.cause, new_level),
        )

    async def _compose(self, request: MessageRequest) -> str:
        if self.generator is None:
            return fallback_message(request.level, self.rng)
        try:
            message = await asyncio.wait_for(self.generator.generate(request), timeout=self.message_timeout)
        except asyncio.TimeoutError:
            logger.warning("Message generation timed out after %.1fs, using fallback", self.message_timeout)
            return fallback_message(request.level, self.rng)
        except Exception as exc:
            logger.warning("Message generation failed (%s), using fallback", exc)
            return fallback_message(request.level, self.rng)

        if not isinstance(message, str) or not message.strip():
            logger.warning("Message generator returned empty text, using fallback")
            return fallback_message(request.level, self.rng)
        return message.strip()
