from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .classifier import ClassifierInput, ClassifierResult, OracleVerdict, classify
from .config import FocalSettings
from .escalation import EscalationEngine, EscalationEvent, SessionStats
from .messages import GeminiMessageGenerator, build_generator
from .oracle import OracleFeed, parse_oracle_payload
from .pose import estimate_head_pose, eyes_open


logger = logging.getLogger("focal.service")


@dataclass
class FrameObservation:
    timestamp: float
    face_detected: bool
    landmarks: Optional[Sequence[Any]] = None
    confidence: float = 0.0


class FocusService:
    def __init__(
        self,
        settings: FocalSettings,
        engine: Optional[EscalationEngine] = None,
        oracle: Optional[OracleFeed] = None,
        landmarker=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.clock = clock
        self.oracle = oracle or OracleFeed(stale_after_seconds=settings.oracle.stale_after_seconds, clock=clock)
        self.engine = engine or EscalationEngine(
            timings=settings.escalation,
            generator=build_generator(settings.messages),
            message_timeout=settings.messages.timeout_seconds,
            clock=clock,
        )
        self.landmarker = landmarker

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False
        self.tasks: List[asyncio.Task] = []
        self.polls: Set[asyncio.Future] = set()
        self.listeners: List[asyncio.Queue] = []

        self.last_observation: Optional[FrameObservation] = None
        self.last_result: Optional[ClassifierResult] = None
        self._observation_seq = 0
        self._evaluated_seq = 0

        self.lock = threading.Lock()
        self.engine.subscribe(self._on_escalation_event)

    # Inputs

    def submit_observation(self, observation: FrameObservation) -> None:
        with self.lock:
            self.last_observation = observation
            self._observation_seq += 1

    def submit_frame(self, frame) -> FrameObservation:
        if self.landmarker is None:
            from .landmarks import FaceMeshLandmarker

            self.landmarker = FaceMeshLandmarker(self.settings.detection)
        observation = self.landmarker.observe(frame, self.clock())
        self.submit_observation(observation)
        return observation

    def submit_oracle(self, payload: Any) -> Optional[OracleVerdict]:
        verdict = parse_oracle_payload(payload, default_confidence=self.settings.oracle.default_confidence)
        if verdict is not None:
            self.oracle.receive(verdict)
        return verdict

    # Classification tick

    def _take_observation(self) -> Optional[FrameObservation]:
        with self.lock:
            if self._observation_seq == self._evaluated_seq:
                return None
            self._evaluated_seq = self._observation_seq
            return self.last_observation

    def build_input(self, observation: FrameObservation, now: Optional[float] = None) -> ClassifierInput:
        head_pose = None
        open_eyes = True
        if observation.face_detected:
            head_pose = estimate_head_pose(observation.landmarks)
            open_eyes = eyes_open(observation.landmarks, self.settings.thresholds.ear_threshold)
        return ClassifierInput(
            face_detected=observation.face_detected,
            head_pose=head_pose,
            eyes_open=open_eyes,
            confidence=observation.confidence,
            oracle_verdict=self.oracle.latest(now),
        )

    def evaluate(self, now: Optional[float] = None) -> Optional[ClassifierResult]:
        """
        Classifies the newest observation, if one arrived since the last evaluation.
        """
        observation = self._take_observation()
        if observation is None:
            return None

        result = classify(self.build_input(observation, now), self.settings.thresholds)
        self.engine.submit(result)

        previous = self.last_result
        self.last_result = result
        if previous is None or previous.state != result.state or previous.reason != result.reason:
            self._broadcast({"type": "attention", **result.to_dict()})
        return result

    # Session boundary

    async def start_session(self) -> None:
        if self.running:
            logger.warning("Session already running")
            return
        self.loop = asyncio.get_running_loop()
        self.oracle.clear()
        self.last_result = None
        with self.lock:
            self._evaluated_seq = self._observation_seq
        self.engine.start_session()
        self.running = True
        self.tasks = [
            self.loop.create_task(self._classification_loop()),
            self.loop.create_task(self._escalation_loop()),
        ]

    async def end_session(self) -> Optional[SessionStats]:
        if not self.running:
            logger.warning("end_session called with no active session")
            return None
        self.running = False
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        return self.engine.end_session()

    async def _classification_loop(self) -> None:
        interval = 1.0 / max(self.settings.detection.fps, 0.1)
        while self.running:
            try:
                self.evaluate()
            except Exception:
                logger.exception("Classification tick failed")
            await asyncio.sleep(interval)

    async def _escalation_loop(self) -> None:
        while self.running:
            poll = asyncio.ensure_future(self.engine.poll())
            self.polls.add(poll)
            poll.add_done_callback(self._poll_done)
            await asyncio.sleep(self.settings.escalation.poll_interval_seconds)

    def _poll_done(self, poll: asyncio.Future) -> None:
        self.polls.discard(poll)
        if not poll.cancelled() and poll.exception() is not None:
            logger.error("Escalation poll failed", exc_info=poll.exception())

    # UI side

    def dismiss(self) -> None:
        terminal = self.engine.level >= 3
        self.engine.dismiss()
        if terminal and self.settings.escalation.reset_on_terminal_dismiss:
            self.engine.reset_ladder()

    def update_settings(self, settings: FocalSettings) -> None:
        self.settings = settings
        self.engine.timings = settings.escalation
        self.engine.message_timeout = settings.messages.timeout_seconds
        # injected generators are left alone
        if self.engine.generator is None or isinstance(self.engine.generator, GeminiMessageGenerator):
            self.engine.generator = build_generator(settings.messages)
        self.oracle.stale_after_seconds = settings.oracle.stale_after_seconds

    def status(self) -> Dict[str, Any]:
        payload = self.engine.snapshot()
        payload["running"] = self.running
        payload["last_result"] = self.last_result.to_dict() if self.last_result else None
        return payload

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self.listeners.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self.listeners:
            self.listeners.remove(queue)

    def _on_escalation_event(self, event: EscalationEvent) -> None:
        self._broadcast({"type": "escalation", **event.to_dict()})

    def _broadcast(self, message: Dict[str, Any]) -> None:
        if self.loop is None:
            return
        payload = json.dumps(message)
        for queue in self.listeners:
            self.loop.call_soon_threadsafe(self._push_queue, queue, payload)

    @staticmethod
    def _push_queue(queue: asyncio.Queue, payload: str) -> None:
        if queue.qsize() > 16:
            queue.get_nowait()
        queue.put_nowait(payload)

    def close(self) -> None:
        if self.landmarker is not None:
            self.landmarker.close()
