import asyncio
import random

import pytest

from focal.classifier import AttentionState, ClassifierResult, DistractionCause
from focal.escalation import EscalationEngine, next_level
from focal.config import EscalationTimings
from focal.messages import FALLBACK_MESSAGES, SPOKEN_MESSAGES


DISTRACTED = ClassifierResult(
    state=AttentionState.DISTRACTED, confidence=0.9, reason="Looking left (40°)", cause=DistractionCause.LOOKING_AWAY
)
FOCUSED = ClassifierResult(state=AttentionState.FOCUSED, confidence=0.9, reason="Looking at screen")
FOCUSED_WITH_ORACLE = ClassifierResult(state=AttentionState.FOCUSED, confidence=0.8, reason="Looking at screen | AI: Typing")
IDLE = ClassifierResult(state=AttentionState.IDLE, confidence=1.0, reason="No face detected in frame")
UNKNOWN = ClassifierResult(state=AttentionState.UNKNOWN, confidence=0.5, reason="Head pose estimation unavailable")


class RecordingGenerator:
    def __init__(self, reply="Back to work."):
        self.reply = reply
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        return self.reply


class FailingGenerator:
    async def generate(self, request):
        raise ConnectionError("network down")


class SlowGenerator:
    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0

    async def generate(self, request):
        self.calls += 1
        await self.release.wait()
        return f"level {request.level}"


async def drive(engine, result, start, end, step=0.5, trace=None):
    """Feeds the same verdict at every poll from start to end inclusive."""
    count = int(round((end - start) / step)) + 1
    for i in range(count):
        now = start + i * step
        engine.submit(result)
        await engine.poll(now)
        if trace is not None:
            trace[now] = engine.level


def new_engine(**kwargs):
    kwargs.setdefault("rng", random.Random(1))
    engine = EscalationEngine(**kwargs)
    engine.start_session(now=0.0)
    return engine


def test_next_level_schedule():
    timings = EscalationTimings()
    assert next_level(timings, 0, 4.9, 4.9) is None
    assert next_level(timings, 0, 5.0, 5.0) == 1
    assert next_level(timings, 1, 20.0, 9.9) is None
    assert next_level(timings, 1, 20.0, 10.0) == 2
    assert next_level(timings, 2, 40.0, 15.0) == 3
    assert next_level(timings, 3, 100.0, 100.0) is None


def test_level_timeline_under_simulated_clock():
    engine = new_engine()
    trace = {}
    asyncio.run(drive(engine, DISTRACTED, 0.0, 40.0, trace=trace))

    for now, level in trace.items():
        if now < 5.0:
            assert level == 0, now
        elif now < 15.0:
            assert level == 1, now
        elif now < 30.0:
            assert level == 2, now
        else:
            assert level == 3, now
    assert engine.state.last_escalation_time == 30.0
    assert engine.session_stats.max_level == 3


def test_one_message_per_escalation():
    generator = RecordingGenerator()
    engine = new_engine(generator=generator)
    asyncio.run(drive(engine, DISTRACTED, 0.0, 60.0))

    assert [r.level for r in generator.requests] == [1, 2, 3]
    first = generator.requests[0]
    assert first.distraction_duration_seconds == pytest.approx(5.0)
    assert first.distraction_count == 1
    assert first.cause == DistractionCause.LOOKING_AWAY
    assert engine.pending_message == "Back to work."


def test_generation_failure_still_escalates_with_fallback():
    engine = new_engine(generator=FailingGenerator())
    asyncio.run(drive(engine, DISTRACTED, 0.0, 5.0))
    assert engine.level == 1
    assert engine.pending_message in FALLBACK_MESSAGES[1]


def test_generation_timeout_uses_fallback():
    class Hanging:
        async def generate(self, request):
            await asyncio.sleep(10)
            return "too late"

    engine = new_engine(generator=Hanging(), message_timeout=0.01)
    asyncio.run(drive(engine, DISTRACTED, 0.0, 5.0))
    assert engine.level == 1
    assert engine.pending_message in FALLBACK_MESSAGES[1]


def test_blank_generation_uses_fallback():
    engine = new_engine(generator=RecordingGenerator(reply="   "))
    asyncio.run(drive(engine, DISTRACTED, 0.0, 15.0))
    assert engine.level == 2
    assert engine.pending_message in FALLBACK_MESSAGES[2]


def test_sustained_focus_resets_the_ladder():
    engine = new_engine()
    trace = {}

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        await drive(engine, FOCUSED, 6.5, 40.0, trace=trace)

    asyncio.run(scenario())
    assert trace[36.0] == 1
    assert trace[36.5] == 0
    assert engine.state.distraction_start_time is None
    assert engine.state.last_escalation_time is None
    assert engine.state.focused_since_time is None
    assert engine.pending_message is None


def test_repeated_focus_verdicts_do_not_restart_the_timer():
    engine = new_engine()
    trace = {}

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        await drive(engine, FOCUSED, 6.5, 10.0, trace=trace)
        await drive(engine, FOCUSED_WITH_ORACLE, 10.5, 40.0, trace=trace)

    asyncio.run(scenario())
    assert trace[36.0] == 1
    assert trace[36.5] == 0


def test_leaving_focus_restarts_the_timer():
    engine = new_engine()
    trace = {}

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        await drive(engine, FOCUSED, 6.5, 20.0)
        await drive(engine, UNKNOWN, 20.5, 20.5)
        await drive(engine, FOCUSED, 21.0, 60.0, trace=trace)

    asyncio.run(scenario())
    assert trace[50.5] == 1
    assert trace[51.0] == 0


def test_reset_while_distracted_waits_for_a_new_episode():
    engine = new_engine()
    trace = {}

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        engine.reset_ladder(now=6.0)
        await drive(engine, DISTRACTED, 6.5, 60.0, trace=trace)
        await drive(engine, FOCUSED, 60.5, 60.5)
        await drive(engine, DISTRACTED, 61.0, 67.0, trace=trace)

    asyncio.run(scenario())
    assert all(trace[t] == 0 for t in trace if t <= 60.0)
    assert engine.session_stats.distraction_count == 2
    assert trace[65.5] == 0
    assert trace[66.0] == 1


def test_no_reset_at_level_zero():
    engine = new_engine()
    events = []
    engine.subscribe(lambda e: events.append(e.kind))
    asyncio.run(drive(engine, FOCUSED, 0.0, 60.0))
    assert engine.level == 0
    assert "reset" not in events


def test_new_episode_counts_from_its_own_start():
    engine = new_engine()
    trace = {}

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        await drive(engine, FOCUSED, 6.5, 10.0)
        await drive(engine, DISTRACTED, 10.5, 25.0, trace=trace)

    asyncio.run(scenario())
    assert engine.session_stats.distraction_count == 2
    assert trace[20.0] == 1
    assert trace[20.5] == 2


def test_idle_and_unknown_never_escalate():
    engine = new_engine()

    async def scenario():
        await drive(engine, IDLE, 0.0, 30.0)
        await drive(engine, UNKNOWN, 30.5, 60.0)

    asyncio.run(scenario())
    assert engine.level == 0
    assert engine.state.distraction_start_time is None


def test_dismiss_clears_message_only():
    engine = new_engine()
    asyncio.run(drive(engine, DISTRACTED, 0.0, 5.0))
    assert engine.pending_message

    engine.dismiss(now=5.5)
    assert engine.pending_message is None
    assert engine.level == 1

    engine.reset_ladder(now=6.0)
    assert engine.level == 0
    assert engine.state.distraction_start_time is None


def test_commands_without_session_are_noops():
    engine = EscalationEngine()
    engine.dismiss()
    engine.reset_ladder()
    asyncio.run(engine.poll(1.0))
    assert engine.end_session() is None
    assert engine.level == 0
    assert engine.pending_message is None


def test_escalation_event_carries_spoken_line():
    engine = new_engine()
    events = []
    engine.subscribe(events.append)
    asyncio.run(drive(engine, DISTRACTED, 0.0, 5.0))

    escalated = [e for e in events if e.kind == "escalated"]
    assert len(escalated) == 1
    assert escalated[0].level == 1
    assert escalated[0].message == engine.pending_message
    assert escalated[0].spoken_message == SPOKEN_MESSAGES[DistractionCause.LOOKING_AWAY][1]


def test_broken_listener_does_not_stop_the_engine():
    engine = new_engine()

    def broken(event):
        raise RuntimeError("ui crashed")

    engine.subscribe(broken)
    asyncio.run(drive(engine, DISTRACTED, 0.0, 5.0))
    assert engine.level == 1


def test_reentrancy_guard_blocks_concurrent_escalation():
    generator = SlowGenerator()
    engine = new_engine(generator=generator)

    async def scenario():
        engine.submit(DISTRACTED)
        await engine.poll(0.0)
        first = asyncio.ensure_future(engine.poll(5.0))
        await asyncio.sleep(0)
        assert engine.is_generating
        await engine.poll(5.5)
        await engine.poll(30.0)
        generator.release.set()
        await first

    asyncio.run(scenario())
    assert generator.calls == 1
    assert engine.level == 1
    assert engine.pending_message == "level 1"
    assert engine.state.last_escalation_time == 5.0
    assert not engine.is_generating


def test_late_message_is_discarded_after_session_end():
    generator = SlowGenerator()
    engine = new_engine(generator=generator)
    events = []
    engine.subscribe(lambda e: events.append(e.kind))

    async def scenario():
        engine.submit(DISTRACTED)
        await engine.poll(0.0)
        pending = asyncio.ensure_future(engine.poll(5.0))
        await asyncio.sleep(0)
        stats = engine.end_session(now=5.1)
        assert stats.distraction_count == 1
        engine.start_session(now=6.0)
        generator.release.set()
        await pending

    asyncio.run(scenario())
    assert "escalated" not in events
    assert engine.level == 0
    assert engine.pending_message is None


def test_session_stats_accumulate_time():
    ended = []
    engine = new_engine(on_session_end=ended.append)

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        await drive(engine, FOCUSED, 6.5, 10.0)

    asyncio.run(scenario())
    stats = engine.end_session(now=10.0)
    assert stats.distraction_count == 1
    assert stats.total_distracted_time == pytest.approx(6.5)
    assert stats.total_focused_time == pytest.approx(3.5)
    assert stats.max_level == 1
    assert ended == [stats]
    assert engine.state is None


def test_end_to_end_session():
    engine = new_engine(generator=FailingGenerator())
    assert engine.level == 0

    async def scenario():
        await drive(engine, DISTRACTED, 0.0, 6.0)
        assert engine.level == 1
        assert engine.pending_message
        await drive(engine, FOCUSED, 6.5, 37.5)

    asyncio.run(scenario())
    assert engine.level == 0
    assert engine.pending_message is None
