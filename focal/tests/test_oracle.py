import pytest

from focal.classifier import AttentionState, DistractionCause, OracleVerdict
from focal.oracle import OracleFeed, derive_cause, parse_oracle_payload


def test_plain_yes_is_focused():
    verdict = parse_oracle_payload("Yes.")
    assert verdict.state == AttentionState.FOCUSED
    assert verdict.confidence == pytest.approx(0.8)
    assert verdict.cause is None


def test_plain_no_keeps_the_explanation():
    verdict = parse_oracle_payload("No, they are scrolling on their phone")
    assert verdict.state == AttentionState.DISTRACTED
    assert verdict.reason == "they are scrolling on their phone"
    assert verdict.cause == DistractionCause.PHONE_USE


def test_no_user_means_idle():
    verdict = parse_oracle_payload("No user in frame")
    assert verdict.state == AttentionState.IDLE
    assert verdict.cause == DistractionCause.AWAY_FROM_DESK


def test_bare_no_is_generic_distraction():
    verdict = parse_oracle_payload("no")
    assert verdict.state == AttentionState.DISTRACTED
    assert verdict.reason == "Distracted"
    assert verdict.cause == DistractionCause.GENERIC


def test_mapping_payloads():
    verdict = parse_oracle_payload({"focused": False, "reason": "Eyes closed, dozing", "confidence": 0.9})
    assert verdict.state == AttentionState.DISTRACTED
    assert verdict.cause == DistractionCause.EYES_CLOSED
    assert verdict.confidence == pytest.approx(0.9)

    verdict = parse_oracle_payload('{"state": "Focused", "confidence": 0.95}')
    assert verdict.state == AttentionState.FOCUSED
    assert verdict.reason == "Looking at screen"

    verdict = parse_oracle_payload({"data": {"focused": False, "reason": "Walked away"}})
    assert verdict.state == AttentionState.IDLE


@pytest.mark.parametrize(
    "payload",
    ["maybe?", "{not json", {"reason": "no state"}, {"state": "unknown"}, {"focused": True, "confidence": "high"}, 42, None],
)
def test_malformed_payloads_are_ignored(payload):
    assert parse_oracle_payload(payload) is None


def test_derive_cause():
    assert derive_cause(AttentionState.FOCUSED, "phone") is None
    assert derive_cause(AttentionState.IDLE, "") == DistractionCause.AWAY_FROM_DESK
    assert derive_cause(AttentionState.DISTRACTED, "Looking out the window") == DistractionCause.LOOKING_AWAY
    assert derive_cause(AttentionState.DISTRACTED, "talking") == DistractionCause.GENERIC


def test_feed_returns_latest_until_stale():
    feed = OracleFeed(stale_after_seconds=10.0)
    assert feed.latest(now=0.0) is None

    first = OracleVerdict(state=AttentionState.FOCUSED, reason="a", confidence=0.9)
    second = OracleVerdict(state=AttentionState.DISTRACTED, reason="b", confidence=0.9)
    feed.receive(first, now=0.0)
    feed.receive(second, now=1.0)
    assert feed.latest(now=5.0) is second
    assert feed.latest(now=11.0) is second
    assert feed.latest(now=11.5) is None

    feed.receive(first, now=20.0)
    assert feed.latest(now=21.0) is first
    feed.clear()
    assert feed.latest(now=21.0) is None


@pytest.mark.parametrize(
    "payload",
    [
        '{"state": "distracted", "confidence": NaN, "reason": "phone"}',
        '{"focused": false, "confidence": Infinity}',
        {"state": "distracted", "confidence": float("nan")},
        {"focused": True, "confidence": "-inf"},
    ],
)
def test_non_finite_confidence_is_rejected(payload):
    assert parse_oracle_payload(payload) is None
