import asyncio
import json
import random

import httpx
import pytest

from focal.classifier import AttentionState, DistractionCause
from focal.config import MessageSettings
from focal.messages import (
    FALLBACK_MESSAGES,
    SPOKEN_MESSAGES,
    GeminiMessageGenerator,
    MessageGenerationError,
    MessageRequest,
    build_generator,
    fallback_message,
    intervention_prompt,
    spoken_message,
)


def request(level=1, cause=DistractionCause.LOOKING_AWAY, state=AttentionState.DISTRACTED):
    return MessageRequest(
        state=state,
        reason="Looking left (40°)",
        cause=cause,
        distraction_duration_seconds=15.4,
        level=level,
        distraction_count=3,
    )


def test_fallback_messages_come_from_the_level_pool():
    rng = random.Random(7)
    for level in (1, 2, 3):
        for _ in range(10):
            message = fallback_message(level, rng)
            assert message
            assert message in FALLBACK_MESSAGES[level]
    assert fallback_message(9, rng) in FALLBACK_MESSAGES[1]


def test_prompt_tone_escalates():
    first = intervention_prompt(request(level=1))
    second = intervention_prompt(request(level=2))
    third = intervention_prompt(request(level=3))
    assert "FIRST warning" in first and "15 seconds" in first
    assert "3 times" in second and "future self" in second
    assert "FINAL ESCALATION" in third
    assert "looking away from the screen" in first


def test_prompt_describes_idle_users_as_away():
    prompt = intervention_prompt(request(state=AttentionState.IDLE, cause=None))
    assert "away from their desk" in prompt


def test_spoken_message_uses_cause():
    assert spoken_message(AttentionState.DISTRACTED, DistractionCause.PHONE_USE, 2) == SPOKEN_MESSAGES[DistractionCause.PHONE_USE][2]
    assert spoken_message(AttentionState.IDLE, None, 1) == SPOKEN_MESSAGES[DistractionCause.AWAY_FROM_DESK][1]
    assert spoken_message(AttentionState.DISTRACTED, None, 5) == SPOKEN_MESSAGES[DistractionCause.GENERIC][3]
    assert spoken_message(AttentionState.FOCUSED, None, 1) == "Please refocus on your screen."


def _generator(handler):
    settings = MessageSettings(api_key="test-key", model="gemini-test")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiMessageGenerator(settings, client=client)


def test_gemini_generator_returns_cleaned_text():
    seen = {}

    def handler(req: httpx.Request) -> httpx.Response:
        seen["url"] = str(req.url)
        seen["body"] = json.loads(req.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": ' "Eyes up, champ." \n'}]}}]})

    text = asyncio.run(_generator(handler).generate(request(level=2)))
    assert text == "Eyes up, champ."
    assert "models/gemini-test:generateContent" in seen["url"]
    assert "key=test-key" in seen["url"]
    parts = seen["body"]["contents"][0]["parts"]
    assert "Focal" in parts[0]["text"]
    assert "IGNORED" in parts[1]["text"]
    assert seen["body"]["generationConfig"]["maxOutputTokens"] == 150


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "   "}]}}]}),
        httpx.Response(200, text="not json"),
    ],
)
def test_gemini_generator_rejects_bad_responses(response):
    with pytest.raises(MessageGenerationError):
        asyncio.run(_generator(lambda req: response).generate(request()))


def test_build_generator_requires_key():
    assert build_generator(MessageSettings(api_key="")) is None
    assert isinstance(build_generator(MessageSettings(api_key="k")), GeminiMessageGenerator)
