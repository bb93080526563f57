from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import httpx

from .classifier import AttentionState, DistractionCause
from .config import MessageSettings


logger = logging.getLogger("focal.messages")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class MessageGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class MessageRequest:
    state: AttentionState
    reason: str
    cause: Optional[DistractionCause]
    distraction_duration_seconds: float
    level: int
    distraction_count: int


class MessageGenerator(Protocol):
    async def generate(self, request: MessageRequest) -> str:
        ...


SYSTEM_PROMPT = """You are Focal, a brutally honest productivity coach who monitors the user's focus during work sessions. Your personality:

- Direct and no-nonsense, but ultimately caring about the user's success
- Uses humor and wit to make points hit harder
- Can be sarcastic when the user keeps getting distracted
- Gets progressively more dramatic and exasperated as distractions continue
- Speaks in short, punchy sentences
- Never mean-spirited, always motivating beneath the sass

Your goal is to get the user back on track IMMEDIATELY. Be specific about what you caught them doing."""

_DESCRIPTIONS = {
    DistractionCause.PHONE_USE: "on their phone instead of working",
    DistractionCause.LOOKING_AWAY: "looking away from the screen (probably at their phone or another screen)",
    DistractionCause.EYES_CLOSED: "dozing off (eyes closed)",
    DistractionCause.AWAY_FROM_DESK: "away from their desk",
    DistractionCause.GENERIC: "distracted and not looking at their work",
}


def distraction_description(state: AttentionState, cause: Optional[DistractionCause]) -> str:
    if state == AttentionState.IDLE:
        return _DESCRIPTIONS[DistractionCause.AWAY_FROM_DESK]
    return _DESCRIPTIONS[cause or DistractionCause.GENERIC]


def intervention_prompt(request: MessageRequest) -> str:
    description = distraction_description(request.state, request.cause)
    seconds = round(request.distraction_duration_seconds)

    if request.level == 1:
        return (
            f"The user has been {description} for {seconds} seconds. This is the FIRST warning.\n\n"
            "Generate a brief, attention-grabbing message (1-2 sentences max) to snap them back to focus. "
            "Be witty but not harsh. Keep it under 100 characters if possible."
        )
    if request.level == 2:
        return (
            f"The user IGNORED your first warning and has been {description} for {seconds} seconds. "
            f"They've gotten distracted {request.distraction_count} times this session.\n\n"
            "Generate a firmer message (2-3 sentences) that calls them out more directly. "
            "Be sarcastic about them ignoring you. Make them feel slightly guilty but in a fun way. "
            'Mention something about their goals or "future self."'
        )
    if request.level == 3:
        return (
            f"CRITICAL: The user has completely ignored TWO warnings and has been {description} "
            f"for over {seconds} seconds. This is the FINAL ESCALATION.\n\n"
            "Generate a dramatic, over-the-top message (3-4 sentences) about how they're throwing away "
            'their potential. Be theatrical. Reference something about "giving up" or similar humorous '
            "consequences. This should be funny but make them genuinely want to get back to work."
        )
    return f"The user appears to be {description}. Generate a very brief check-in message."


FALLBACK_MESSAGES: Dict[int, List[str]] = {
    1: [
        "Hey! Eyes on the prize.",
        "I saw that. Get back to work.",
        "Focus check! You've got this.",
        "Wandering eyes detected. Refocus!",
    ],
    2: [
        "Okay, this is the SECOND time. I'm watching you. Your future self is judging.",
        "Still distracted? Bold strategy. Let's see if it pays off. (Spoiler: it won't)",
        "I can't believe you're making me repeat myself. Your goals called. They're disappointed.",
    ],
    3: [
        "Alright, I tried being nice. You're currently speedrunning failure. Is that where we're headed?",
        "Three strikes. Your dreams are actively walking out the door. That break you want? "
        "You haven't earned it. Get. Back. To. Work.",
        "This is your FINAL warning before I go full disappointed parent mode. You had goals. "
        "Remember those? They remember you abandoning them right now.",
    ],
}


def fallback_message(level: int, rng: Optional[random.Random] = None) -> str:
    pool = FALLBACK_MESSAGES.get(level) or FALLBACK_MESSAGES[1]
    return (rng or random).choice(pool)


SPOKEN_MESSAGES: Dict[DistractionCause, Dict[int, str]] = {
    DistractionCause.PHONE_USE: {
        1: "Put down your phone and focus on your screen.",
        2: "Seriously, put that phone away. You're supposed to be working.",
        3: "Your phone is not more important than your goals. Put it down now.",
    },
    DistractionCause.LOOKING_AWAY: {
        1: "Look back at your screen, please.",
        2: "Your screen is right here. Look at it.",
        3: "Stop looking away and focus on your work.",
    },
    DistractionCause.EYES_CLOSED: {
        1: "Wake up! Open your eyes and focus.",
        2: "You're falling asleep. Wake up and get back to work.",
        3: "This is not nap time. Wake up and focus.",
    },
    DistractionCause.AWAY_FROM_DESK: {
        1: "Come back to your desk and focus on your screen.",
        2: "Where did you go? Get back to your screen.",
        3: "You're not even at your desk. Get back here and work.",
    },
    DistractionCause.GENERIC: {
        1: "You're getting distracted. Refocus on your screen.",
        2: "Stop getting distracted. Look at your screen.",
        3: "Enough distractions. Focus on your work now.",
    },
}
DEFAULT_SPOKEN_MESSAGE = "Please refocus on your screen."


def spoken_message(state: AttentionState, cause: Optional[DistractionCause], level: int) -> str:
    if cause is None:
        if state == AttentionState.IDLE:
            cause = DistractionCause.AWAY_FROM_DESK
        elif state == AttentionState.DISTRACTED:
            cause = DistractionCause.GENERIC
        else:
            return DEFAULT_SPOKEN_MESSAGE
    lines = SPOKEN_MESSAGES[cause]
    return lines.get(level) or lines[3]


def _clean(text: str) -> str:
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
        cleaned = cleaned[1:-1].strip()
    return cleaned


class GeminiMessageGenerator:
    def __init__(self, settings: MessageSettings, client: Optional[httpx.AsyncClient] = None):
        if not settings.api_key:
            raise ValueError("Gemini API key is required")
        self.settings = settings
        self.client = client

    def _body(self, request: MessageRequest) -> dict:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": SYSTEM_PROMPT}, {"text": intervention_prompt(request)}],
                }
            ],
            "generationConfig": {
                "maxOutputTokens": self.settings.max_output_tokens,
                "temperature": self.settings.temperature,
            },
        }

    @staticmethod
    def _extract_text(payload: dict) -> str:
        try:
            parts = payload["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise MessageGenerationError(f"malformed Gemini response: {exc!r}") from exc
        text = _clean(text)
        if not text:
            raise MessageGenerationError("empty response from Gemini")
        return text

    async def _post(self, client: httpx.AsyncClient, request: MessageRequest) -> httpx.Response:
        return await client.post(
            GEMINI_URL.format(model=self.settings.model),
            params={"key": self.settings.api_key},
            json=self._body(request),
            timeout=self.settings.timeout_seconds,
        )

    async def generate(self, request: MessageRequest) -> str:
        if self.client is not None:
            resp = await self._post(self.client, request)
        else:
            async with httpx.AsyncClient(timeout=self.settings.timeout_seconds) as client:
                resp = await self._post(client, request)

        if resp.status_code != 200:
            raise MessageGenerationError(f"Gemini API error {resp.status_code}: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MessageGenerationError("Gemini response is not JSON") from exc
        return self._extract_text(payload)


def build_generator(settings: MessageSettings) -> Optional[GeminiMessageGenerator]:
    if not settings.api_key:
        logger.info("No Gemini API key configured, interventions use fallback messages")
        return None
    return GeminiMessageGenerator(settings)
