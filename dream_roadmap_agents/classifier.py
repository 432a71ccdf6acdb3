from __future__ import annotations

import re
from typing import Mapping

from .models import InputClassification, InputType

GREETING_MAX_LENGTH = 50
BRIEF_MESSAGE_LENGTH = 30
LONG_MESSAGE_LENGTH = 200

_GREETING_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(hi|hey|hello|hola|howdy|yo|sup|hiya|heya|greetings)",
        r"^good\s*(morning|afternoon|evening|night)",
        r"^what'?s\s*up",
        r"^how\s*(are|r)\s*(you|u|ya)",
    )
)

_GRATITUDE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(thanks|thank\s*you|thx|ty|appreciate|grateful)",
        r"that\s*(helps|helped|was\s*helpful)",
        r"you'?re\s*(the\s*best|awesome|amazing|great)",
    )
)

_QUESTION_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(what|how|why|when|where|who|can\s*you|could\s*you|tell\s*me|explain)",
        r"\?$",
    )
)

_FEAR_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\b(afraid|scared|fear|worry|worried|anxious|anxiety|nervous)\b",
        r"\b(can'?t|cannot|unable|impossible|never|won'?t)\b",
        r"\b(too\s*(old|young|late|early|scared|nervous|stupid|dumb))\b",
        r"\b(not\s*(good|smart|capable|ready|qualified|worthy)\s*enough)\b",
        r"\b(stuck|trapped|lost|confused|overwhelmed|hopeless)\b",
        r"\b(doubt|uncertain|unsure|hesitant)\b",
        r"\b(failure|fail|failing|failed)\b",
        r"\b(shouldn'?t|mustn'?t)\b",
        r"\b(what\s*if\s*(i|it)\s*(fail|don'?t|can'?t|doesn'?t))",
        r"\b(imposter|fraud|fake)\b",
    )
)

DEFAULT_INSTRUCTIONS: dict[InputType, str] = {
    InputType.GREETING: (
        "The user is greeting you. Respond warmly and briefly, like a friend would, "
        "and ask what is on their mind. Do not start coaching yet."
    ),
    InputType.GRATITUDE: (
        "The user is expressing gratitude. Acknowledge it warmly and briefly, and "
        "offer to keep exploring if they want to."
    ),
    InputType.FEAR: (
        "The user is expressing a fear, doubt, or limiting belief. Acknowledge the "
        "feeling first, then offer a thoughtful reframe and, if it fits, a small bold move."
    ),
    InputType.QUESTION: (
        "The user is asking a question. Answer it helpfully and accurately while "
        "staying warm. Do not treat it as a fear to reframe unless it clearly is one."
    ),
    InputType.FOLLOWUP: (
        "This continues the conversation. Stay contextual to what was discussed and "
        "follow their lead if they shift topics."
    ),
    InputType.CASUAL: (
        "The user is making a casual remark. Respond naturally and warmly without "
        "forcing a coaching moment."
    ),
}

FALLBACK_REPLIES: dict[InputType, str] = {
    InputType.GREETING: "Hey there! Great to connect with you. What's on your mind today?",
    InputType.GRATITUDE: "You're so welcome! I'm here whenever you need me.",
    InputType.FEAR: "I hear you, and what you're feeling is real. Let's look at it together.",
    InputType.QUESTION: "That's a great question. Let's think it through together.",
    InputType.FOLLOWUP: "I'm with you. Tell me more about what you're thinking.",
    InputType.CASUAL: "I'm here and listening. What would you like to explore together?",
}


def _matches(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def detect_input_type(message: str, prior_turn_count: int) -> InputType:
    text = message.strip().lower()
    if _matches(_GRATITUDE_PATTERNS, text):
        return InputType.GRATITUDE
    if len(text) < GREETING_MAX_LENGTH and _matches(_GREETING_PATTERNS, text):
        return InputType.GREETING
    if _matches(_FEAR_PATTERNS, text):
        return InputType.FEAR
    if _matches(_QUESTION_PATTERNS, text):
        return InputType.QUESTION
    if prior_turn_count > 0:
        return InputType.FOLLOWUP
    return InputType.CASUAL


def brevity_note(message: str) -> str:
    length = len(message.strip())
    if length < BRIEF_MESSAGE_LENGTH:
        return "The user sent a brief message, so keep the reply equally brief (1-2 sentences)."
    if length > LONG_MESSAGE_LENGTH:
        return "The user shared a lot, so take time to acknowledge the depth of it (2-4 sentences)."
    return ""


def classify(
    message: str,
    prior_turn_count: int,
    instructions: Mapping[InputType, str] | None = None,
) -> InputClassification:
    input_type = detect_input_type(message, prior_turn_count)
    table = instructions if instructions is not None else DEFAULT_INSTRUCTIONS
    instruction = table.get(input_type, DEFAULT_INSTRUCTIONS[input_type])
    note = brevity_note(message)
    if note:
        instruction = f"{instruction}\n\n{note}"
    return InputClassification(type=input_type, instruction=instruction)


def fallback_reply(input_type: InputType) -> str:
    return FALLBACK_REPLIES[input_type]
