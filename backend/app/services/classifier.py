# app/services/classifier.py
"""Rule-based intent detection for chat messages.

Decides whether a message asks to create a task or should get a chat reply.
Pure and deterministic: no I/O, same input gives the same result.
"""
import re
from typing import List, Pattern

from app.models.schemas import CreateAction, ReplyAction

DEFAULT_REPLY = (
    "Hello! I can help you organize your tasks. Just tell me what you need to do, "
    "and I'll add it to your list."
)

# First match wins
TASK_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^(?:remind me to|add task|create task|new task|todo|task:)\s*(.+)", re.IGNORECASE),
    re.compile(r"^(?:add|create|new|todo:)\s+(.+)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+(?:as a task|to my list|to tasks)$", re.IGNORECASE),
]

_PREFIX_RE = re.compile(r"^(?:remind me to|add task|create task|new task|todo|task:)\s*", re.IGNORECASE)
_SUFFIX_RE = re.compile(r"\s+(?:as a task|to my list|to tasks)$", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")

GREETINGS = (
    "hello",
    "hi",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
    "greetings",
    "howdy",
)

QUESTION_OPENERS = (
    "what",
    "how",
    "why",
    "when",
    "where",
    "who",
    "can you",
    "could you",
    "would you",
)


def clean_title(title: str) -> str:
    s = title.strip()
    s = _PREFIX_RE.sub("", s, count=1)
    s = _SUFFIX_RE.sub("", s, count=1)
    return _SPACES_RE.sub(" ", s.strip())


def is_greeting(normalized: str) -> bool:
    return normalized.startswith(GREETINGS)


def is_question(normalized: str) -> bool:
    return "?" in normalized or normalized.startswith(QUESTION_OPENERS)


def classify_message(message: str):
    """Map a chat message to ``CreateAction`` or ``ReplyAction``.

    Explicit patterns run against the lowercased text, so their titles come
    back lowercase. The short-statement fallback keeps the original casing.
    """
    normalized = message.strip().lower()

    for pattern in TASK_PATTERNS:
        match = pattern.match(normalized)
        if match:
            title = clean_title(match.group(1) or match.group(0))
            if title:
                return CreateAction(title=title)

    # Short direct statement: treat as a task
    if (
        3 < len(normalized) < 100
        and "?" not in normalized
        and not is_greeting(normalized)
        and not is_question(normalized)
    ):
        title = clean_title(message)
        if 0 < len(title) < 200:
            return CreateAction(title=title)

    return ReplyAction(text=DEFAULT_REPLY)
