import logging
import random
import re
from dataclasses import dataclass
from typing import List, Optional

LOGGER = logging.getLogger(__name__)

CONVERSATIONAL_PATTERN = re.compile(
    r"^(?:nice|great|awesome|good|thanks|thank you|cool|perfect|excellent|fine|ok|okay|yes|no|sure|got it)[\s!.]*$",
    re.IGNORECASE,
)

CONVERSATIONAL_REPLIES = (
    "I'm glad I could help! What else would you like to know about your database?",
    "Thanks for the feedback! Feel free to ask me another database question.",
    "You're welcome! What other data would you like to explore?",
    "Great! What would you like to query next?",
    "I'm here to help with your database queries. What would you like to know?",
)

# Capitalised word(s) directly followed by "School", e.g. "Lincoln Elementary School"
PROPER_SCHOOL_NAME = re.compile(r"([A-Z][a-z]+\s+)?[A-Z][a-z]*\s+School")

FOLLOW_UP_PATTERNS = (
    re.compile(r"^(and|also|what about|how about|can you|now|then)\s+", re.IGNORECASE),
    re.compile(r"^(show|list|get|find|tell me|give me)\s+", re.IGNORECASE),
    re.compile(r"^(what|where|who|how many)\s+", re.IGNORECASE),
    re.compile(r"\bthose\b", re.IGNORECASE),
    re.compile(r"\bthem$", re.IGNORECASE),
    re.compile(r"\bfrom there\b", re.IGNORECASE),
    re.compile(r"\bthese\b", re.IGNORECASE),
    re.compile(r"\bthat\b", re.IGNORECASE),
)


@dataclass(frozen=True)
class NormalizedQuestion:
    original: str
    normalized: str
    is_conversational: bool
    is_follow_up: bool


def is_conversational(question: str) -> bool:
    return bool(CONVERSATIONAL_PATTERN.match(question.strip()))


def conversational_reply(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return rng.choice(CONVERSATIONAL_REPLIES)


def is_follow_up(question: str) -> bool:
    text_value = question.strip()
    return any(p.search(text_value) for p in FOLLOW_UP_PATTERNS)


def canonicalize_terms(question: str) -> str:
    """Rewrite school(s) to institution(s) outside proper-noun school names."""
    protected: List[str] = []

    def _protect(m: re.Match) -> str:
        protected.append(m.group(0))
        return f"__SCHOOL_NAME_{len(protected) - 1}__"

    text_value = PROPER_SCHOOL_NAME.sub(_protect, question)
    text_value = re.sub(r"\bschools\b", "institutions", text_value, flags=re.IGNORECASE)
    text_value = re.sub(r"\bschool\b", "institution", text_value, flags=re.IGNORECASE)
    for i, name in enumerate(protected):
        text_value = text_value.replace(f"__SCHOOL_NAME_{i}__", name)
    return text_value


def normalize_question(question: str) -> NormalizedQuestion:
    original = question.strip()
    if is_conversational(original):
        return NormalizedQuestion(original, original, True, False)
    normalized = canonicalize_terms(original)
    follow_up = is_follow_up(original)
    if normalized != original:
        LOGGER.info(f"Normalized question: {normalized}")
    return NormalizedQuestion(original, normalized, False, follow_up)
