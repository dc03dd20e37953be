"""
Checks and extractors for free text sent by contractors.

Everything here is a blunt first-line filter over untrusted input, not a
security boundary. All functions are pure.
"""

import re
from typing import NamedTuple, Optional


VOWEL_PATTERN = re.compile(r"[aeiou]", re.IGNORECASE)
REPEATED_CHAR_PATTERN = re.compile(r"^(.)\1+$")

VULGAR_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"ass\s*hat", r"fuck", r"shit", r"bitch", r"damn",
        r"piss", r"crap", r"hell", r"dick", r"cock",
    )
]

KEYBOARD_MASH_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"asdf", r"qwer", r"zxcv", r"hjkl",
        r"[a-z]{8,}",
    )
]

# Building codes A-D, floor digit, unit letter
UNIT_PATTERN = re.compile(r"[a-d]\d[a-z]", re.IGNORECASE)
SIDE_PATTERN = re.compile(r"\b(north|south)\b", re.IGNORECASE)

AFFIRMATIVE_WORDS = ("yes", "correct", "confirm")


class UnitAndSide(NamedTuple):
    unit: Optional[str] = None
    side: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.unit is not None and self.side is not None


def is_legitimate_company_name(text: str) -> bool:
    """
    Decide whether text looks like a real company name.

    Rejects text shorter than two characters, text without a vowel, one
    character repeated, vulgar terms, and keyboard mashing (including any
    run of 8+ letters).
    """
    name = text.strip()

    if len(name) < 2:
        return False

    if not VOWEL_PATTERN.search(name):
        return False
    if REPEATED_CHAR_PATTERN.match(re.sub(r"\s", "", name)):
        return False

    if any(pattern.search(name) for pattern in VULGAR_PATTERNS):
        return False

    if any(pattern.search(name) for pattern in KEYBOARD_MASH_PATTERNS):
        return False

    return True


def extract_unit_and_side(text: str) -> UnitAndSide:
    """
    Pull a unit number and a building side out of a free-text reply.

    "b2g south end" -> UnitAndSide(unit="B2G", side="south")
    """
    unit_match = UNIT_PATTERN.search(text)
    side_match = SIDE_PATTERN.search(text)
    return UnitAndSide(
        unit=unit_match.group(0).upper() if unit_match else None,
        side=side_match.group(1).lower() if side_match else None,
    )


def is_affirmative(text: str) -> bool:
    message = text.strip().lower()
    return message == "y" or any(word in message for word in AFFIRMATIVE_WORDS)
