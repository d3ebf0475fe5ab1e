"""Blocklist check for poll questions and option labels shown on stream."""

from __future__ import annotations

import re
from typing import Iterable

# Worst-of-worst terms only; mild swearing is allowed.
BLOCKED_TERMS = frozenset({
    "fuck", "fucking", "fucker", "fucked", "fck", "fuk", "fvck", "phuck",
    "cunt", "cnt",
    "nigger", "nigga", "niggas",
    "fag", "faggot", "fags",
    "retard", "retarded",
    "tranny", "kike", "spic", "chink", "gook", "coon", "paki", "wetback",
    "rape", "rapist", "raping", "pedo", "pedophile", "childporn",
})

_LEET = str.maketrans({
    "0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "8": "b",
    "@": "a", "$": "s", "+": "t",
})
_WORD_SPLIT = re.compile(r"[^\w@$+]+")


def _normalize(word: str) -> str:
    return re.sub(r"[^a-z]", "", word.lower().translate(_LEET))


_BLOCKED = frozenset(_normalize(term) for term in BLOCKED_TERMS)


def contains_blocked_content(text: str) -> bool:
    """Word-level match, so substrings like "class" never trip a short term."""
    if not text:
        return False
    for word in _WORD_SPLIT.split(text):
        normalized = _normalize(word)
        if len(normalized) >= 2 and normalized in _BLOCKED:
            return True
    return False


def poll_contains_blocked_content(question: str, labels: Iterable[str]) -> bool:
    return contains_blocked_content(question) or any(contains_blocked_content(label) for label in labels)
