from __future__ import annotations

import re
import string

_PUNCT_TABLE = str.maketrans({c: " " for c in string.punctuation})

_LEADING_POLITE = (
    "please",
    "can you",
    "could you",
    "would you",
    "will you",
    "kindly",
    "i want to",
    "i would like to",
    "i'd like to",
    "i need to",
)
_TRAILING_POLITE = ("please", "thanks", "thank you")

_LEADING_RE = re.compile(r"^(?:" + "|".join(re.escape(p) for p in _LEADING_POLITE) + r")\b[\s,]*", re.IGNORECASE)
_TRAILING_RE = re.compile(r"[\s,]*\b(?:" + "|".join(re.escape(p) for p in _TRAILING_POLITE) + r")[\s.!?]*$", re.IGNORECASE)
_EDGE_PUNCT = "\"'`.,;:!?()[]{}"

def normalize_for_matching(text: str) -> str:
    """
    Deterministic, local normalization for name matching:
    - lowercase
    - strip punctuation (→ spaces)
    - collapse whitespace
    """
    s = str(text or "").lower()
    s = s.translate(_PUNCT_TABLE)
    s = " ".join(s.split())
    return s

def collapse_whitespace(text: str) -> str:
    return " ".join(str(text or "").split())

def strip_polite_phrases(text: str) -> str:
    """Drop courtesy words around a command ("please click save, thanks" -> "click save")."""
    s = collapse_whitespace(text)
    while True:
        before = s
        s = _LEADING_RE.sub("", s).strip()
        s = _TRAILING_RE.sub("", s).strip()
        if s == before:
            return s

def prepare_utterance(text: str) -> str:
    s = strip_polite_phrases(text)
    return s.rstrip(".!?;, ").strip()

def clean_entity_value(value: str) -> str:
    s = strip_polite_phrases(value)
    s = s.strip(_EDGE_PUNCT + " ")
    return collapse_whitespace(s)
