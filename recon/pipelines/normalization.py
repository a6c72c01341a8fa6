"""Text normalization shared by both matching strategies.

Only ASCII letters and digits survive cleaning, which is what the article
titles and OCR output have in common after lowercasing.
"""
from __future__ import annotations

import re

STOP_WORDS = frozenset({"the", "and", "with", "for", "from", "best", "top", "how"})
MIN_TOKEN_LENGTH = 4

_NON_TITLE_CHARS = re.compile(r"[^a-z0-9 ]")
_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9\s]")


def clean_text(text: str | None) -> str:
    """Lowercase and keep only ``[a-z0-9 ]``.

    Used for substring containment, so spaces are preserved but any other
    whitespace (newlines, tabs) is dropped along with punctuation.
    """
    if not text:
        return ""
    return _NON_TITLE_CHARS.sub("", text.lower())


def normalize(text: str | None) -> list[str]:
    """Tokenize text into significant words.

    Steps:
    1. Lowercase
    2. Remove everything except letters, digits and whitespace
    3. Split on whitespace
    4. Drop tokens of 3 characters or fewer, and stop-words

    Args:
        text: Raw caption, title or OCR output

    Returns:
        Tokens in their original order (duplicates kept)
    """
    if not text:
        return []
    cleaned = _NON_TOKEN_CHARS.sub("", text.lower())
    return [
        token
        for token in cleaned.split()
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOP_WORDS
    ]
