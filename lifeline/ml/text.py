"""
text.py — Message normalisation shared by both classifiers.

Pipeline:
    lowercase → drop URL-like substrings → non-letters to space
    → collapse whitespace → split
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

# scheme://anything or www.anything, up to the next whitespace
_URL_RE = re.compile(r"[a-z][a-z0-9+.\-]*://\S+|www\.\S+")
_NON_LETTER_RE = re.compile(r"[^a-z\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> List[str]:
    """
    Lowercase, strip URLs and punctuation, and tokenise a message.

    Parameters
    ----------
    text : str or None
        Raw user text.

    Returns
    -------
    list of str
        Ordered tokens; empty for ``None`` or blank input.
    """
    if not text:
        return []
    cleaned = str(text).lower()
    cleaned = _URL_RE.sub(" ", cleaned)
    cleaned = _NON_LETTER_RE.sub(" ", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned.split(" ") if cleaned else []


def bigrams(tokens: Sequence[str]) -> List[str]:
    """Adjacent token pairs joined by a single space."""
    return [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]
