"""Text processing helpers."""

from __future__ import annotations

import math
import re


WHITESPACE_RE = re.compile(r"\s+")
_INLINE_SPACE_RE = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE_RE = re.compile(r" ?\n ?")
_EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")
_TERM_RE = re.compile(r"\w+", re.UNICODE)


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def normalize_paragraphs(text: str) -> str:
    """Collapse inline whitespace but keep line and paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_SPACE_RE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE_RE.sub("\n", text)
    text = _EXTRA_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def terms(text: str) -> list[str]:
    """Lowercased word terms, used for keyword queries."""
    return _TERM_RE.findall(text.lower())
