# social_publisher/adapters/text.py
"""Fitting post text into a platform's character limit.

Two policies exist: platforms that model threads get the text split into an
ordered list of chunks, everything else gets it truncated.
"""
import re
from typing import List, Optional

TRUNCATE_LOOKBACK = 24
MARKER_FORMAT = " ({index}/{total})"

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s")


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_BREAK.split(text.strip()) if s]


def _last_whitespace(text: str, limit: int) -> Optional[int]:
    found = None
    for match in _WHITESPACE.finditer(text, 0, limit + 1):
        found = match.start()
    return found


def hard_wrap(sentence: str, limit: int) -> List[str]:
    """Break one over-long sentence at the word boundary nearest the limit."""
    pieces = []
    rest = sentence
    while len(rest) > limit:
        cut = _last_whitespace(rest, limit)
        if not cut:
            pieces.append(rest[:limit])
            rest = rest[limit:].lstrip()
        else:
            pieces.append(rest[:cut].rstrip())
            rest = rest[cut:].lstrip()
    if rest:
        pieces.append(rest)
    return pieces


def pack_sentences(text: str, limit: int) -> List[str]:
    if limit <= 0:
        raise ValueError("chunk limit must be positive")

    chunks: List[str] = []
    current = ""
    for sentence in split_sentences(text):
        pieces = hard_wrap(sentence, limit) if len(sentence) > limit else [sentence]
        for piece in pieces:
            if not current:
                current = piece
            elif len(current) + 1 + len(piece) <= limit:
                current = f"{current} {piece}"
            else:
                chunks.append(current)
                current = piece
    if current:
        chunks.append(current)
    return chunks


def split_into_thread(text: str, limit: int, numbered: bool = False) -> List[str]:
    """Greedy sentence packing; every returned chunk is <= limit, markers included."""
    if len(text) <= limit:
        return [text.strip()] if text.strip() else []

    if not numbered:
        return pack_sentences(text, limit)

    reserve = 0
    chunks = pack_sentences(text, limit)
    for _ in range(5):
        needed = len(MARKER_FORMAT.format(index=len(chunks), total=len(chunks)))
        if needed <= reserve:
            break
        reserve = needed
        chunks = pack_sentences(text, limit - reserve)

    total = len(chunks)
    if total == 1:
        return chunks
    return [chunk + MARKER_FORMAT.format(index=i, total=total) for i, chunk in enumerate(chunks, start=1)]


def truncate(text: str, limit: int, lookback: int = TRUNCATE_LOOKBACK) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if text[limit].isspace():
        return cut.rstrip()

    window_start = max(0, limit - lookback)
    found = None
    for match in _WHITESPACE.finditer(cut, window_start):
        found = match.start()
    if found:
        return cut[:found].rstrip()
    return cut
