"""Split long replies into utterance-sized chunks for sequential speech playback.

Speech engines get unreliable on long utterances, so replies are cut at
sentence boundaries (or newlines) and consecutive sentences are packed back
together while they fit. Words are never cut: a sentence that is too long on
its own is packed word by word, and a single word longer than the limit is
emitted whole.
"""

import re

# Break after sentence-terminal punctuation, or on any run of newlines
SEGMENT_SPLIT_RE = re.compile(r'(?<=[.!?])\s+|\n+')

# Longest chunk handed to the synthesis engine in one utterance
MAX_UTTERANCE_LENGTH = 160


def split_segments(text: str) -> list[str]:
    """Split text into trimmed, non-empty sentence-like segments."""
    return [s.strip() for s in SEGMENT_SPLIT_RE.split(text) if s and s.strip()]


def _pack(pieces: list[str], max_len: int) -> list[str]:
    """Greedily join pieces with single spaces while the result fits in max_len."""
    chunks = []
    current = ""
    for piece in pieces:
        candidate = f"{current} {piece}" if current else piece
        if len(candidate) <= max_len:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = piece
    if current:
        chunks.append(current)
    return chunks


def chunk(text: str, max_len: int = MAX_UTTERANCE_LENGTH) -> list[str]:
    """Split text into ordered chunks of at most max_len characters.

    Args:
        text: Text to speak. Empty or whitespace-only text yields no chunks.
        max_len: Upper bound on chunk length. Only a single word longer than
            this is allowed to exceed it.

    Returns:
        List of non-empty, trimmed chunks in reading order.

    Raises:
        ValueError: If max_len is less than 1.
    """
    if max_len < 1:
        raise ValueError(f"max_len must be at least 1, got {max_len}")

    pieces = []
    for segment in split_segments(text):
        if len(segment) <= max_len:
            pieces.append(segment)
        else:
            # Oversized sentence (or unpunctuated text): fall back to words
            pieces.extend(segment.split())

    return _pack(pieces, max_len)
