"""
Word-safe text chunking for speech synthesis.

Speech providers cap the characters per request, so a long reply is split
into segments that are synthesized (and played) one after another.
"""
from typing import List


def chunk_text(text: str, max_length: int) -> List[str]:
    """
    Split text into segments of at most max_length characters.

    Splits only between words; words inside a segment are joined by a single
    space, so " ".join(segments) equals the input with whitespace runs
    collapsed. Empty or whitespace-only text yields [].

    Raises:
        ValueError: max_length is not positive, or a single word is longer
            than max_length (it cannot be placed without splitting it).
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    segments: List[str] = []
    current: List[str] = []
    current_len = 0

    for word in text.split():
        if len(word) > max_length:
            raise ValueError(
                f"word of {len(word)} characters exceeds max_length={max_length}"
            )
        # +1 for the joining space once the segment is non-empty
        needed = len(word) if not current else current_len + 1 + len(word)
        if needed <= max_length:
            current.append(word)
            current_len = needed
        else:
            segments.append(" ".join(current))
            current = [word]
            current_len = len(word)

    if current:
        segments.append(" ".join(current))
    return segments
