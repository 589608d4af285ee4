"""Split recognized text into speakable segments with source offsets."""

import re

from page_reader.constants import DEFAULT_CHUNK_CHARS
from page_reader.models import Segment

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RE = re.compile(r"\s")


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    """Shrink [start, end) so it neither starts nor ends with whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _sentence_spans(text: str) -> list[tuple[int, int]]:
    """Return (start, end) spans of sentences, delimiter whitespace excluded."""
    spans = []
    pos = 0
    for match in _SENTENCE_END_RE.finditer(text):
        spans.append((pos, match.start()))
        pos = match.end()
    spans.append((pos, len(text)))

    result = []
    for start, end in spans:
        start, end = _trim(text, start, end)
        if start < end:
            result.append((start, end))
    return result


def _chunk_span(text: str, start: int, end: int, max_chars: int) -> list[tuple[int, int]]:
    """Cut a span longer than max_chars at whitespace, hard-cutting long words."""
    chunks = []
    while end - start > max_chars:
        window = text[start:start + max_chars + 1]
        breaks = [m.start() for m in _WHITESPACE_RE.finditer(window) if m.start() > 0]
        cut = start + breaks[-1] if breaks else start + max_chars

        piece_start, piece_end = _trim(text, start, cut)
        if piece_start < piece_end:
            chunks.append((piece_start, piece_end))

        start, _ = _trim(text, cut, end)

    if start < end:
        chunks.append((start, end))
    return chunks


def segment(text: str, max_chars: int = DEFAULT_CHUNK_CHARS, base_offset: int = 0) -> list[Segment]:
    """Split text into ordered, non-empty segments.

    Sentence boundaries come first; any sentence longer than max_chars (or
    text with no sentence punctuation at all) is chunked at whitespace so a
    single engine request stays short. Offsets are relative to `text` plus
    base_offset, so callers segmenting a slice of a document can rebase them.

    Only the whitespace used as a delimiter is dropped: for every segment,
    text[start_offset - base_offset:end_offset - base_offset] == segment.text.
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    segments = []
    for start, end in _sentence_spans(text):
        for piece_start, piece_end in _chunk_span(text, start, end, max_chars):
            segments.append(Segment(
                index=len(segments),
                text=text[piece_start:piece_end],
                start_offset=base_offset + piece_start,
            ))
    return segments


def word_start(text: str, offset: int) -> int:
    """Move offset back to the first character of the word it falls in."""
    offset = max(0, min(offset, len(text)))
    while offset > 0 and not text[offset - 1].isspace():
        offset -= 1
    return offset
