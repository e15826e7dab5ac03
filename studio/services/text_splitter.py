"""Split long documents into rewrite-sized chunks.

Chunks are always exact slices of the source text. Paragraphs (blank-line
delimited) are packed greedily first; a chunk that is still too large can only
be a single paragraph, which is then packed sentence by sentence. A single
sentence longer than the limit is emitted whole rather than cut.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Tuple

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

Span = Tuple[int, int]


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str
    span: Span

    @property
    def length(self) -> int:
        return len(self.text)


def iter_chunks(text: str, max_chars: int) -> Iterator[TextChunk]:
    """Yield :class:`TextChunk` objects covering ``text`` in order."""

    if max_chars <= 0:
        raise ValueError("max_chars must be a positive integer")
    if not text or not text.strip():
        return

    index = 0
    for start, end in _pack(_units(text, 0, len(text), _PARAGRAPH_BREAK), max_chars):
        if end - start <= max_chars:
            yield TextChunk(index=index, text=text[start:end], span=(start, end))
            index += 1
            continue
        for sub_start, sub_end in _pack(_units(text, start, end, _SENTENCE_BREAK), max_chars):
            yield TextChunk(index=index, text=text[sub_start:sub_end], span=(sub_start, sub_end))
            index += 1


def split_text(text: str, max_chars: int = 20000) -> List[str]:
    return [chunk.text for chunk in iter_chunks(text, max_chars)]


def _units(text: str, start: int, end: int, separator: re.Pattern[str]) -> Iterator[Span]:
    """Yield whitespace-trimmed spans of ``text[start:end]`` between separators."""

    cursor = start
    for match in separator.finditer(text, start, end):
        span = _trimmed(text, cursor, match.start())
        if span:
            yield span
        cursor = match.end()
    span = _trimmed(text, cursor, end)
    if span:
        yield span


def _trimmed(text: str, start: int, end: int) -> Span | None:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    lead = len(segment) - len(segment.lstrip())
    return (start + lead, start + lead + len(stripped))


def _pack(units: Iterator[Span], max_chars: int) -> Iterator[Span]:
    current: Span | None = None
    for unit_start, unit_end in units:
        if current is None:
            current = (unit_start, unit_end)
        elif unit_end - current[0] > max_chars:
            yield current
            current = (unit_start, unit_end)
        else:
            current = (current[0], unit_end)
    if current is not None:
        yield current
