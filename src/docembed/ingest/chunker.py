"""Token-aware chunker: bounds section text to a maximum character length.

Lines are accumulated greedily; a buffer is flushed as soon as appending the
next line would reach the limit. Lines that are themselves too long are split
on whitespace, and a single word longer than the limit is cut hard.
"""

from __future__ import annotations

import re

from docembed.ingest.types import Section

_WHITESPACE_RE = re.compile(r"(\s+)")


def split_into_substrings_of_max_length(text: str, max_length: int) -> list[str]:
    """Split *text* at whitespace into pieces of at most *max_length* characters.

    Separators inside a piece are kept as they appear in *text*.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    pieces: list[str] = []
    current = ""
    parts = _WHITESPACE_RE.split(text)
    for i in range(0, len(parts), 2):
        word = parts[i]
        if not word:
            continue
        sep = parts[i - 1] if i else ""
        # Words that cannot fit in any piece are cut into max_length slices.
        while len(word) > max_length:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_length])
            word = word[max_length:]

        if not current:
            current = word
        elif len(current) + len(sep) + len(word) <= max_length:
            current = f"{current}{sep}{word}"
        else:
            pieces.append(current)
            current = word

    if current:
        pieces.append(current)
    return [p for p in pieces if p]


def chunk(content: str, max_length: int) -> list[str]:
    """Split *content* into pieces shorter than or equal to *max_length*.

    Content already under the limit is returned as a single piece. Otherwise
    no returned piece is empty, and every piece fits within *max_length*.
    """
    if len(content) < max_length:
        return [content]

    chunks: list[str] = []

    def flush(buffer: str) -> None:
        if not buffer:
            return
        if len(buffer) < max_length:
            chunks.append(buffer)
        else:
            chunks.extend(split_into_substrings_of_max_length(buffer, max_length))

    buffer = ""
    for line in content.split("\n"):
        candidate = f"{buffer}\n{line}" if buffer else line
        if len(candidate) < max_length:
            buffer = candidate
        else:
            flush(buffer)
            buffer = line
    flush(buffer)

    return chunks


def chunk_sections(sections: list[Section], max_length: int) -> list[Section]:
    """Chunk every section; the lead heading stays on the first chunk only."""
    out: list[Section] = []
    for section in sections:
        pieces = [p for p in chunk(section.content, max_length) if p.strip()]
        for i, piece in enumerate(pieces):
            out.append(Section(content=piece, lead_heading=section.lead_heading if i == 0 else None))
    return out
