from __future__ import annotations

import bisect
from typing import Sequence

from ragcore.config import ChunkingOptions
from ragcore.services.retrieval.types import Chunk


def _normalize_heading(line: str) -> str:
    return line.strip().lstrip("#").strip()


def _heading_offsets(text: str, headings: Sequence[str]) -> list[tuple[int, str]]:
    wanted = {_normalize_heading(heading): heading.strip() for heading in headings if heading.strip()}
    if not wanted:
        return []

    offsets: list[tuple[int, str]] = []
    cursor = 0
    for line in text.splitlines(keepends=True):
        key = _normalize_heading(line)
        if key and key in wanted:
            offsets.append((cursor, wanted[key]))
        cursor += len(line)
    return offsets


def _next_heading_break(
    starts: list[int],
    *,
    cursor: int,
    min_chars: int,
    limit: int,
) -> int | None:
    lower = max(cursor + 1, cursor + min_chars)
    position = bisect.bisect_left(starts, lower)
    # A break exactly at the size limit is a forced cut, which carries overlap.
    if position < len(starts) and starts[position] < limit:
        return starts[position]
    return None


def _heading_at(
    starts: list[int],
    offsets: list[tuple[int, str]],
    position: int,
) -> str | None:
    found = bisect.bisect_right(starts, position) - 1
    if found < 0:
        return None
    return offsets[found][1]


def chunk_text(
    text: str,
    *,
    doc_id: str,
    headings: Sequence[str] = (),
    options: ChunkingOptions | None = None,
    id_prefix: str = "",
) -> list[Chunk]:
    """Split ``text`` into ordered chunks of at most ``max_chunk_chars``.

    A chunk ends early at a heading line once it holds ``min_chunk_chars``;
    otherwise it is cut at the size limit and the next chunk repeats the last
    ``overlap_chars`` characters.
    """
    cfg = options or ChunkingOptions()
    if not text or not text.strip():
        return []

    offsets = _heading_offsets(text, headings)
    starts = [offset for offset, _ in offsets]
    text_length = len(text)

    chunks: list[Chunk] = []
    cursor = 0
    fresh_start = 0

    while True:
        limit = min(text_length, cursor + cfg.max_chunk_chars)
        next_cursor: int | None = None
        if limit >= text_length:
            end = text_length
        else:
            heading_break = _next_heading_break(
                starts,
                cursor=cursor,
                min_chars=cfg.min_chunk_chars,
                limit=limit,
            )
            if heading_break is not None:
                end = heading_break
                next_cursor = heading_break
            else:
                end = limit
                next_cursor = end - cfg.overlap_chars

        index = len(chunks) + 1
        content = text[cursor:end]
        heading = _heading_at(starts, offsets, fresh_start) or f"Section {index}"
        chunks.append(
            Chunk(
                id=f"{id_prefix}chunk-{index}",
                doc_id=doc_id,
                heading=heading,
                content=content,
                size_chars=len(content),
                index=index,
            )
        )

        if next_cursor is None:
            break
        fresh_start = end
        cursor = next_cursor

    return chunks
