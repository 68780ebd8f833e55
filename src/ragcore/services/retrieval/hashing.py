from __future__ import annotations

from typing import Iterable

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF

CONTENT_PREFIX_CHARS = 16 * 1024


def _djb2_feed(state: int, value: str) -> int:
    for character in value:
        state = (((state << 5) + state) ^ ord(character)) & _MASK_32
    return state


def djb2(value: str) -> str:
    return format(_djb2_feed(_DJB2_SEED, value), "x")


def fingerprint_hash(title: str, text: str, *, prefix_chars: int = CONTENT_PREFIX_CHARS) -> str:
    return djb2(f"{title}\n{text[:prefix_chars]}\n{len(text)}")


def combine_hashes(hashes: Iterable[str]) -> str:
    # Order-independent over the document set.
    state = _DJB2_SEED
    for value in sorted(hashes):
        state = _djb2_feed(state, value)
    return format(state, "x")
