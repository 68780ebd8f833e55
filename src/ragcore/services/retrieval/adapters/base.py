from __future__ import annotations

import re
from typing import Any, Mapping, Protocol, runtime_checkable

from ragcore.config import ChunkingOptions
from ragcore.services.retrieval.chunker import chunk_text
from ragcore.services.retrieval.hashing import CONTENT_PREFIX_CHARS, fingerprint_hash
from ragcore.services.retrieval.types import Chunk, Document

AdapterContext = Mapping[str, Any]

QUERY_KEY_CHARS = 32

_MARKDOWN_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$")


@runtime_checkable
class SourceAdapter(Protocol):
    """Projects one kind of source into Documents and Chunks."""

    kind: str

    def get_index_key(self, context: AdapterContext) -> str: ...

    async def list_documents(self, context: AdapterContext) -> list[Document]: ...

    def compute_content_hash(self, doc: Document) -> str: ...

    async def fetch_full_text(self, doc: Document) -> str: ...

    async def chunk_document(
        self,
        doc: Document,
        options: ChunkingOptions | None = None,
    ) -> list[Chunk]: ...

    def capture_disclaimers(self, doc: Document) -> list[str]: ...


class TextSourceAdapter:
    """Shared behaviour for adapters whose documents carry their full text."""

    kind = ""
    hash_prefix_chars = CONTENT_PREFIX_CHARS
    namespaced_chunks = False

    def get_index_key(self, context: AdapterContext) -> str:
        raise NotImplementedError

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        raise NotImplementedError

    def compute_content_hash(self, doc: Document) -> str:
        return fingerprint_hash(doc.title or "", doc.text or "", prefix_chars=self.hash_prefix_chars)

    async def fetch_full_text(self, doc: Document) -> str:
        return doc.text or ""

    async def chunk_document(
        self,
        doc: Document,
        options: ChunkingOptions | None = None,
    ) -> list[Chunk]:
        text = await self.fetch_full_text(doc)
        return chunk_text(
            text,
            doc_id=doc.id,
            headings=doc.headings,
            options=options,
            id_prefix=f"{doc.id}::" if self.namespaced_chunks else "",
        )

    def capture_disclaimers(self, doc: Document) -> list[str]:
        return []


def markdown_headings(text: str) -> tuple[str, ...]:
    headings: list[str] = []
    for line in text.splitlines():
        match = _MARKDOWN_HEADING.match(line)
        if match:
            headings.append(match.group(1))
    return tuple(headings)


def context_text(context: AdapterContext, name: str = "text") -> str:
    return str(context.get(name) or "").strip()


def query_key(text: str) -> str:
    return text.lower()[:QUERY_KEY_CHARS]


def positive_int(value: Any, *, default: int, minimum: int = 1) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, parsed) if parsed > 0 else default
