from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Mapping

from ragcore.config import ChunkingOptions
from ragcore.services.retrieval.adapters.base import AdapterContext, TextSourceAdapter
from ragcore.services.retrieval.types import Chunk, Document

logger = logging.getLogger(__name__)

PageCapture = Callable[[], Awaitable[Mapping[str, Any]]]

ACTIVE_PAGE_ID = "active-page"
UNTITLED_PAGE = "Untitled Page"


def _snapshot_chunks(snapshot: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    chunks = snapshot.get("chunks")
    if not isinstance(chunks, list):
        return []
    return [chunk for chunk in chunks if isinstance(chunk, Mapping)]


class PageAdapter(TextSourceAdapter):
    """The active page, from a caller-supplied snapshot or a capture callable."""

    kind = "page"

    def __init__(
        self,
        *,
        capture: PageCapture | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._capture = capture
        self._clock = clock

    def get_index_key(self, context: AdapterContext) -> str:
        url = str(context.get("url") or "").strip()
        return f"page:{url}" if url else "page:active"

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        snapshot = context.get("cached")
        if isinstance(snapshot, Mapping) and (
            isinstance(snapshot.get("text"), str) or _snapshot_chunks(snapshot)
        ):
            doc = self._document(snapshot, fallback_url=str(context.get("url") or ""))
        elif self._capture is not None:
            doc = self._document(await self._capture(), fallback_url=str(context.get("url") or ""))
        else:
            logger.warning("no page snapshot in context and no capture configured")
            return []

        if not doc.text.strip():
            logger.warning("page %s has no readable text", doc.id)
            return []
        return [doc]

    async def chunk_document(
        self,
        doc: Document,
        options: ChunkingOptions | None = None,
    ) -> list[Chunk]:
        cached = doc.extra.get("cached_chunks") or []
        if not cached:
            return await super().chunk_document(doc, options)

        chunks: list[Chunk] = []
        for position, item in enumerate(cached, start=1):
            content = str(item.get("content") or "")
            index = int(item.get("index") or position)
            chunks.append(
                Chunk(
                    id=str(item.get("id") or f"chunk-{position}"),
                    doc_id=doc.id,
                    heading=str(item.get("heading") or f"Section {position}"),
                    content=content,
                    size_chars=len(content),
                    index=index,
                )
            )
        return chunks

    def _document(self, payload: Mapping[str, Any], *, fallback_url: str) -> Document:
        chunks = _snapshot_chunks(payload)
        text = payload.get("text")
        if not isinstance(text, str) or not text:
            text = "\n".join(str(chunk.get("content") or "") for chunk in chunks)

        headings = payload.get("headings")
        if not isinstance(headings, list):
            headings = [str(chunk.get("heading") or "") for chunk in chunks]

        url = str(payload.get("url") or fallback_url or "")
        now = self._clock()
        return Document(
            id=url or ACTIVE_PAGE_ID,
            title=str(payload.get("title") or UNTITLED_PAGE),
            source_kind="page",
            url=url or None,
            created_at=now,
            language=payload.get("language") if isinstance(payload.get("language"), str) else None,
            headings=tuple(str(heading) for heading in headings if heading),
            text=text,
            size_bytes=len(text.encode("utf-8")),
            extra={"cached_chunks": chunks} if chunks else {},
        )
