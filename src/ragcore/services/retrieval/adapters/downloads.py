from __future__ import annotations

import logging

from ragcore.errors import PermissionDeniedError
from ragcore.services.retrieval.adapters.base import (
    AdapterContext,
    TextSourceAdapter,
    context_text,
    positive_int,
    query_key,
)
from ragcore.services.retrieval.adapters.browser import (
    DOWNLOADS_PERMISSION,
    BrowserDataProvider,
    StaticBrowserData,
)
from ragcore.services.retrieval.hashing import djb2
from ragcore.services.retrieval.types import Document

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 300


class DownloadsAdapter(TextSourceAdapter):
    kind = "download"
    namespaced_chunks = True

    def __init__(self, provider: BrowserDataProvider | None = None) -> None:
        self._provider = provider or StaticBrowserData()

    def get_index_key(self, context: AdapterContext) -> str:
        return f"downloads:q={query_key(context_text(context))}"

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        if not self._provider.has_permission(DOWNLOADS_PERMISSION):
            logger.warning("%s", PermissionDeniedError(DOWNLOADS_PERMISSION))
            return []

        needle = context_text(context).lower()
        entries = await self._provider.search_downloads(
            limit=positive_int(context.get("maxResults"), default=DEFAULT_MAX_RESULTS),
        )

        docs: list[Document] = []
        for entry in entries:
            if needle and needle not in entry.filename.lower() and needle not in entry.url.lower():
                continue
            text = f"{entry.filename or 'Unknown file'}\n{entry.url}"
            docs.append(
                Document(
                    id=str(entry.id or djb2(text)),
                    title=entry.filename or "Downloaded file",
                    source_kind="download",
                    url=entry.url or None,
                    created_at=entry.started_at,
                    updated_at=entry.ended_at or entry.started_at,
                    text=text,
                    size_bytes=entry.size_bytes,
                    extra={"mime": entry.mime} if entry.mime else {},
                )
            )
        return docs

    def compute_content_hash(self, doc: Document) -> str:
        return djb2(f"{doc.title}\n{doc.url or ''}")
