from __future__ import annotations

import logging
import time
from typing import Callable

from ragcore.errors import PermissionDeniedError
from ragcore.services.retrieval.adapters.base import (
    AdapterContext,
    TextSourceAdapter,
    context_text,
    positive_int,
    query_key,
)
from ragcore.services.retrieval.adapters.browser import (
    HISTORY_PERMISSION,
    BrowserDataProvider,
    StaticBrowserData,
)
from ragcore.services.retrieval.hashing import djb2
from ragcore.services.retrieval.types import Document

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 7
DEFAULT_MAX_RESULTS = 300
SECONDS_PER_DAY = 24 * 60 * 60


class HistoryAdapter(TextSourceAdapter):
    """Browsing history over the last ``days`` days, optionally filtered by ``text``."""

    kind = "history"
    namespaced_chunks = True

    def __init__(
        self,
        provider: BrowserDataProvider | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider or StaticBrowserData()
        self._clock = clock

    def get_index_key(self, context: AdapterContext) -> str:
        days = positive_int(context.get("days"), default=DEFAULT_DAYS)
        return f"history:days={days}:q={query_key(context_text(context))}"

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        if not self._provider.has_permission(HISTORY_PERMISSION):
            logger.warning("%s", PermissionDeniedError(HISTORY_PERMISSION))
            return []

        days = positive_int(context.get("days"), default=DEFAULT_DAYS)
        entries = await self._provider.search_history(
            text=context_text(context),
            start_time=self._clock() - days * SECONDS_PER_DAY,
            max_results=positive_int(context.get("maxResults"), default=DEFAULT_MAX_RESULTS),
        )

        docs: list[Document] = []
        for entry in entries:
            title = entry.title or entry.url or "Untitled"
            text = f"{entry.title or entry.url}\n{entry.url}"
            docs.append(
                Document(
                    id=str(entry.id or entry.url or djb2(text)),
                    title=title,
                    source_kind="history",
                    url=entry.url or None,
                    created_at=entry.last_visit,
                    updated_at=entry.last_visit,
                    text=text,
                    size_bytes=len(text.encode("utf-8")),
                    extra={"visit_count": entry.visit_count},
                )
            )
        return docs

    def compute_content_hash(self, doc: Document) -> str:
        return djb2(f"{doc.title}\n{doc.url or ''}")
