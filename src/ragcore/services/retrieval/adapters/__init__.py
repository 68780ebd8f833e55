"""Source adapters and the registry that selects one by source kind."""

from __future__ import annotations

from pathlib import Path

from ragcore.config import get_settings
from ragcore.services.retrieval.adapters.base import AdapterContext, SourceAdapter, TextSourceAdapter
from ragcore.services.retrieval.adapters.browser import (
    BrowserDataProvider,
    DownloadEntry,
    HistoryEntry,
    StaticBrowserData,
)
from ragcore.services.retrieval.adapters.context_pills import ContextPillsAdapter
from ragcore.services.retrieval.adapters.downloads import DownloadsAdapter
from ragcore.services.retrieval.adapters.history import HistoryAdapter
from ragcore.services.retrieval.adapters.notes import (
    FolderNoteSource,
    Note,
    NotesAdapter,
    StaticNoteSource,
)
from ragcore.services.retrieval.adapters.page import PageAdapter

# Registry of adapters by source kind, filled with defaults on first lookup
_ADAPTERS: dict[str, SourceAdapter] = {}


def default_adapters(
    *,
    notes_dir: Path,
    browser: BrowserDataProvider | None = None,
) -> dict[str, SourceAdapter]:
    browser = browser or StaticBrowserData()
    adapters: list[SourceAdapter] = [
        PageAdapter(),
        NotesAdapter(FolderNoteSource(notes_dir)),
        ContextPillsAdapter(),
        HistoryAdapter(browser),
        DownloadsAdapter(browser),
    ]
    return {adapter.kind: adapter for adapter in adapters}


def register_adapter(adapter: SourceAdapter, kind: str | None = None) -> None:
    """Register (or replace) the adapter used for ``kind``, defaulting to ``adapter.kind``."""
    _ensure_defaults()
    _ADAPTERS[kind or adapter.kind] = adapter


def get_adapter(kind: str) -> SourceAdapter:
    _ensure_defaults()
    try:
        return _ADAPTERS[kind]
    except KeyError:
        raise ValueError(f"Unknown source kind: {kind}") from None


def available_sources() -> list[str]:
    _ensure_defaults()
    return sorted(_ADAPTERS)


def reset_adapters() -> None:
    _ADAPTERS.clear()


def _ensure_defaults() -> None:
    if not _ADAPTERS:
        _ADAPTERS.update(default_adapters(notes_dir=Path(get_settings().notes_dir)))


__all__ = [
    "AdapterContext",
    "BrowserDataProvider",
    "ContextPillsAdapter",
    "DownloadEntry",
    "DownloadsAdapter",
    "FolderNoteSource",
    "HistoryAdapter",
    "HistoryEntry",
    "Note",
    "NotesAdapter",
    "PageAdapter",
    "SourceAdapter",
    "StaticBrowserData",
    "StaticNoteSource",
    "TextSourceAdapter",
    "available_sources",
    "default_adapters",
    "get_adapter",
    "register_adapter",
    "reset_adapters",
]
