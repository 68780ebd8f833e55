from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

HISTORY_PERMISSION = "history"
DOWNLOADS_PERMISSION = "downloads"


@dataclass(frozen=True)
class HistoryEntry:
    url: str
    title: str = ""
    id: str | None = None
    last_visit: float | None = None
    visit_count: int = 0


@dataclass(frozen=True)
class DownloadEntry:
    filename: str
    url: str = ""
    id: str | None = None
    started_at: float | None = None
    ended_at: float | None = None
    mime: str | None = None
    size_bytes: int | None = None


class BrowserDataProvider(Protocol):
    def has_permission(self, name: str) -> bool: ...

    async def search_history(
        self,
        *,
        text: str,
        start_time: float,
        max_results: int,
    ) -> list[HistoryEntry]: ...

    async def search_downloads(self, *, limit: int) -> list[DownloadEntry]: ...


class StaticBrowserData:
    """In-process browser data; nothing is readable until a permission is granted."""

    def __init__(
        self,
        *,
        history: Iterable[HistoryEntry] = (),
        downloads: Iterable[DownloadEntry] = (),
        granted: Iterable[str] = (),
    ) -> None:
        self._history = list(history)
        self._downloads = list(downloads)
        self._granted = set(granted)

    def grant(self, name: str) -> None:
        self._granted.add(name)

    def revoke(self, name: str) -> None:
        self._granted.discard(name)

    def has_permission(self, name: str) -> bool:
        return name in self._granted

    async def search_history(
        self,
        *,
        text: str,
        start_time: float,
        max_results: int,
    ) -> list[HistoryEntry]:
        needle = text.lower()
        matches = [
            entry
            for entry in self._history
            if (entry.last_visit is None or entry.last_visit >= start_time)
            and (not needle or needle in entry.title.lower() or needle in entry.url.lower())
        ]
        matches.sort(key=lambda entry: -(entry.last_visit or 0.0))
        return matches[:max_results]

    async def search_downloads(self, *, limit: int) -> list[DownloadEntry]:
        ordered = sorted(self._downloads, key=lambda entry: -(entry.started_at or 0.0))
        return ordered[:limit]
