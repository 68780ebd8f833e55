from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from ragcore.services.retrieval.adapters.base import (
    AdapterContext,
    TextSourceAdapter,
    markdown_headings,
)
from ragcore.services.retrieval.types import Document

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".txt", ".md"}
NOTES_HASH_PREFIX_CHARS = 4 * 1024


@dataclass(frozen=True)
class Note:
    id: str
    title: str
    content: str
    updated_at: float | None = None


class NoteSource(Protocol):
    def list_notes(self) -> list[Note]: ...


def _title_from(content: str, fallback: str) -> str:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip() or fallback
        if stripped:
            break
    return fallback


class FolderNoteSource:
    """Markdown and plain-text notes under ``root``; a missing folder is an empty corpus."""

    def __init__(self, root: Path, supported_extensions: set[str] | None = None) -> None:
        self._root = root
        self._extensions = supported_extensions or SUPPORTED_EXTENSIONS

    def list_notes(self) -> list[Note]:
        if not self._root.is_dir():
            logger.warning("notes directory not found: %s", self._root)
            return []

        files = sorted(
            path
            for path in self._root.rglob("*")
            if path.is_file() and path.suffix.lower() in self._extensions
        )

        notes: list[Note] = []
        for path in files:
            try:
                content = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("skipping unreadable note %s: %s", path, exc)
                continue
            if not content:
                continue

            relative_path = path.relative_to(self._root).as_posix()
            notes.append(
                Note(
                    id=hashlib.sha256(relative_path.encode("utf-8")).hexdigest()[:16],
                    title=_title_from(content, path.stem),
                    content=content,
                    updated_at=path.stat().st_mtime,
                )
            )
        return notes


class StaticNoteSource:
    def __init__(self, notes: Iterable[Note] = ()) -> None:
        self._notes = list(notes)

    def list_notes(self) -> list[Note]:
        return list(self._notes)


def _inline_notes(items: Any) -> list[Note]:
    if not isinstance(items, list):
        return []
    notes: list[Note] = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            continue
        content = str(item.get("content") or "").strip()
        if not content:
            continue
        notes.append(
            Note(
                id=str(item.get("id") or f"note-{position}"),
                title=str(item.get("title") or _title_from(content, f"Note {position}")),
                content=content,
            )
        )
    return notes


class NotesAdapter(TextSourceAdapter):
    """The user's notes as one corpus; inline ``context["notes"]`` overrides the source."""

    kind = "note"
    hash_prefix_chars = NOTES_HASH_PREFIX_CHARS
    namespaced_chunks = True

    def __init__(self, source: NoteSource | None = None) -> None:
        self._source = source or StaticNoteSource()

    def get_index_key(self, context: AdapterContext) -> str:
        return "notes:all"

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        notes = _inline_notes(context.get("notes")) if "notes" in context else self._source.list_notes()
        return [
            Document(
                id=note.id,
                title=note.title,
                source_kind="note",
                created_at=note.updated_at,
                updated_at=note.updated_at,
                headings=markdown_headings(note.content),
                text=note.content,
                size_bytes=len(note.content.encode("utf-8")),
            )
            for note in notes
        ]
