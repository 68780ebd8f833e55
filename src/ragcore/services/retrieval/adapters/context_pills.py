from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from ragcore.services.retrieval.adapters.base import (
    AdapterContext,
    TextSourceAdapter,
    markdown_headings,
    positive_int,
)
from ragcore.services.retrieval.hashing import djb2
from ragcore.services.retrieval.types import Document

logger = logging.getLogger(__name__)

DEFAULT_MAX_DOCS = 25
DEFAULT_MAX_TOTAL_CHARS = 500_000
MIN_TOTAL_CHARS = 10_000
PILLS_HASH_PREFIX_CHARS = 8 * 1024
NOTE_SEPARATOR = "\n\n---\n\n"


def _pills(context: AdapterContext) -> list[Mapping[str, Any]]:
    pills = context.get("pills")
    if not isinstance(pills, list):
        return []
    return [pill for pill in pills if isinstance(pill, Mapping)]


def _pill_fingerprint(pill: Mapping[str, Any]) -> str:
    label = pill.get("label")
    prefix = f"[{label}] " if label else ""
    data = pill.get("data")
    body = str(pill.get("text") or "")
    if isinstance(data, Mapping):
        body += json.dumps(data, sort_keys=True, default=str)
    return prefix + body


class _Budget:
    def __init__(self, max_total_chars: int) -> None:
        self.remaining = max_total_chars

    def take(self, size: int) -> bool:
        if size > self.remaining:
            return False
        self.remaining -= size
        return True


def _list_text(items: list[Any], budget: _Budget) -> tuple[str, bool]:
    lines: list[str] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        title = str(item.get("title") or "").strip()
        url = str(item.get("url") or "").strip()
        line = f"{title} — {url}" if title and url else (title or url)
        if not line:
            continue
        if not budget.take(len(line) + 1):
            return "\n".join(lines), True
        lines.append(line)
    return "\n".join(lines), False


def _notes_text(items: list[Any], budget: _Budget) -> tuple[str, bool]:
    blocks: list[str] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        block = f"# {item.get('title') or 'Untitled'}\n{item.get('content') or ''}"
        if not budget.take(len(block) + len(NOTE_SEPARATOR)):
            return NOTE_SEPARATOR.join(blocks), True
        blocks.append(block)
    return NOTE_SEPARATOR.join(blocks), False


def _plain_text(text: str, budget: _Budget) -> tuple[str, bool]:
    if budget.take(len(text)):
        return text, False
    kept = text[: budget.remaining]
    budget.remaining = 0
    return kept, True


class ContextPillsAdapter(TextSourceAdapter):
    """User-selected snippets, lists and note bundles as a small corpus."""

    kind = "context"
    hash_prefix_chars = PILLS_HASH_PREFIX_CHARS
    namespaced_chunks = True

    def get_index_key(self, context: AdapterContext) -> str:
        pills = _pills(context)
        if not pills:
            return "ctx:empty"
        joined = "\n---\n".join(_pill_fingerprint(pill) for pill in pills)
        return f"ctx:{djb2(joined)}"

    async def list_documents(self, context: AdapterContext) -> list[Document]:
        limits = context.get("limits")
        limits = limits if isinstance(limits, Mapping) else {}
        max_docs = positive_int(limits.get("maxDocs"), default=DEFAULT_MAX_DOCS)
        budget = _Budget(
            positive_int(
                limits.get("maxTotalChars"),
                default=DEFAULT_MAX_TOTAL_CHARS,
                minimum=MIN_TOTAL_CHARS,
            )
        )

        docs: list[Document] = []
        for position, pill in enumerate(_pills(context), start=1):
            if len(docs) >= max_docs or budget.remaining <= 0:
                break

            data = pill.get("data")
            kind = data.get("kind") if isinstance(data, Mapping) else None
            items = data.get("items") if isinstance(data, Mapping) else None
            if kind == "list" and isinstance(items, list):
                text, truncated = _list_text(items, budget)
            elif kind == "notes" and isinstance(items, list):
                text, truncated = _notes_text(items, budget)
            else:
                kind = "text"
                text, truncated = _plain_text(str(pill.get("text") or ""), budget)

            if not text.strip():
                continue
            docs.append(
                Document(
                    id=str(pill.get("id") or f"pill-{position}"),
                    title=str(pill.get("label") or f"Context {position}"),
                    source_kind="context",
                    headings=markdown_headings(text) if kind == "notes" else (),
                    text=text,
                    size_bytes=len(text.encode("utf-8")),
                    extra={"pill_index": position - 1, "kind": kind, "truncated": truncated},
                )
            )

        if len(_pills(context)) > len(docs):
            logger.info("context pills kept=%d of %d", len(docs), len(_pills(context)))
        return docs

    def capture_disclaimers(self, doc: Document) -> list[str]:
        if doc.extra.get("truncated"):
            return [f"Context '{doc.title}' was truncated to fit the size limit."]
        return []
