from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SourceKind = Literal["page", "note", "history", "download", "bookmark", "context"]
SummaryKind = Literal["global", "section", "chunk"]
Confidence = Literal["low", "medium", "high"]
Intent = Literal["fact", "definition", "howto", "comparison", "quote"]
Breadth = Literal["narrow", "wide"]


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    source_kind: SourceKind
    url: str | None = None
    created_at: float | None = None
    updated_at: float | None = None
    language: str | None = None
    headings: tuple[str, ...] = ()
    text: str = ""
    size_bytes: int | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Chunk:
    id: str
    doc_id: str
    content: str
    size_chars: int
    index: int
    heading: str | None = None


class _IndexModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Summary(_IndexModel):
    id: str
    ref_id: str = Field(alias="refId")
    kind: SummaryKind
    text: str
    key_terms: list[str] = Field(default_factory=list, alias="keyTerms")
    entities: list[str] = Field(default_factory=list)


class Section(_IndexModel):
    id: str
    heading: str
    chunk_ids: list[str] = Field(default_factory=list, alias="chunkIds")


class TocEntry(_IndexModel):
    heading: str
    level: int = 2
    chunk_ids: list[str] = Field(default_factory=list, alias="chunkIds")


class IndexMeta(_IndexModel):
    url: str | None = None
    title: str | None = None
    language: str | None = None
    created_at: float = Field(alias="createdAt")
    content_hash: str = Field(alias="contentHash")


class Index(_IndexModel):
    key: str = ""
    meta: IndexMeta
    toc: list[TocEntry] = Field(default_factory=list)
    summaries: list[Summary] = Field(default_factory=list)
    sections: list[Section] = Field(default_factory=list)

    def section_by_id(self, section_id: str) -> Section | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None


@dataclass(frozen=True)
class RetrievalCandidate:
    ref_id: str
    score: float
    summary: Summary | None = None


class UsedRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId")
    chunk_id: str = Field(alias="chunkId")
    heading: str | None = None


class Answer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    confidence: Confidence
    used_refs: list[UsedRef] = Field(default_factory=list, alias="usedRefs")
    disclaimers: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RerankResult:
    ref_ids: list[str]
    rationale: str = ""


@dataclass(frozen=True)
class CorpusIndexResult:
    index: Index
    built: bool


@dataclass(frozen=True)
class QueryClassification:
    intent: Intent = "fact"
    breadth: Breadth = "narrow"
    time_range: str | None = None
    days: int | None = None
    searches_only: bool = False
    limit: int | None = None
    explicit_date: date | None = None
    mentions_heading: str | None = None


@dataclass(frozen=True)
class RetrievalResult:
    ref_ids: list[str]
    candidates: list[RetrievalCandidate]
    index: Index
    rationale: str = ""
    expanded: list[str] = field(default_factory=list)
    classification: QueryClassification = field(default_factory=QueryClassification)
