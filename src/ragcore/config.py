from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
import os
import re
from typing import Any, Mapping


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _require_positive(**values: int) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ValueError(f"{name} must be > 0")


@dataclass(frozen=True)
class IndexBudget:
    max_tokens: int = 4000
    global_synopsis_tokens: int = 450
    per_section_tokens: int = 160
    per_chunk_summary_tokens: int = 140
    max_sections: int = 10
    max_chunk_summaries: int = 12

    def __post_init__(self) -> None:
        _require_positive(
            max_tokens=self.max_tokens,
            global_synopsis_tokens=self.global_synopsis_tokens,
            per_section_tokens=self.per_section_tokens,
            per_chunk_summary_tokens=self.per_chunk_summary_tokens,
            max_sections=self.max_sections,
            max_chunk_summaries=self.max_chunk_summaries,
        )


@dataclass(frozen=True)
class ChunkingOptions:
    max_chunk_chars: int = 12000
    overlap_chars: int = 500
    min_chunk_chars: int = 1000

    def __post_init__(self) -> None:
        _require_positive(max_chunk_chars=self.max_chunk_chars)
        if self.overlap_chars < 0:
            raise ValueError("overlap_chars must be >= 0")
        if self.overlap_chars >= self.max_chunk_chars:
            raise ValueError("overlap_chars must be smaller than max_chunk_chars")
        if self.min_chunk_chars < 0:
            raise ValueError("min_chunk_chars must be >= 0")
        if self.min_chunk_chars > self.max_chunk_chars:
            object.__setattr__(self, "min_chunk_chars", self.max_chunk_chars)


@dataclass(frozen=True)
class RetrievalOptions:
    top_m: int = 12
    rerank_k: int = 4
    use_llm: bool = False
    expand_synonyms: bool = False
    synonym_limit: int = 8

    def __post_init__(self) -> None:
        _require_positive(top_m=self.top_m, rerank_k=self.rerank_k, synonym_limit=self.synonym_limit)


@dataclass(frozen=True)
class ReadingOptions:
    k_max: int = 3
    per_chunk_token_cap: int = 1400
    reserve_answer_tokens: int = 800

    def __post_init__(self) -> None:
        _require_positive(
            k_max=self.k_max,
            per_chunk_token_cap=self.per_chunk_token_cap,
            reserve_answer_tokens=self.reserve_answer_tokens,
        )


@dataclass(frozen=True)
class StoreOptions:
    max_entries: int = 20
    ttl_hours: float = 168.0

    def __post_init__(self) -> None:
        _require_positive(max_entries=self.max_entries)
        if self.ttl_hours <= 0:
            raise ValueError("ttl_hours must be > 0")


_GROUPS: dict[str, type] = {
    "index": IndexBudget,
    "chunking": ChunkingOptions,
    "retrieval": RetrievalOptions,
    "reading": ReadingOptions,
    "store": StoreOptions,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class RetrievalConfig:
    index: IndexBudget = field(default_factory=IndexBudget)
    chunking: ChunkingOptions = field(default_factory=ChunkingOptions)
    retrieval: RetrievalOptions = field(default_factory=RetrievalOptions)
    reading: ReadingOptions = field(default_factory=ReadingOptions)
    store: StoreOptions = field(default_factory=StoreOptions)
    debug: bool = False

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> RetrievalConfig:
        if not overrides:
            return self

        changes: dict[str, Any] = {}
        for raw_group, values in overrides.items():
            group = _snake(raw_group)
            if group == "debug":
                changes["debug"] = bool(values)
                continue
            if group not in _GROUPS:
                raise ValueError(f"Unknown config group: {raw_group}")
            if not isinstance(values, Mapping):
                raise ValueError(f"Config group {raw_group} must be an object")

            current = getattr(self, group)
            allowed = {item.name for item in fields(current)}
            updates: dict[str, Any] = {}
            for raw_name, value in values.items():
                name = _snake(raw_name)
                if name not in allowed:
                    raise ValueError(f"Unknown option {raw_group}.{raw_name}")
                updates[name] = value
            changes[group] = replace(current, **updates)

        return replace(self, **changes)


def _group_from_env(prefix: str, group_type: type) -> Any:
    defaults = group_type()
    values: dict[str, Any] = {}
    for item in fields(group_type):
        raw = os.getenv(f"{prefix}_{item.name.upper()}")
        if raw is None:
            continue
        default = getattr(defaults, item.name)
        if isinstance(default, bool):
            values[item.name] = _to_bool(raw, default=default)
        elif isinstance(default, int):
            values[item.name] = _to_int(raw, default=default, minimum=0)
        else:
            values[item.name] = float(raw)
    return group_type(**values)


def load_retrieval_config() -> RetrievalConfig:
    groups = {
        name: _group_from_env(f"RAGCORE_{name.upper()}", group_type)
        for name, group_type in _GROUPS.items()
    }
    return RetrievalConfig(debug=_to_bool(os.getenv("RAGCORE_DEBUG"), default=False), **groups)


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    notes_dir: str
    ollama_base_url: str
    ollama_model: str
    ollama_fallback_model: str
    ollama_timeout_seconds: float
    retrieval: RetrievalConfig


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv(
            "RAGCORE_DATABASE_URL",
            "sqlite+pysqlite:///data/ragcore.db",
        ),
        db_echo=_to_bool(os.getenv("RAGCORE_DB_ECHO"), default=False),
        notes_dir=os.getenv("RAGCORE_NOTES_DIR", "data/notes"),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1"),
        ollama_model=os.getenv("OLLAMA_MODEL", "qwen2.5:7b-instruct-q4_K_M"),
        ollama_fallback_model=os.getenv("OLLAMA_FALLBACK_MODEL", "qwen2.5:3b-instruct-q4_K_M"),
        ollama_timeout_seconds=float(os.getenv("OLLAMA_TIMEOUT_SECONDS", "30")),
        retrieval=load_retrieval_config(),
    )
