from ragcore.services.retrieval.cancellation import CancellationToken
from ragcore.services.retrieval.engine import RetrievalEngine
from ragcore.services.retrieval.events import RETRIEVAL_PROGRESS, RETRIEVAL_TELEMETRY, EventEmitter
from ragcore.services.retrieval.index_store import IndexStore
from ragcore.services.retrieval.memory import SessionMemory
from ragcore.services.retrieval.types import (
    Answer,
    Chunk,
    CorpusIndexResult,
    Document,
    Index,
    RetrievalResult,
)

__all__ = [
    "RETRIEVAL_PROGRESS",
    "RETRIEVAL_TELEMETRY",
    "Answer",
    "CancellationToken",
    "Chunk",
    "CorpusIndexResult",
    "Document",
    "EventEmitter",
    "Index",
    "IndexStore",
    "RetrievalEngine",
    "RetrievalResult",
    "SessionMemory",
]
