"""
Narrow contracts for the retrieval collaborators.

Embedding inference, re-ranking inference, the search index and raw document
storage are provided by the deployment; the gateway only depends on these
shapes. In-memory implementations live in ``rag.retriever`` and an
OpenAI-compatible embedder in ``rag.embeddings``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class RawDocument:
    doc_id: str
    title: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    id: str
    score: float
    title: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    rerank_score: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        out = {
            "_id": self.id,
            "osScore": self.score,
            "title": self.title,
            "text": self.text,
            "metadata": self.metadata,
        }
        if self.rerank_score is not None:
            out["rerankScore"] = self.rerank_score
        return out


@dataclass
class SearchResult:
    hits: List[SearchHit]
    took_ms: int


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


@runtime_checkable
class Reranker(Protocol):
    def score(self, query: str, text: str) -> float: ...


@runtime_checkable
class SearchIndex(Protocol):
    async def search(self, vector: List[float], k: int) -> SearchResult: ...

    async def index(self, doc: RawDocument, vector: List[float]) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    async def store(self, doc: RawDocument) -> bool: ...


@dataclass
class Collaborators:
    embedder: Optional[Embedder] = None
    reranker: Optional[Reranker] = None
    index: Optional[SearchIndex] = None
    store: Optional[DocumentStore] = None
