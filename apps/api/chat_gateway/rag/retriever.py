from typing import Dict, List, Tuple
import asyncio, math, time
from ..core.logging import log_event, hash_vector
from .contracts import RawDocument, SearchHit, SearchResult

def _cosine(a: List[float], b: List[float]) -> float:
    if not a or not b: return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na <= 0 or nb <= 0:
        return 0.0
    return dot / (math.sqrt(na) * math.sqrt(nb))

class InMemoryIndex:
    """Brute-force cosine index. Good for development and tests, not for volume."""

    def __init__(self):
        self._items: Dict[str, Tuple[RawDocument, List[float]]] = {}
        self._lock = asyncio.Lock()

    async def index(self, doc: RawDocument, vector: List[float]) -> None:
        async with self._lock:
            self._items[doc.doc_id] = (doc, [float(x) for x in vector])

    async def search(self, vector: List[float], k: int) -> SearchResult:
        start = time.time()
        async with self._lock:
            items = list(self._items.values())
        scored = [
            SearchHit(id=doc.doc_id, score=_cosine(vector, vec), title=doc.title, text=doc.text, metadata=dict(doc.metadata))
            for doc, vec in items
        ]
        scored.sort(key=lambda h: h.score, reverse=True)
        hits = scored[:k]
        took = int((time.time() - start) * 1000)
        log_event(
            "rag.retrieve",
            query_vec_hash=hash_vector(vector),
            top_k=k,
            timing_ms=took,
            candidates=[{"doc_id": h.id, "sim": round(h.score, 4)} for h in hits],
        )
        return SearchResult(hits=hits, took_ms=took)

class InMemoryDocumentStore:
    def __init__(self):
        self._docs: Dict[str, RawDocument] = {}

    async def store(self, doc: RawDocument) -> bool:
        self._docs[doc.doc_id] = doc
        return True

    def get(self, doc_id: str) -> RawDocument | None:
        return self._docs.get(doc_id)
