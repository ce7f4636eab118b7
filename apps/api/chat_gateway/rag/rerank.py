from typing import List, Optional
import time
from starlette.concurrency import run_in_threadpool
from ..core.logging import log_event
from .contracts import Reranker, SearchHit

async def rerank_hits(query_text: str, hits: List[SearchHit], reranker: Optional[Reranker]) -> List[SearchHit]:
    """
    Score every hit against the query and sort best-first by that score.
    Without a reranker the search order is kept and the event is flagged degraded.
    """
    start = time.time()
    if reranker is None:
        log_event("rag.rerank", strategy="none", input_k=len(hits), output_k=len(hits),
                  timing_ms=int((time.time() - start) * 1000), degraded=True)
        return hits
    for h in hits:
        # cross-encoder inference is CPU bound
        h.rerank_score = float(await run_in_threadpool(reranker.score, query_text, h.text))
    ranked = sorted(hits, key=lambda h: h.rerank_score, reverse=True)
    log_event("rag.rerank", strategy="cross_encoder", input_k=len(hits), output_k=len(ranked),
              timing_ms=int((time.time() - start) * 1000), degraded=False)
    return ranked
