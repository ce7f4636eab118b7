from typing import List
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from ..context import GatewayContext, get_ctx
from ..core.logging import log_event
from ..rag.contracts import Collaborators, SearchHit
from ..rag.rerank import rerank_hits

router = APIRouter(prefix="/api", tags=["search"])

MIN_K, MAX_K = 1, 50

def _require(collab: Collaborators, *names: str):
    for name in names:
        if getattr(collab, name) is None:
            raise HTTPException(503, detail=f"{name} not configured")

def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "bad_request", "message": message})

def _context_block(hit: SearchHit) -> str:
    title = (hit.title or "").strip()
    return hit.text if not title else f"Title: {title}\n{hit.text}"

@router.get("/search")
async def search(q: str, k: int = 5, rerank: bool = False, ctx: GatewayContext = Depends(get_ctx)):
    collab = ctx.collaborators
    _require(collab, "embedder", "index")
    if not q.strip():
        return _bad_request("q must not be blank")
    if k < MIN_K or k > MAX_K:
        return _bad_request(f"k must be between {MIN_K} and {MAX_K}")
    vec = await collab.embedder.embed(q)
    res = await collab.index.search(vec, k)
    hits = await rerank_hits(q, res.hits, collab.reranker) if rerank else res.hits
    return {
        "took": res.took_ms,
        "hits": [h.as_dict() for h in hits],
        # rerank asked for but no reranker configured: search order, no rerankScore
        "degraded": rerank and collab.reranker is None,
    }

@router.get("/ask")
async def ask(q: str = "", k: int = 8, rerank: bool = True, ctx: GatewayContext = Depends(get_ctx)):
    """
    Retrieval-augmented answer.
    Output: { "question": q, "tookMs": n, "answer": "...", "sources": [hit, ...], "degraded": bool }
    """
    collab = ctx.collaborators
    _require(collab, "embedder", "index")
    if not q.strip():
        return _bad_request("q must not be blank")
    if k < MIN_K or k > MAX_K:
        return _bad_request(f"k must be between {MIN_K} and {MAX_K}")

    try:
        vec = await collab.embedder.embed(q)
    except Exception as ex:
        log_event("rag.ask.error", level="error", stage="embed", kind=ex.__class__.__name__, message=str(ex))
        return JSONResponse(status_code=500, content={"error": "embedding_failed", "message": str(ex)})

    try:
        res = await collab.index.search(vec, k)
        hits: List[SearchHit] = await rerank_hits(q, res.hits, collab.reranker) if rerank else res.hits
        contexts = [_context_block(h) for h in hits]
        result = await ctx.aggregator.complete_with_context(
            ctx.settings.ask_system_prompt, q, contexts, ctx.settings.ask_max_context_chars,
        )
    except Exception as ex:
        log_event("rag.ask.error", level="error", stage="answer", kind=ex.__class__.__name__, message=str(ex))
        return JSONResponse(status_code=500, content={"error": "internal_error", "message": str(ex)})

    return {
        "question": q,
        "tookMs": res.took_ms,
        "answer": result.text,
        "sources": [h.as_dict() for h in hits],
        "degraded": rerank and collab.reranker is None,
    }
