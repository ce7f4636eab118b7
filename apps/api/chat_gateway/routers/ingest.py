from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from ..context import GatewayContext, get_ctx
from ..core.logging import log_event, hash_text
from ..schemas import DocIngestReq

router = APIRouter(prefix="/api", tags=["ingest"])

@router.post("/docs", response_class=PlainTextResponse)
async def ingest(req: DocIngestReq, ctx: GatewayContext = Depends(get_ctx)):
    collab = ctx.collaborators
    for name in ("embedder", "store", "index"):
        if getattr(collab, name) is None:
            raise HTTPException(503, detail=f"{name} not configured")
    if not req.text.strip():
        raise HTTPException(400, detail="text required")

    doc = req.to_document()
    vec = await collab.embedder.embed(doc.text)
    await collab.store.store(doc)
    await collab.index.index(doc, vec)
    log_event("rag.ingest", doc_id=doc.doc_id, text_hash=hash_text(doc.text), chars=len(doc.text), dims=len(vec))
    return "OK"
