from contextlib import asynccontextmanager
from typing import Optional
import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .routers import chat, search, ingest
from .context import GatewayContext
from .core.http_client import get_client
from .core.logging import setup_logging, log_event, LoggingMiddleware
from .core.settings import settings, Settings
from .llm.aggregator import CompletionAggregator
from .llm.upstream import UpstreamStreamer
from .rag.contracts import Collaborators
from .rag.embeddings import HttpEmbedder
from .rag.retriever import InMemoryIndex, InMemoryDocumentStore

def create_app(
    cfg: Settings = settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    collaborators: Optional[Collaborators] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = get_client(cfg, transport)
        streamer = UpstreamStreamer.from_settings(client, cfg)
        collab = collaborators or Collaborators(
            embedder=HttpEmbedder.from_settings(client, cfg),
            index=InMemoryIndex(),
            store=InMemoryDocumentStore(),
        )
        app.state.ctx = GatewayContext(
            settings=cfg,
            client=client,
            streamer=streamer,
            aggregator=CompletionAggregator(streamer),
            collaborators=collab,
        )
        log_event(
            "gateway.start",
            dialect=streamer.dialect.value,
            upstream=streamer.url,
            model=streamer.model,
            embedder=collab.embedder is not None,
            reranker=collab.reranker is not None,
        )
        try:
            yield
        finally:
            await client.aclose()
            log_event("gateway.stop")

    app = FastAPI(title="Chat Completion Gateway", lifespan=lifespan)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router)
    app.include_router(search.router)
    app.include_router(ingest.router)

    @app.get("/healthz")
    def healthz(): return {"ok": True}

    return app

setup_logging()
app = create_app()
