from typing import Optional
import httpx
from .settings import settings, Settings

def build_timeout(cfg: Settings = settings) -> httpx.Timeout:
    # long read timeout: a generation can sit idle between tokens for a while
    return httpx.Timeout(cfg.read_timeout_seconds, connect=cfg.connect_timeout_seconds)

def get_client(cfg: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=build_timeout(cfg),
        limits=httpx.Limits(max_connections=cfg.max_connections),
        transport=transport,
    )
