from typing import List, Optional
import asyncio, time, logging
import httpx
from ..core.settings import settings, Settings
from ..core.logging import log_event, tracer, hash_text, token_estimate_from_texts, model_event_sampled

logger = logging.getLogger("gateway")

class HttpEmbedder:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str, endpoint: str, model: str,
                 api_key: Optional[str] = None, max_retries: int = 3, backoff_base: float = 0.6):
        self._client = client
        self.url = base_url.rstrip("/") + "/" + endpoint.lstrip("/")
        self.model = model
        self._api_key = (api_key or "").strip() or None
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, cfg: Settings = settings) -> Optional["HttpEmbedder"]:
        if not cfg.embedding_model:
            return None
        return cls(client, base_url=cfg.model_base_url, endpoint=cfg.embedding_endpoint,
                   model=cfg.embedding_model, api_key=cfg.model_api_key)

    async def _embed_once(self, text: str) -> List[float]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        sampled = model_event_sampled()
        start = time.time()
        if sampled:
            log_event(
                "llm.request",
                model=self.model,
                mode="embed",
                prompt_hash=hash_text(text),  # avoid logging raw inputs
                tokens_estimate=token_estimate_from_texts([text]),
            )
        with tracer.start_as_current_span("llm.embed") as span:
            span.set_attribute("llm.model", self.model)
            resp = await self._client.post(self.url, json={"model": self.model, "input": [text]}, headers=headers)
            resp.raise_for_status()
        data = resp.json().get("data") or []
        if not data or not isinstance(data[0].get("embedding"), list):
            raise ValueError("embedding response carried no vector")
        if sampled:
            log_event("llm.response", mode="embed", latency_ms=int((time.time() - start) * 1000))
        return [float(x) for x in data[0]["embedding"]]

    async def embed(self, text: str) -> List[float]:
        """
        Exponential backoff for rate limits and transient transport errors.
        Returns the vector or raises the last error.
        """
        last_ex: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._embed_once(text)
            except httpx.HTTPStatusError as ex:
                status = ex.response.status_code
                last_ex = ex
                if status == 429 and attempt < self.max_retries - 1:
                    delay = self.backoff_base * (2 ** attempt)
                    logger.warning(f"embed 429 rate limit, retry {attempt+1}/{self.max_retries} in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
                break
            except httpx.TransportError as ex:
                last_ex = ex
                if attempt < self.max_retries - 1:
                    delay = self.backoff_base * (2 ** attempt)
                    logger.warning(f"embed error ({ex}); retry {attempt+1}/{self.max_retries} in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
                break
        raise last_ex or RuntimeError("embedding_failed")
