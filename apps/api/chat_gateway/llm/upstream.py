"""
HTTP exchange with the configured model backend.

``UpstreamStreamer.stream`` turns one upstream call into an async sequence of
text fragments, whatever the backend dialect and whether or not it honoured
the streaming request. ``UpstreamStreamer.fetch`` is the one-shot variant used
for fallbacks.
"""
import time
from typing import AsyncIterator, Dict, Optional

import httpx

from ..core.logging import log_event, tracer, hash_text, token_estimate_from_texts, model_event_sampled
from ..core.settings import settings, Settings
from .dialects import Dialect, classify, encode_request, decode_fragment, decode_full_response
from .errors import UpstreamTransportError
from .fragments import ChatInput
from .sse import LineBuffer, data_payload, DONE_SENTINEL

EVENT_STREAM = "text/event-stream"
ERROR_SNIPPET_CHARS = 300


def _describe(ex: httpx.HTTPError) -> str:
    detail = str(ex) or ex.__class__.__name__
    if isinstance(ex, httpx.TimeoutException):
        return f"upstream timeout ({ex.__class__.__name__}): {detail}"
    return f"upstream transport failure ({ex.__class__.__name__}): {detail}"


class UpstreamStreamer:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        endpoint: str,
        model: str,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
    ):
        self._client = client
        self.dialect: Dialect = classify(endpoint)
        self.url = base_url.rstrip("/") + "/" + endpoint.lstrip("/")
        self.endpoint = endpoint
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = (api_key or "").strip() or None

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, cfg: Settings = settings) -> "UpstreamStreamer":
        return cls(
            client,
            base_url=cfg.model_base_url,
            endpoint=cfg.model_endpoint,
            model=cfg.model_name,
            api_key=cfg.model_api_key,
            temperature=cfg.model_temperature,
            max_tokens=cfg.model_max_tokens,
        )

    def headers(self, stream: bool) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if stream:
            h["Accept"] = EVENT_STREAM
        if self._api_key:
            h["Authorization"] = f"Bearer {self._api_key}"
        return h

    def encode(self, chat: ChatInput, stream: bool) -> dict:
        return encode_request(
            self.dialect,
            chat,
            stream=stream,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            model=self.model,
        )

    async def stream(self, chat: ChatInput) -> AsyncIterator[str]:
        async for text in self.exchange(self.encode(chat, stream=True), self.headers(stream=True), chat=chat):
            yield text

    async def fetch(self, chat: ChatInput) -> str:
        with tracer.start_as_current_span("llm.complete") as span:
            span.set_attribute("llm.dialect", self.dialect.value)
            span.set_attribute("llm.model", self.model)
            parts = [t async for t in self.exchange(self.encode(chat, stream=False), self.headers(stream=False), chat=chat)]
        return "".join(parts)

    async def exchange(self, body: dict, headers: Dict[str, str], chat: Optional[ChatInput] = None) -> AsyncIterator[str]:
        """
        POST ``body`` and yield decoded text fragments as they arrive.

        Exactly one upstream connection is used; it is closed when the
        sequence ends, fails, or the consumer stops iterating.
        """
        sampled = model_event_sampled()
        streaming = body.get("stream", True)
        if sampled:
            prompt_text = (chat.system_text + "\n" + chat.user_prompt) if chat else ""
            log_event(
                "llm.request",
                dialect=self.dialect.value,
                model=self.model,
                mode="stream" if streaming else "complete",
                prompt_hash=hash_text(prompt_text),
                tokens_estimate=token_estimate_from_texts([prompt_text]),
            )
        start = time.time()
        emitted = 0
        chars = 0
        try:
            async with self._client.stream("POST", self.url, json=body, headers=headers) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    message = f"upstream returned HTTP {resp.status_code}"
                    snippet = resp.text[:ERROR_SNIPPET_CHARS].strip()
                    if snippet:
                        message += f": {snippet}"
                    log_event(
                        "llm.error",
                        level="warning",
                        dialect=self.dialect.value,
                        status=resp.status_code,
                        latency_ms=int((time.time() - start) * 1000),
                    )
                    raise UpstreamTransportError(message, status_code=resp.status_code)
                ctype = resp.headers.get("content-type", "").lower()
                if EVENT_STREAM in ctype:
                    async for text in self._event_stream(resp):
                        emitted += 1
                        chars += len(text)
                        yield text
                else:
                    # backend ignored the streaming request and answered in one go
                    await resp.aread()
                    text = decode_full_response(self.dialect, resp.text)
                    if text:
                        emitted += 1
                        chars += len(text)
                        yield text
        except httpx.HTTPError as ex:
            log_event(
                "llm.error",
                level="warning",
                dialect=self.dialect.value,
                kind=ex.__class__.__name__,
                message=str(ex),
                latency_ms=int((time.time() - start) * 1000),
            )
            raise UpstreamTransportError(_describe(ex)) from ex
        if sampled:
            log_event(
                "llm.response",
                dialect=self.dialect.value,
                latency_ms=int((time.time() - start) * 1000),
                fragments=emitted,
                output_chars=chars,
            )

    async def _event_stream(self, resp: httpx.Response) -> AsyncIterator[str]:
        buf = LineBuffer()
        async for chunk in resp.aiter_text():
            for line in buf.feed(chunk):
                payload = data_payload(line)
                if payload is None:
                    continue
                if payload == DONE_SENTINEL:
                    return
                text = decode_fragment(self.dialect, payload)
                if text:
                    yield text
        for line in buf.flush():
            payload = data_payload(line)
            if payload is None or payload == DONE_SENTINEL:
                continue
            text = decode_fragment(self.dialect, payload)
            if text:
                yield text
