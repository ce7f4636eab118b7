from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, List, Optional

import httpx

from chat_gateway.core.settings import Settings

UPSTREAM = "http://upstream.test/v1"


def make_settings(**overrides) -> Settings:
    values = dict(
        model_base_url=UPSTREAM,
        model_endpoint="/chat/completions",
        model_name="test-model",
        first_fragment_timeout_seconds=0.5,
        sse_heartbeat_seconds=5.0,
        log_sample_model_events=1.0,
    )
    values.update(overrides)
    return Settings(**values)


def chat_delta(text: str) -> str:
    return json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False)


def sse_body(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n\n" for p in payloads).encode("utf-8")


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given chunks, optionally hanging afterwards."""

    def __init__(self, chunks: Iterable[bytes], hang: bool = False, log: Optional[List[str]] = None, delay: float = 0.0):
        self.chunks = list(chunks)
        self.hang = hang
        self.delay = delay
        self.log = log if log is not None else []
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True
        self.log.append("stream-closed")


def event_stream(chunks: Iterable[bytes], **kw) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=ChunkedStream(chunks, **kw))


def json_response(obj) -> httpx.Response:
    return httpx.Response(200, json=obj)


class Recorder:
    """MockTransport handler that records request bodies and dispatches on the stream flag."""

    def __init__(self, on_stream: Callable[[dict], httpx.Response], on_once: Optional[Callable[[dict], httpx.Response]] = None):
        self.on_stream = on_stream
        self.on_once = on_once
        self.bodies: List[dict] = []
        self.requests: List[httpx.Request] = []
        self.log: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.bodies.append(body)
        self.requests.append(request)
        if body.get("stream") is False and self.on_once is not None:
            self.log.append("fallback-request")
            return self.on_once(body)
        self.log.append("stream-request")
        return self.on_stream(body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def parse_sse(text: str) -> List[tuple]:
    events = []
    for block in text.split("\n\n"):
        if not block:
            continue
        lines = block.split("\n")
        if all(ln.startswith(":") for ln in lines):
            events.append(("comment", lines[0][1:].strip()))
            continue
        name, data = "message", []
        for ln in lines:
            if ln.startswith("event:"):
                name = ln[6:].strip()
            elif ln.startswith("data:"):
                data.append(ln[5:][1:] if ln[5:].startswith(" ") else ln[5:])
        events.append((name, "\n".join(data)))
    return events
