"""
Client-facing stream composition.

One ``OutboundComposer`` serves one streaming request. It runs the upstream
producer and a heartbeat timer as tasks that report into a single queue, and
waits on that queue with the first-fragment deadline as its timeout:

    INIT -> STREAMING -> TIMEOUT_FALLBACK | EMPTY_FALLBACK | ERRORED -> DONE

Whatever happens, the produced sequence ends with exactly one ``Done`` and no
heartbeat follows it.
"""
import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional

from ..core.logging import log_event, new_stream_id, bind_stream_id
from ..core.settings import settings, Settings
from .aggregator import CompletionAggregator
from .errors import InputError
from .fragments import ChatInput, Comment, Message, OutboundFragment, DONE, error_message
from .upstream import UpstreamStreamer


class ComposerState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    TIMEOUT_FALLBACK = "timeout_fallback"
    EMPTY_FALLBACK = "empty_fallback"
    ERRORED = "errored"
    DONE = "done"


# event sources
PRODUCER = "producer"
FALLBACK = "fallback"
HEARTBEAT = "heartbeat"

# event kinds
TEXT = "text"
END = "end"
FAILED = "failed"
PING = "ping"


@dataclass(frozen=True)
class _Event:
    source: str
    kind: str
    value: Any = None


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    if not task.done():
        task.cancel()
    with suppress(asyncio.CancelledError):
        await task


def require_prompt(chat: ChatInput) -> None:
    if chat.is_blank():
        raise InputError("missing userPrompt")


class OutboundComposer:
    def __init__(
        self,
        streamer: UpstreamStreamer,
        aggregator: CompletionAggregator,
        *,
        heartbeat_seconds: float = 20.0,
        first_fragment_timeout: float = 7.0,
    ):
        self.streamer = streamer
        self.aggregator = aggregator
        self.heartbeat_seconds = heartbeat_seconds
        self.first_fragment_timeout = first_fragment_timeout
        self.state = ComposerState.INIT
        self.stream_id = new_stream_id()
        self._events: "asyncio.Queue[_Event]" = asyncio.Queue()
        self._producer: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._fallback: Optional[asyncio.Task] = None

    def _log(self, event: str, level: str = "info", **fields: Any) -> None:
        log_event(event, level, stream_id=self.stream_id, state=self.state.value, **fields)

    @classmethod
    def from_settings(cls, streamer: UpstreamStreamer, aggregator: CompletionAggregator, cfg: Settings = settings) -> "OutboundComposer":
        return cls(
            streamer,
            aggregator,
            heartbeat_seconds=cfg.sse_heartbeat_seconds,
            first_fragment_timeout=cfg.first_fragment_timeout_seconds,
        )

    async def compose(self, chat: ChatInput) -> AsyncIterator[OutboundFragment]:
        if self.state is not ComposerState.INIT:
            raise RuntimeError(f"composer already used (state={self.state.value})")
        try:
            require_prompt(chat)
        except InputError as ex:
            self.state = ComposerState.ERRORED
            self._log("chat.stream.rejected", level="warning", reason=str(ex))
            yield error_message(ex)
            self.state = ComposerState.DONE
            yield DONE
            return

        loop = asyncio.get_running_loop()
        started = time.time()
        emitted = 0
        self.state = ComposerState.STREAMING
        self._producer = asyncio.create_task(self._produce(chat))
        self._heartbeat = asyncio.create_task(self._beat())
        deadline = loop.time() + self.first_fragment_timeout
        try:
            while True:
                try:
                    ev = self._events.get_nowait()
                except asyncio.QueueEmpty:
                    timeout = None
                    if self.state is ComposerState.STREAMING and emitted == 0:
                        timeout = max(deadline - loop.time(), 0.0)
                    try:
                        ev = await asyncio.wait_for(self._events.get(), timeout)
                    except asyncio.TimeoutError:
                        self.state = ComposerState.TIMEOUT_FALLBACK
                        self._log(
                            "chat.stream.fallback",
                            level="warning",
                            reason="first_fragment_timeout",
                            timeout_s=self.first_fragment_timeout,
                        )
                        # close the stalled upstream connection before opening another
                        await _cancel(self._producer)
                        self._start_fallback(chat)
                        continue

                if ev.kind == PING:
                    yield Comment()
                    continue

                if ev.source == PRODUCER:
                    if self.state is not ComposerState.STREAMING:
                        continue  # producer already abandoned
                    if ev.kind == TEXT:
                        emitted += 1
                        yield Message(ev.value)
                        continue
                    if ev.kind == END:
                        if emitted:
                            break
                        self.state = ComposerState.EMPTY_FALLBACK
                        self._log("chat.stream.fallback", level="warning", reason="empty_stream")
                        self._start_fallback(chat)
                        continue
                    # producer failed
                    if emitted == 0:
                        self.state = ComposerState.EMPTY_FALLBACK
                        self._log(
                            "chat.stream.fallback",
                            level="warning",
                            reason="upstream_error",
                            kind=ev.value.__class__.__name__,
                            message=str(ev.value),
                        )
                        self._start_fallback(chat)
                        continue
                    self.state = ComposerState.ERRORED
                    self._log("chat.stream.error", level="error", source=PRODUCER,
                              kind=ev.value.__class__.__name__, message=str(ev.value), emitted=emitted)
                    yield error_message(ev.value)
                    break

                # fallback outcome
                if ev.kind == FAILED:
                    previous = self.state
                    self.state = ComposerState.ERRORED
                    self._log("chat.stream.error", level="error", source=FALLBACK, after=previous.value,
                              kind=ev.value.__class__.__name__, message=str(ev.value))
                    yield error_message(ev.value)
                    break
                if ev.value.strip():
                    emitted += 1
                    yield Message(ev.value)
                break
        finally:
            await self._shutdown()

        self._log(
            "chat.stream.done",
            messages=emitted,
            latency_ms=int((time.time() - started) * 1000),
        )
        self.state = ComposerState.DONE
        yield DONE

    def _start_fallback(self, chat: ChatInput) -> None:
        self._fallback = asyncio.create_task(self._run_fallback(chat))

    async def _produce(self, chat: ChatInput) -> None:
        bind_stream_id(self.stream_id)
        try:
            async for text in self.streamer.stream(chat):
                self._events.put_nowait(_Event(PRODUCER, TEXT, text))
        except Exception as ex:  # reported to the composer loop, which decides
            self._events.put_nowait(_Event(PRODUCER, FAILED, ex))
        else:
            self._events.put_nowait(_Event(PRODUCER, END))

    async def _run_fallback(self, chat: ChatInput) -> None:
        bind_stream_id(self.stream_id)
        try:
            result = await self.aggregator.complete_once(chat)
        except Exception as ex:
            self._events.put_nowait(_Event(FALLBACK, FAILED, ex))
        else:
            self._events.put_nowait(_Event(FALLBACK, TEXT, result.text))

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            self._events.put_nowait(_Event(HEARTBEAT, PING))

    async def _shutdown(self) -> None:
        # heartbeat first: nothing may be emitted after the terminal outcome
        await _cancel(self._heartbeat)
        await _cancel(self._producer)
        await _cancel(self._fallback)
