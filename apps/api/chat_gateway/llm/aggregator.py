import time
from typing import List, Sequence

from ..core.logging import log_event
from .fragments import ChatInput, CompletionResult
from .upstream import UpstreamStreamer

def build_context_prompt(question: str, contexts: Sequence[str], max_chars: int) -> str:
    """Numbered context block followed by the question, context clipped to ``max_chars``."""
    blocks: List[str] = []
    used = 0
    for i, ctx in enumerate(contexts, 1):
        ctx = (ctx or "").strip()
        if not ctx:
            continue
        room = max_chars - used
        if room <= 0:
            break
        if len(ctx) > room:
            ctx = ctx[:room].rstrip()
        blocks.append(f"[{i}] {ctx}")
        used += len(ctx)
    if not blocks:
        return question
    return "Context:\n" + "\n\n".join(blocks) + f"\n\nQuestion:\n{question}"

class CompletionAggregator:
    """Collapses a fragment stream into one answer, with a single non-streaming retry."""

    def __init__(self, streamer: UpstreamStreamer):
        self.streamer = streamer

    async def complete(self, chat: ChatInput) -> CompletionResult:
        start = time.time()
        parts = [text async for text in self.streamer.stream(chat)]
        joined = "".join(parts)
        if joined.strip():
            log_event("llm.aggregate", path="stream", fragments=len(parts),
                      latency_ms=int((time.time() - start) * 1000))
            return CompletionResult(joined)
        log_event("llm.aggregate.retry", level="warning", reason="blank_stream", fragments=len(parts))
        return await self.complete_once(chat)

    async def complete_once(self, chat: ChatInput) -> CompletionResult:
        start = time.time()
        text = await self.streamer.fetch(chat)
        log_event("llm.aggregate", path="complete", blank=not text.strip(),
                  latency_ms=int((time.time() - start) * 1000))
        return CompletionResult(text)

    async def complete_with_context(self, system: str, question: str, contexts: Sequence[str], max_chars: int) -> CompletionResult:
        prompt = build_context_prompt(question, contexts, max_chars)
        return await self.complete(ChatInput(user_prompt=prompt, system=system))
