from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from ..context import GatewayContext, get_ctx
from ..core.logging import log_event
from ..llm.errors import UpstreamTransportError
from ..llm.fragments import ChatInput
from ..llm.sse import encode_event, SSE_HEADERS
from ..schemas import ChatReq, ChatResp

router = APIRouter(prefix="/api/chat", tags=["chat"])

def _first_non_blank(*values: Optional[str]) -> Optional[str]:
    for v in values:
        if v is not None and v.strip():
            return v
    return None

def _sse(ctx: GatewayContext, chat: ChatInput) -> StreamingResponse:
    composer = ctx.new_composer()

    async def gen():
        async for fragment in composer.compose(chat):
            yield encode_event(fragment)

    return StreamingResponse(gen(), media_type="text/event-stream", headers=SSE_HEADERS)

@router.post("", response_model=ChatResp)
async def chat(req: ChatReq, ctx: GatewayContext = Depends(get_ctx)):
    """
    Non-streaming completion.
    Input: { "system": "optional", "userPrompt": "string" }
    Output: { "text": "..." }
    """
    try:
        result = await ctx.aggregator.complete(req.to_input())
    except UpstreamTransportError as ex:
        log_event("chat.complete.error", level="error", message=str(ex), status=ex.status_code)
        raise HTTPException(502, detail=str(ex))
    return ChatResp(text=result.text)

@router.get("/stream")
async def chat_stream_get(
    system: str = "",
    userPrompt: Optional[str] = None,
    user: Optional[str] = None,
    prompt: Optional[str] = None,
    q: Optional[str] = None,
    ctx: GatewayContext = Depends(get_ctx),
):
    # EventSource clients can only GET, several parameter names are accepted
    up = _first_non_blank(userPrompt, user, prompt, q)
    return _sse(ctx, ChatInput(user_prompt=up or "", system=system))

@router.post("/stream")
async def chat_stream_post(req: ChatReq, ctx: GatewayContext = Depends(get_ctx)):
    return _sse(ctx, req.to_input())

@router.get("/settings")
def chat_settings(ctx: GatewayContext = Depends(get_ctx)):
    """
    Lightweight settings exposure for clients and operators.
    """
    return {
        "dialect": ctx.streamer.dialect.value,
        "model": ctx.streamer.model,
        "endpoint": ctx.streamer.endpoint,
        "heartbeat_seconds": ctx.settings.sse_heartbeat_seconds,
        "first_fragment_timeout_seconds": ctx.settings.first_fragment_timeout_seconds,
    }
