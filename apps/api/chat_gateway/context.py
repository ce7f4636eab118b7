from dataclasses import dataclass
import httpx
from fastapi import Request
from .core.settings import Settings
from .llm.aggregator import CompletionAggregator
from .llm.composer import OutboundComposer
from .llm.upstream import UpstreamStreamer
from .rag.contracts import Collaborators


@dataclass
class GatewayContext:
    settings: Settings
    client: httpx.AsyncClient
    streamer: UpstreamStreamer
    aggregator: CompletionAggregator
    collaborators: Collaborators

    def new_composer(self) -> OutboundComposer:
        # one composer per streaming request
        return OutboundComposer.from_settings(self.streamer, self.aggregator, self.settings)


def get_ctx(request: Request) -> GatewayContext:
    return request.app.state.ctx
