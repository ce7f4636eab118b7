from typing import List, Optional
from .fragments import OutboundFragment, Message, Comment, Done

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

class LineBuffer:
    """
    Reassembles text lines from arbitrarily split network chunks.

    The trailing piece of a chunk that has no line terminator yet is held back
    and prefixed onto the next chunk, so a token whose bytes straddle a read
    boundary is never cut in two.
    """

    def __init__(self):
        self._pending = ""

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        text = self._pending + chunk
        lines = text.split("\n")
        self._pending = lines.pop()
        return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]

    def flush(self) -> List[str]:
        rest, self._pending = self._pending, ""
        rest = rest.rstrip("\r")
        return [rest] if rest else []

def data_payload(line: str) -> Optional[str]:
    """Payload of a ``data: `` line, stripped; None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()

def encode_event(fragment: OutboundFragment) -> str:
    if isinstance(fragment, Message):
        # one data: field per line, the client re-joins them with "\n"
        lines = fragment.text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        return "event: message\n" + "".join(f"data: {ln}\n" for ln in lines) + "\n"
    if isinstance(fragment, Comment):
        return f": {fragment.text}\n\n"
    if isinstance(fragment, Done):
        return "event: done\ndata: \n\n"
    raise TypeError(f"not an outbound fragment: {fragment!r}")

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
