"""
Backend dialects and their request/response shapes.

Three kinds of completion backends are supported:

- CHAT_MESSAGES: OpenAI-style ``/chat/completions`` taking role-tagged messages.
- PROMPT_COMPLETION: OpenAI-style ``/completions`` taking a single prompt string.
- LEGACY_COMPLETION: llama.cpp-style ``/completion`` taking ``prompt``/``n_predict``.

The dialect is derived once from the configured endpoint path. Decoding is
deliberately shape-tolerant: many servers leak fields of another dialect (a
chat server answering with ``text``, a streaming request answered with a full
``message``), so every known shape is tried in a fixed order.
"""
import json
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from .errors import UpstreamParseError
from .fragments import ChatInput


class Dialect(str, Enum):
    CHAT_MESSAGES = "chat_messages"
    PROMPT_COMPLETION = "prompt_completion"
    LEGACY_COMPLETION = "legacy_completion"


LEGACY_MIN_PREDICT = 8
LEGACY_MAX_PREDICT = 256

SECTION_SYSTEM = "[SYSTEM]"
SECTION_USER = "[USER]"
SECTION_ASSISTANT = "[ASSISTANT]"


def classify(endpoint_path: str) -> Dialect:
    path = "/" + urlsplit(endpoint_path or "").path.lower().strip("/")
    if "/chat/" in path + "/":
        return Dialect.CHAT_MESSAGES
    if path.endswith("/completions") or "/completions/" in path:
        return Dialect.PROMPT_COMPLETION
    if path.endswith("/completion"):
        return Dialect.LEGACY_COMPLETION
    return Dialect.PROMPT_COMPLETION


def flatten_prompt(chat: ChatInput) -> str:
    system = chat.system_text
    if not system:
        return chat.user_prompt
    return (
        f"{SECTION_SYSTEM}\n{system}\n\n"
        f"{SECTION_USER}\n{chat.user_prompt}\n\n"
        f"{SECTION_ASSISTANT}\n"
    )


def clamp_predict(max_tokens: int) -> int:
    return min(max(int(max_tokens), LEGACY_MIN_PREDICT), LEGACY_MAX_PREDICT)


def build_messages(chat: ChatInput) -> List[Dict[str, str]]:
    messages = []
    if chat.system_text:
        messages.append({"role": "system", "content": chat.system_text})
    messages.append({"role": "user", "content": chat.user_prompt})
    return messages


def encode_request(
    dialect: Dialect,
    chat: ChatInput,
    *,
    stream: bool,
    temperature: float,
    max_tokens: int,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    if dialect is Dialect.CHAT_MESSAGES:
        return {
            "model": model,
            "messages": build_messages(chat),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
    if dialect is Dialect.LEGACY_COMPLETION:
        # the legacy server streams based on its own defaults, no stream flag
        return {
            "prompt": flatten_prompt(chat),
            "n_predict": clamp_predict(max_tokens),
            "temperature": temperature,
        }
    return {
        "model": model,
        "prompt": flatten_prompt(chat),
        "max_tokens": max_tokens,
        "temperature": temperature,
        "stream": stream,
    }


def _load(payload: str) -> Any:
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as ex:
        raise UpstreamParseError(f"unparseable payload: {ex}") from ex


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _first_choice(obj: Dict[str, Any]) -> Dict[str, Any]:
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _sub(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key)
    return value if isinstance(value, dict) else {}


def _first_non_empty(*candidates: Any) -> str:
    for c in candidates:
        t = _text(c)
        if t:
            return t
    return ""


def _native(dialect: Dialect, obj: Dict[str, Any], choice: Dict[str, Any],
            delta: Dict[str, Any], message: Dict[str, Any]) -> str:
    # the shape the configured dialect answers with, tried before the shared order
    if dialect is Dialect.CHAT_MESSAGES:
        return _first_non_empty(delta.get("content"), message.get("content"))
    if dialect is Dialect.PROMPT_COMPLETION:
        return _text(choice.get("text"))
    return _text(obj.get("content"))


def decode_fragment(dialect: Dialect, payload: str) -> str:
    """Text carried by one streamed frame, or "" when there is none."""
    try:
        obj = _load(payload)
    except UpstreamParseError:
        return ""
    if not isinstance(obj, dict):
        return ""
    choice = _first_choice(obj)
    delta = _sub(choice, "delta")
    message = _sub(choice, "message")
    return _native(dialect, obj, choice, delta, message) or _first_non_empty(
        delta.get("content"),
        delta.get("reasoning_content"),
        choice.get("text"),
        # some backends ignore stream=true and answer with full messages
        message.get("content"),
        message.get("reasoning_content"),
        obj.get("content"),
        obj.get("response"),
        obj.get("delta"),
    )


def decode_full_response(dialect: Dialect, body: str) -> str:
    """Text of a one-shot (non-streamed) response body, or ""."""
    try:
        obj = _load(body)
    except UpstreamParseError:
        return ""
    if not isinstance(obj, dict):
        return ""
    choice = _first_choice(obj)
    message = _sub(choice, "message")
    return _native(dialect, obj, choice, {}, message) or _first_non_empty(
        message.get("content"),
        message.get("reasoning_content"),
        choice.get("text"),
        obj.get("content"),
        obj.get("response"),
    )
