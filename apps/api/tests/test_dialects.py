from __future__ import annotations

import json

import pytest

from chat_gateway.llm import dialects
from chat_gateway.llm.dialects import Dialect
from chat_gateway.llm.fragments import ChatInput


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/v1/chat/completions", Dialect.CHAT_MESSAGES),
        ("/chat/completions", Dialect.CHAT_MESSAGES),
        ("/api/chat", Dialect.CHAT_MESSAGES),
        ("/v1/completions", Dialect.PROMPT_COMPLETION),
        ("completions", Dialect.PROMPT_COMPLETION),
        ("/v1/completions/?x=1", Dialect.PROMPT_COMPLETION),
        ("/completion", Dialect.LEGACY_COMPLETION),
        ("/COMPLETION", Dialect.LEGACY_COMPLETION),
        ("/api/generate", Dialect.PROMPT_COMPLETION),
        ("", Dialect.PROMPT_COMPLETION),
    ],
)
def test_classify(path, expected):
    assert dialects.classify(path) is expected


def test_chat_request_puts_system_first():
    body = dialects.encode_request(
        Dialect.CHAT_MESSAGES,
        ChatInput(user_prompt="hello", system="be brief"),
        stream=True,
        temperature=0.3,
        max_tokens=64,
        model="m",
    )
    assert body["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hello"},
    ]
    assert body["stream"] is True
    assert body["max_tokens"] == 64
    assert body["temperature"] == 0.3
    assert body["model"] == "m"


def test_chat_request_skips_blank_system():
    body = dialects.encode_request(
        Dialect.CHAT_MESSAGES, ChatInput(user_prompt="hello", system="  "),
        stream=False, temperature=0.0, max_tokens=10,
    )
    assert body["messages"] == [{"role": "user", "content": "hello"}]
    assert body["stream"] is False
    assert body["temperature"] == 0.0


def test_prompt_request_uses_section_markers_with_system():
    body = dialects.encode_request(
        Dialect.PROMPT_COMPLETION, ChatInput(user_prompt="hi", system="sys"),
        stream=True, temperature=0.2, max_tokens=100,
    )
    assert body["prompt"] == "[SYSTEM]\nsys\n\n[USER]\nhi\n\n[ASSISTANT]\n"
    assert body["stream"] is True
    assert "messages" not in body


def test_prompt_request_passes_user_text_unmodified_without_system():
    body = dialects.encode_request(
        Dialect.PROMPT_COMPLETION, ChatInput(user_prompt="  raw text "),
        stream=False, temperature=0.2, max_tokens=100,
    )
    assert body["prompt"] == "  raw text "


@pytest.mark.parametrize("requested, expected", [(1, 8), (8, 8), (100, 100), (256, 256), (4096, 256)])
def test_legacy_request_clamps_n_predict(requested, expected):
    body = dialects.encode_request(
        Dialect.LEGACY_COMPLETION, ChatInput(user_prompt="hi"),
        stream=True, temperature=0.7, max_tokens=requested, model="ignored",
    )
    assert body["n_predict"] == expected
    assert body["temperature"] == 0.7
    assert "stream" not in body
    assert "max_tokens" not in body


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"choices": [{"delta": {"content": "a"}}]}, "a"),
        ({"choices": [{"delta": {"content": "", "reasoning_content": "think"}}]}, "think"),
        ({"choices": [{"delta": {"content": None, "reasoning_content": "r"}}]}, "r"),
        ({"choices": [{"text": "plain"}]}, "plain"),
        ({"choices": [{"message": {"content": "whole"}}]}, "whole"),
        ({"choices": [{"message": {"reasoning_content": "why"}}]}, "why"),
        ({"content": "llama", "stop": False}, "llama"),
        ({"response": "ollama", "done": False}, "ollama"),
        ({"delta": "bare"}, "bare"),
        ({"delta": {"content": "nested-not-supported"}}, ""),
        ({"choices": [{"delta": {}, "finish_reason": "stop"}]}, ""),
        ({"choices": []}, ""),
        ([1, 2, 3], ""),
    ],
)
def test_decode_fragment_shapes(payload, expected):
    assert dialects.decode_fragment(Dialect.CHAT_MESSAGES, json.dumps(payload)) == expected


def test_decode_fragment_prefers_delta_over_top_level():
    payload = {"choices": [{"delta": {"content": "d"}, "text": "t"}], "content": "c"}
    assert dialects.decode_fragment(Dialect.CHAT_MESSAGES, json.dumps(payload)) == "d"


@pytest.mark.parametrize(
    "dialect, expected",
    [
        (Dialect.CHAT_MESSAGES, "from-delta"),
        (Dialect.PROMPT_COMPLETION, "from-text"),
        (Dialect.LEGACY_COMPLETION, "from-content"),
    ],
)
def test_decode_fragment_tries_the_dialects_own_shape_first(dialect, expected):
    payload = {"choices": [{"delta": {"content": "from-delta"}, "text": "from-text"}], "content": "from-content"}
    assert dialects.decode_fragment(dialect, json.dumps(payload)) == expected


@pytest.mark.parametrize(
    "dialect, expected",
    [
        (Dialect.CHAT_MESSAGES, "from-message"),
        (Dialect.PROMPT_COMPLETION, "from-text"),
        (Dialect.LEGACY_COMPLETION, "from-content"),
    ],
)
def test_decode_full_response_tries_the_dialects_own_shape_first(dialect, expected):
    body = {"choices": [{"message": {"content": "from-message"}, "text": "from-text"}], "content": "from-content"}
    assert dialects.decode_full_response(dialect, json.dumps(body)) == expected


def test_foreign_shape_still_decodes_through_shared_order():
    payload = {"choices": [{"delta": {"content": "chat-style"}}]}
    assert dialects.decode_fragment(Dialect.LEGACY_COMPLETION, json.dumps(payload)) == "chat-style"


@pytest.mark.parametrize("payload", ["{not json", "", "[DONE", "null"])
def test_decode_fragment_malformed_is_empty(payload):
    assert dialects.decode_fragment(Dialect.CHAT_MESSAGES, payload) == ""


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"choices": [{"message": {"role": "assistant", "content": "Bonjour"}}]}, "Bonjour"),
        ({"choices": [{"message": {"content": "", "reasoning_content": "hmm"}}]}, "hmm"),
        ({"choices": [{"text": "done text"}]}, "done text"),
        ({"content": "fallback answer"}, "fallback answer"),
        ({"response": "gen"}, "gen"),
        ({"unexpected": True}, ""),
    ],
)
def test_decode_full_response_shapes(body, expected):
    assert dialects.decode_full_response(Dialect.CHAT_MESSAGES, json.dumps(body)) == expected


def test_decode_full_response_malformed_is_empty():
    assert dialects.decode_full_response(Dialect.CHAT_MESSAGES, "<html>bad gateway</html>") == ""


@pytest.mark.parametrize(
    "dialect, full, frames",
    [
        (
            Dialect.CHAT_MESSAGES,
            {"choices": [{"message": {"content": "Hello world"}}]},
            [{"choices": [{"delta": {"content": "Hel"}}]}, {"choices": [{"delta": {"content": "lo world"}}]}],
        ),
        (
            Dialect.PROMPT_COMPLETION,
            {"choices": [{"text": "Hello world"}]},
            [{"choices": [{"text": "Hello"}]}, {"choices": [{"text": " "}]}, {"choices": [{"text": "world"}]}],
        ),
        (
            Dialect.LEGACY_COMPLETION,
            {"content": "Hello world"},
            [{"content": "Hello wo"}, {"content": "rld"}, {"content": "", "stop": True}],
        ),
    ],
)
def test_streamed_and_full_forms_decode_to_same_text(dialect, full, frames):
    whole = dialects.decode_full_response(dialect, json.dumps(full))
    streamed = "".join(dialects.decode_fragment(dialect, json.dumps(f)) for f in frames)
    assert whole == streamed == "Hello world"
