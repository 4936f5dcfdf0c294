"""Tests for the agent server API client."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import httpx
import pytest

from agent_bridge.chat.cancellation import CancellationToken
from agent_bridge.client.api_client import REDACTED, AgentApiClient
from agent_bridge.exceptions import ApiRequestError, InvalidResponseError, StreamError
from agent_bridge.models import create_user_message


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


BASE_URL = "http://127.0.0.1:4321"
SECRET = "s3cretKey"


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> AgentApiClient:
    return AgentApiClient(BASE_URL, SECRET, transport=httpx.MockTransport(handler), **kwargs)


async def test_requests_carry_secret_header():
    """Every request sends the shared secret and a JSON content type."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"available_versions": ["v1"], "default_version": "v1"})

    async with make_client(handler) as client:
        versions = await client.get_agent_versions()

    assert versions.default_version == "v1"
    assert seen[0].headers["X-Secret-Key"] == SECRET
    assert seen[0].headers["Content-Type"] == "application/json"
    assert seen[0].url.path == "/agent/versions"


async def test_error_response_message_format():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    async with make_client(handler) as client:
        with pytest.raises(ApiRequestError) as exc_info:
            await client.create_agent("openai", "gpt-4o")

    error = exc_info.value
    assert error.status_code == 500
    assert str(error) == "API request failed: 500 Internal Server Error - boom"


async def test_check_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    async with make_client(handler) as client:
        assert await client.check_status() is True


async def test_check_status_never_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        assert await client.check_status() is False


async def test_create_agent_body():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "agent"})

    async with make_client(handler) as client:
        await client.create_agent("anthropic", "claude-sonnet-4-0", "truncate")
        await client.create_agent("openai")

    assert bodies == [
        {"provider": "anthropic", "model": "claude-sonnet-4-0", "version": "truncate"},
        {"provider": "openai"},
    ]


async def test_get_providers_request():
    seen: list[tuple[str, str]] = []
    bodies = iter([json.dumps([{"name": "openai", "models": ["gpt-4o"]}]), ""])

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, text=next(bodies))

    async with make_client(handler) as client:
        providers = await client.get_providers()
        empty = await client.get_providers()

    assert seen == [("GET", "/agent/providers")] * 2
    assert providers == [{"name": "openai", "models": ["gpt-4o"]}]
    assert empty == []


async def test_confirm_tool_call_body():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        await client.confirm_tool_call("tool-1", True)
        await client.confirm_tool_call("tool-2", False)

    assert [(r.method, r.url.path) for r in requests] == [("POST", "/reply/confirm")] * 2
    assert [json.loads(r.content) for r in requests] == [
        {"id": "tool-1", "confirmed": True},
        {"id": "tool-2", "confirmed": False},
    ]


async def test_non_json_body_raises_invalid_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    async with make_client(handler) as client:
        with pytest.raises(InvalidResponseError, match=r"Invalid response from POST /agent"):
            await client.create_agent("openai")


async def test_versions_with_wrong_shape_raise_invalid_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"available_versions": "v1", "default_version": 3})

    async with make_client(handler) as client:
        with pytest.raises(InvalidResponseError, match=r"GET /agent/versions"):
            await client.get_agent_versions()


async def test_empty_prompt_is_not_sent():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        assert await client.set_agent_prompt("   ") is None
        await client.set_agent_prompt("Be brief.")

    assert calls == 1


async def test_list_sessions_accepts_wrapped_and_bare_lists():
    entries = [{"id": "20240101120000", "path": "/s/1", "modified": "2024-01-01"}]
    responses = iter([{"sessions": entries}, entries])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(responses))

    async with make_client(handler) as client:
        wrapped = await client.list_sessions()
        bare = await client.list_sessions()

    assert wrapped == bare
    assert [s.id for s in wrapped] == ["20240101120000"]


async def test_advisory_reads_degrade_on_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    async with make_client(handler) as client:
        assert await client.list_sessions() == []
        details = await client.get_session_history("abc")
        assert details.session_id == "abc"
        assert details.messages == []
        assert details.metadata.title == "Session abc"


async def test_history_can_raise_on_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="missing")

    async with make_client(handler) as client:
        with pytest.raises(ApiRequestError):
            await client.get_session_history("abc", raise_on_error=True)


async def test_ask_returns_text():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/reply/ask"
        return httpx.Response(200, json={"text": "42"})

    async with make_client(handler) as client:
        assert await client.ask("What is the answer?", working_dir="/tmp") == "42"


def test_redact_secrets():
    client = make_client(lambda request: httpx.Response(200))
    client.set_secret_provider_keys(["OPENAI_API_KEY"])

    headers = client.redact_secrets({"X-Secret-Key": SECRET, "Accept": "text/plain"})
    assert headers == {"X-Secret-Key": REDACTED, "Accept": "text/plain"}

    body = client.redact_secrets({"config": {"OPENAI_API_KEY": "sk-123"}, "items": [SECRET]})
    assert body == {"config": {"OPENAI_API_KEY": REDACTED}, "items": [REDACTED]}

    text = client.redact_secrets('{"OPENAI_API_KEY": "sk-123"} OPENAI_API_KEY=sk-456')
    assert "sk-123" not in text
    assert "sk-456" not in text


async def test_stream_chat_response_yields_chunks():
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, content=b"data: {}\n\n", headers={"Content-Type": "text/event-stream"})

    message = create_user_message("hello", "user_1")
    async with make_client(handler) as client:
        chunks = [
            chunk
            async for chunk in client.stream_chat_response(
                [message], session_id="s1", working_dir="/work"
            )
        ]

    assert b"".join(chunks) == b"data: {}\n\n"
    assert captured[0]["session_id"] == "s1"
    assert captured[0]["session_working_dir"] == "/work"
    assert captured[0]["messages"][0]["content"][0] == {"type": "text", "text": "hello"}


async def test_stream_rejected_by_server():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="bad secret")

    async with make_client(handler) as client:
        with pytest.raises(ApiRequestError):
            async for _ in client.stream_chat_response([create_user_message("hi")]):
                pass


async def test_stream_transport_failure_raises_stream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("connection reset", request=request)

    async with make_client(handler) as client:
        with pytest.raises(StreamError):
            async for _ in client.stream_chat_response([create_user_message("hi")]):
                pass


async def test_stream_stops_when_token_is_cancelled():
    """Cancelling ends iteration even while the server keeps the stream open."""
    never = asyncio.Event()

    async def body() -> AsyncIterator[bytes]:
        yield b"data: {}\n\n"
        await never.wait()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body())

    token = CancellationToken()
    received: list[bytes] = []
    async with make_client(handler) as client:
        stream = client.stream_chat_response([create_user_message("hi")], cancel_token=token)
        async with asyncio.timeout(5):
            async for chunk in stream:
                received.append(chunk)
                token.cancel()

    assert received == [b"data: {}\n\n"]
