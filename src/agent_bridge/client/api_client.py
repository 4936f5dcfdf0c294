"""Authenticated HTTP client for the local agent server."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
import contextlib
from datetime import datetime
import os
import re
from typing import TYPE_CHECKING, Any, Self

import anyenv
import httpx
from pydantic import ValidationError

from agent_bridge.chat.cancellation import CancellationToken
from agent_bridge.client.normalize import (
    empty_session_details,
    normalize_session_details,
    normalize_session_list,
)
from agent_bridge.exceptions import ApiRequestError, InvalidResponseError, StreamError
from agent_bridge.log import get_logger
from agent_bridge.models import AgentVersions, Message, SessionDetails, SessionMetadata


if TYPE_CHECKING:
    from types import TracebackType

    import structlog

    from agent_bridge.server.process import ServerEndpoint


SECRET_HEADER = "X-Secret-Key"
REDACTED = "***REDACTED***"
DEFAULT_TIMEOUT = 30.0


class AgentApiClient:
    """Client for the agent server REST and streaming API.

    Every request carries the shared secret in the `X-Secret-Key` header.
    Non-2xx responses raise `ApiRequestError`. Advisory reads
    (`list_sessions`, `get_session_history`, `check_status`) degrade to empty
    results instead of raising.

    Example:
        async with AgentApiClient("http://127.0.0.1:4321", secret) as client:
            sessions = await client.list_sessions()
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        log_sensitive_requests: bool = False,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server base URL, e.g. `http://127.0.0.1:4321`
            secret_key: Shared secret sent with every request
            timeout: Default request timeout in seconds
            transport: Optional httpx transport, used for testing
            log_sensitive_requests: Log redacted request and response bodies
            logger: Logger to use, defaults to the module logger
        """
        self.base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self.log_sensitive_requests = log_sensitive_requests
        self.log = logger if logger is not None else get_logger(__name__)
        self._secret_provider_keys: list[str] = []
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_endpoint(cls, endpoint: ServerEndpoint, **kwargs: Any) -> Self:
        """Create a client bound to a running server endpoint."""
        return cls(endpoint.base_url, endpoint.secret_key, **kwargs)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    def set_secret_provider_keys(self, keys: Sequence[str]) -> None:
        """Set provider config key names whose values are redacted in logs."""
        self._secret_provider_keys = list(keys)
        self.log.debug("Updated secret provider keys", count=len(self._secret_provider_keys))

    def redact_secrets(self, data: Any) -> Any:
        """Return a copy of headers or a body with secret values replaced."""
        match data:
            case Mapping():
                redacted = {}
                for key, value in data.items():
                    if key.lower() == SECRET_HEADER.lower() or key in self._secret_provider_keys:
                        redacted[key] = REDACTED
                    else:
                        redacted[key] = self.redact_secrets(value)
                return redacted
            case list() | tuple():
                return [self.redact_secrets(item) for item in data]
            case str():
                text = data.replace(self._secret_key, REDACTED) if self._secret_key else data
                for key in self._secret_provider_keys:
                    escaped = re.escape(key)
                    text = re.sub(rf'"{escaped}"\s*:\s*"[^"]*"', f'"{key}":"{REDACTED}"', text)
                    text = re.sub(rf"{escaped}=[^&\s]+", f"{key}={REDACTED}", text)
                return text
            case _:
                return data

    def _build_headers(self, headers: Mapping[str, str] | None = None) -> dict[str, str]:
        return {
            **(headers or {}),
            "Content-Type": "application/json",
            SECRET_HEADER: self._secret_key,
        }

    def _log_request(self, method: str, path: str, headers: dict[str, str], body: Any) -> None:
        self.log.debug("API request", method=method, path=path)
        self.log.debug("Request headers", headers=self.redact_secrets(headers))
        if body is None:
            return
        if self.log_sensitive_requests:
            self.log.debug("Request body", body=self.redact_secrets(body))
        else:
            self.log.debug("Request body redacted by config")

    async def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        if response.is_success:
            return
        try:
            await response.aread()
            body = response.text
        except httpx.HTTPError:
            body = "[Could not read error body]"
        shown = self.redact_secrets(body) if self.log_sensitive_requests else "[REDACTED BY CONFIG]"
        self.log.error(
            "API error",
            method=method,
            path=path,
            status=response.status_code,
            reason=response.reason_phrase,
            body=shown,
        )
        raise ApiRequestError(response.status_code, response.reason_phrase, body)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send an authenticated request.

        Raises:
            ApiRequestError: For non-2xx responses
            httpx.HTTPError: For transport failures
        """
        request_headers = self._build_headers(headers)
        self._log_request(method, path, request_headers, json)
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                headers=request_headers,
                **kwargs,
            )
        except httpx.HTTPError:
            self.log.exception("API request failed unexpectedly", method=method, path=path)
            raise
        self.log.debug(
            "API response",
            method=method,
            path=path,
            status=response.status_code,
            reason=response.reason_phrase,
        )
        await self._raise_for_status(response, method, path)
        if self.log_sensitive_requests:
            self.log.debug("Response body", body=self.redact_secrets(response.text))
        return response

    async def _request_json(self, method: str, path: str, *, json: Any = None) -> Any:
        response = await self.request(method, path, json=json)
        if not response.content:
            return None
        try:
            return anyenv.load_json(response.text)
        except anyenv.JsonLoadError as e:
            raise InvalidResponseError(method, path, str(e)) from e

    async def check_status(self) -> bool:
        """Return whether the server answers `GET /status`. Never raises."""
        try:
            await self.request("GET", "/status")
        except (httpx.HTTPError, ApiRequestError):
            return False
        return True

    async def create_session(self, working_dir: str, description: str | None = None) -> Any:
        """Create a session on the server."""
        body = {
            "working_dir": working_dir,
            "description": description or f"Session {datetime.now():%Y-%m-%d %H:%M:%S}",
        }
        return await self._request_json("POST", "/sessions/new", json=body)

    async def list_sessions(self) -> list[SessionMetadata]:
        """List sessions known to the server, or an empty list on failure."""
        try:
            data = await self._request_json("GET", "/sessions")
        except (httpx.HTTPError, ApiRequestError, InvalidResponseError) as e:
            self.log.error("Failed to list sessions", error=str(e))
            return []
        sessions = normalize_session_list(data)
        self.log.info("Listed sessions", count=len(sessions))
        return sessions

    async def get_session_history(
        self,
        session_id: str,
        *,
        raise_on_error: bool = False,
    ) -> SessionDetails:
        """Load a session with its messages.

        Args:
            session_id: Session to load
            raise_on_error: Propagate failures instead of returning an empty session
        """
        try:
            data = await self._request_json("GET", f"/sessions/{session_id}")
        except (httpx.HTTPError, ApiRequestError, InvalidResponseError) as e:
            self.log.error("Failed to get session history", session_id=session_id, error=str(e))
            if raise_on_error:
                raise
            return empty_session_details(session_id)
        return normalize_session_details(session_id, data)

    async def rename_session(self, session_id: str, description: str) -> Any:
        return await self._request_json(
            "POST",
            f"/sessions/{session_id}/rename",
            json={"description": description},
        )

    async def delete_session(self, session_id: str) -> Any:
        return await self._request_json("DELETE", f"/sessions/{session_id}")

    async def get_agent_versions(self) -> AgentVersions:
        data = await self._request_json("GET", "/agent/versions")
        try:
            return AgentVersions.model_validate(data or {})
        except ValidationError as e:
            raise InvalidResponseError("GET", "/agent/versions", str(e)) from e

    async def get_providers(self) -> list[Any]:
        return await self._request_json("GET", "/agent/providers") or []

    async def create_agent(
        self,
        provider: str,
        model: str | None = None,
        version: str | None = None,
    ) -> Any:
        """Create the agent with the given provider, model and version."""
        body = {"provider": provider}
        if model:
            body["model"] = model
        if version:
            body["version"] = version
        self.log.info("Creating agent", provider=provider, model=model, version=version)
        data = await self._request_json("POST", "/agent", json=body)
        self.log.info("Agent created")
        return data

    async def add_extension(self, name: str) -> Any:
        """Enable a builtin extension on the agent."""
        body = {"type": "builtin", "name": name}
        return await self._request_json("POST", "/extensions/add", json=body)

    async def set_agent_prompt(self, prompt: str | None) -> Any:
        """Extend the agent system prompt. Empty prompts are skipped."""
        if not prompt or not prompt.strip():
            self.log.debug("Skipping empty agent prompt")
            return None
        self.log.info("Setting agent system prompt")
        return await self._request_json("POST", "/agent/prompt", json={"extension": prompt})

    async def confirm_tool_call(self, tool_id: str, confirmed: bool) -> Any:
        body = {"id": tool_id, "confirmed": confirmed}
        return await self._request_json("POST", "/reply/confirm", json=body)

    async def ask(
        self,
        prompt: str,
        session_id: str | None = None,
        working_dir: str | None = None,
    ) -> str:
        """Ask a single question without streaming and return the answer text."""
        body = {
            "prompt": prompt,
            "session_id": session_id,
            "session_working_dir": working_dir or os.getcwd(),
        }
        data = await self._request_json("POST", "/reply/ask", json=body)
        return (data or {}).get("text") or ""

    async def stream_chat_response(
        self,
        messages: Sequence[Message],
        *,
        session_id: str | None = None,
        working_dir: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[bytes]:
        """Post the conversation to `/reply` and yield raw SSE chunks.

        Cancelling the token closes the response; iteration then ends quietly.

        Raises:
            ApiRequestError: If the server rejects the request
            StreamError: If the transport fails while streaming
        """
        token = cancel_token or CancellationToken()
        body = {
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in messages],
            "session_id": session_id,
            "session_working_dir": working_dir or os.getcwd(),
        }
        headers = self._build_headers({"Accept": "text/event-stream"})
        self._log_request("POST", "/reply", headers, body)
        self.log.info("Streaming chat response", session_id=session_id, working_dir=working_dir)
        if token.cancelled:
            return

        cancelled = asyncio.ensure_future(token.wait())
        try:
            async with self._client.stream(
                "POST",
                "/reply",
                json=body,
                headers=headers,
                timeout=httpx.Timeout(DEFAULT_TIMEOUT, read=None),
            ) as response:
                await self._raise_for_status(response, "POST", "/reply")
                chunks = response.aiter_bytes()
                while True:
                    read = asyncio.ensure_future(anext(chunks))
                    await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                    if cancelled.done():
                        read.cancel()
                        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                            await read
                        self.log.info("Chat stream cancelled", session_id=session_id)
                        return
                    try:
                        chunk = read.result()
                    except StopAsyncIteration:
                        return
                    yield chunk
        except httpx.HTTPError as e:
            self.log.exception("Chat stream failed", session_id=session_id)
            msg = f"Chat stream failed: {e}"
            raise StreamError(msg) from e
        finally:
            cancelled.cancel()
