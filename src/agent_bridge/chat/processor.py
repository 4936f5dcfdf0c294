"""Sending chat turns and turning the response stream into timeline events."""

from __future__ import annotations

import contextlib
import os
import time
from typing import TYPE_CHECKING
from uuid import uuid4

import httpx
from psygnal import Signal

from agent_bridge.chat.cancellation import CancellationToken
from agent_bridge.chat.decoder import StreamingChatDecoder
from agent_bridge.chat.events import ActivityEvent, ErrorEvent, FinishEvent, MessageUpdateEvent
from agent_bridge.chat.timeline import ConversationTimeline
from agent_bridge.exceptions import ApiRequestError, ServerNotRunningError, StreamError
from agent_bridge.log import get_logger
from agent_bridge.models import TextContent, create_user_message


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import structlog

    from agent_bridge.chat.decoder import DecodedState
    from agent_bridge.chat.events import ChatEvent
    from agent_bridge.client.api_client import AgentApiClient
    from agent_bridge.models import Message, SessionDetails
    from agent_bridge.sessions.registry import SessionRegistry


def _millis() -> int:
    return int(time.time() * 1000)


def _has_content(message: Message) -> bool:
    if message.fingerprint.strip():
        return True
    return any(not isinstance(part, TextContent) for part in message.content)


class ChatProcessor:
    """Runs chat turns against the current session.

    Each call to `send_message` appends the user message, streams the
    assistant reply into the timeline and yields events for the UI. Every
    turn ends with exactly one `FinishEvent` or `ErrorEvent`.

    Example:
        processor = ChatProcessor(manager.get_api_client, registry)
        async for event in processor.send_message("hello"):
            ...
    """

    chat_event = Signal(object)
    """Emitted for every event also yielded by `send_message`."""

    def __init__(
        self,
        get_client: Callable[[], AgentApiClient | None],
        registry: SessionRegistry,
        *,
        working_dir: str | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._get_client = get_client
        self.registry = registry
        self.working_dir = working_dir or os.getcwd()
        self.log = logger if logger is not None else get_logger(__name__)
        self.timeline = ConversationTimeline()
        self._cancel_token: CancellationToken | None = None
        registry.session_loaded.connect(self._on_session_loaded)

    @property
    def is_generating(self) -> bool:
        return self._cancel_token is not None

    @property
    def messages(self) -> list[Message]:
        return self.timeline.messages

    def clear_messages(self) -> None:
        self.timeline.clear()

    def stop_generation(self) -> bool:
        """Cancel the response that is currently streaming.

        Returns:
            True if a running response was cancelled
        """
        if self._cancel_token is None:
            return False
        self.log.info("Stopping generation")
        return self._cancel_token.cancel()

    def _on_session_loaded(self, details: SessionDetails) -> None:
        self.stop_generation()
        self.timeline.replace_all(details.messages)

    def _resolve_session(self, session_id: str | None) -> tuple[str, str, bool]:
        """Session id, working dir and whether the session is still local."""
        if session_id is None:
            session_id = self.registry.current_session_id
        if session_id is None:
            details = self.registry.create(self.working_dir)
            return details.session_id, self.working_dir, True
        meta = self.registry.get(session_id)
        working_dir = meta.working_dir if meta and meta.working_dir else self.working_dir
        return session_id, working_dir, bool(meta and meta.is_local)

    async def send_message(
        self,
        text: str,
        *,
        message_id: str | None = None,
        session_id: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Send a user message and stream the assistant reply.

        Creates a local session when there is no current one.

        Raises:
            ServerNotRunningError: If there is no running server
        """
        client = self._get_client()
        if client is None:
            raise ServerNotRunningError
        session_id, working_dir, was_local = self._resolve_session(session_id)

        user_message = create_user_message(text, message_id or f"user_{_millis()}")
        self.timeline.append(user_message)
        history = self.timeline.messages
        ai_message_id = f"ai_{_millis()}_{uuid4().hex[:6]}"
        self.log.info("Sending chat message", session_id=session_id, messages=len(history))

        token = CancellationToken()
        self._cancel_token = token
        decoder = StreamingChatDecoder(ai_message_id, logger=self.log)
        turn = _Turn(self, ai_message_id)
        stream = client.stream_chat_response(
            history,
            session_id=session_id,
            working_dir=working_dir,
            cancel_token=token,
        )
        try:
            async with contextlib.aclosing(stream):
                async for chunk in stream:
                    if token.cancelled:
                        break
                    for event in turn.apply(decoder.feed(chunk)):
                        if token.cancelled:
                            break
                        yield self._emit(event)
                    if turn.failed:
                        token.cancel()
                        return
            if token.cancelled:
                self.log.info("Chat response stopped", session_id=session_id)
                yield self._emit(FinishEvent(message=turn.message, reason="stopped"))
                return
            for event in turn.apply(decoder.flush()):
                yield self._emit(event)
            if turn.failed:
                return
        except (ApiRequestError, StreamError, httpx.HTTPError) as e:
            self.log.exception("Chat request failed", session_id=session_id)
            yield self._emit(ErrorEvent(error=str(e), message_id=ai_message_id))
            return
        finally:
            if self._cancel_token is token:
                self._cancel_token = None

        if was_local:
            self.registry.mark_saved(session_id)
            await self.registry.fetch_all()
        self.log.info("Chat response complete", session_id=session_id)
        yield self._emit(FinishEvent(message=turn.message, reason="complete"))

    def _emit(self, event: ChatEvent) -> ChatEvent:
        self.chat_event.emit(event)
        return event


class _Turn:
    """Tracks what of one response has already been reported."""

    def __init__(self, processor: ChatProcessor, message_id: str):
        self._processor = processor
        self.message_id = message_id
        self._activity: str | None = None
        self.failed = False

    @property
    def message(self) -> Message | None:
        return self._processor.timeline.get(self.message_id)

    def apply(self, state: DecodedState) -> list[ChatEvent]:
        events: list[ChatEvent] = []
        if state.activity != self._activity:
            self._activity = state.activity
            events.append(ActivityEvent(text=state.activity))
        message = state.message
        if message is not None and _has_content(message):
            if self._processor.timeline.upsert(message):
                events.append(MessageUpdateEvent(message=message))
        if state.error and not self.failed:
            self.failed = True
            self._processor.log.error("Server reported an error", error=state.error)
            events.append(ErrorEvent(error=state.error, message_id=self.message_id))
        return events
