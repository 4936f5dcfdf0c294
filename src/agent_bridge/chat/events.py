"""Events emitted while a chat response streams in."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from agent_bridge.models import Message  # noqa: TC001


FinishReason = Literal["complete", "stopped"]


@dataclass(kw_only=True)
class MessageUpdateEvent:
    """The in-progress assistant message changed."""

    message: Message
    """Latest reconstruction of the message. Its id stays fixed for the response."""
    event_kind: Literal["message_update"] = "message_update"
    """Event type identifier."""


@dataclass(kw_only=True)
class ActivityEvent:
    """Transient status line, such as reasoning or a running tool."""

    text: str | None
    """Status text, or None when the activity indicator should be cleared."""
    event_kind: Literal["activity"] = "activity"
    """Event type identifier."""


@dataclass(kw_only=True)
class FinishEvent:
    """The response ended."""

    message: Message | None
    """Final assistant message, if any content was received."""
    reason: FinishReason
    """`complete` when the server ended the stream, `stopped` when cancelled."""
    event_kind: Literal["finish"] = "finish"
    """Event type identifier."""


@dataclass(kw_only=True)
class ErrorEvent:
    """The response failed."""

    error: str
    """Human readable error description."""
    message_id: str | None = None
    """Id of the assistant message that was being streamed."""
    event_kind: Literal["error"] = "error"
    """Event type identifier."""


ChatEvent = MessageUpdateEvent | ActivityEvent | FinishEvent | ErrorEvent
