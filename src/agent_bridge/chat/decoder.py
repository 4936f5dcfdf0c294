"""Incremental decoding of the `/reply` server-sent event stream.

The server sends `data: {json}` lines. Each `Message` frame carries the
complete assistant message so far, so the latest frame replaces whatever was
shown before rather than being appended to it.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anyenv
from pydantic import ValidationError

from agent_bridge.log import get_logger
from agent_bridge.models import (
    Message,
    RedactedThinkingContent,
    TextContent,
    ThinkingContent,
    ToolRequestContent,
    now_timestamp,
)


if TYPE_CHECKING:
    import structlog


DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"
THINKING_ACTIVITY = "Thinking..."
SUMMARY_LENGTH = 80


@dataclass(kw_only=True)
class DecodedState:
    """Snapshot of everything decoded from a response so far."""

    message: Message | None = None
    """Reconstructed assistant message, None until there is something to show."""
    activity: str | None = None
    """Transient status for reasoning or running tools."""
    error: str | None = None
    """Error reported by the server through an `Error` frame."""
    finished: bool = False
    """Whether a `Finish` frame was received."""
    finish_reason: str | None = None


def summarize_tool_request(request: ToolRequestContent) -> str:
    """Short status line for a tool call, like `shell: ls -la`."""
    name = request.tool_name or "tool"
    name = name.rsplit("__", 1)[-1]
    summary = next((v for v in request.arguments.values() if isinstance(v, str) and v), "")
    summary = " ".join(summary.split())
    if len(summary) > SUMMARY_LENGTH:
        summary = summary[: SUMMARY_LENGTH - 3] + "..."
    return f"{name}: {summary}" if summary else name


def activity_for(message: Message) -> str | None:
    """Activity text for an intermediate message, None for plain messages."""
    if not message.is_intermediate():
        return None
    if requests := message.tool_requests:
        return summarize_tool_request(requests[-1])
    if any(isinstance(p, ThinkingContent | RedactedThinkingContent) for p in message.content):
        return THINKING_ACTIVITY
    return None


def fallback_text(frame: Any) -> str:
    """Best-effort text for a frame that is not an assistant message.

    Uses the first content part's text, then a string `message` field, then
    the JSON dump of the whole frame.
    """
    if isinstance(frame, dict):
        message = frame.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, list) and content and isinstance(content[0], dict):
                if text := content[0].get("text"):
                    return str(text)
        if isinstance(message, str) and message:
            return message
    if isinstance(frame, str):
        return frame
    return anyenv.dump_json(frame, indent=True)


class StreamingChatDecoder:
    """Turns raw response chunks into the current assistant message.

    The result depends only on the bytes received, not on how they were split
    into chunks. Lines are parsed once they are complete; `flush` parses the
    trailing line when the stream ends.
    """

    def __init__(
        self,
        message_id: str,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.message_id = message_id
        self.log = logger if logger is not None else get_logger(__name__)
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._text = ""
        self._pending = ""
        self._frames_seen = 0
        self._sse_seen = False
        self._malformed_logged = False
        self._last_assistant: Message | None = None
        self._last_frame: Any = None
        self._activity: str | None = None
        self._error: str | None = None
        self._finish_reason: str | None = None
        self._finished = False

    @property
    def text(self) -> str:
        """All text received so far."""
        return self._text

    def feed(self, chunk: bytes | str) -> DecodedState:
        """Add a chunk and return the updated state."""
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._text += text
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._process_line(line)
        return self.state()

    def flush(self) -> DecodedState:
        """Process buffered input at the end of the stream."""
        tail = self._utf8.decode(b"", final=True)
        self._text += tail
        self._pending += tail
        if self._pending:
            self._process_line(self._pending)
            self._pending = ""
        return self.state(final=True)

    def _process_line(self, line: str) -> None:
        line = line.strip()
        if line.startswith(":"):
            self._sse_seen = True
            return
        if not line.startswith(DATA_PREFIX):
            return
        self._sse_seen = True
        payload = line[len(DATA_PREFIX) :].strip()
        if not payload or payload == DONE_MARKER:
            return
        try:
            frame = anyenv.load_json(payload)
        except anyenv.JsonLoadError as e:
            if not self._malformed_logged:
                self.log.warning("Skipping malformed stream frame", frame=payload[:100], error=str(e))
                self._malformed_logged = True
            return
        self._frames_seen += 1
        self._apply_frame(frame)

    def _apply_frame(self, frame: Any) -> None:
        kind = frame.get("type") if isinstance(frame, dict) else None
        match kind:
            case "Message":
                self._apply_message_frame(frame)
            case "Error":
                self._error = str(frame.get("error") or "Unknown error")
            case "Finish":
                self._finished = True
                self._finish_reason = frame.get("reason")
                self._activity = None
            case _:
                self._last_frame = frame

    def _apply_message_frame(self, frame: dict[str, Any]) -> None:
        raw = frame.get("message")
        try:
            message = Message.model_validate(raw)
        except ValidationError:
            self._last_frame = frame
            return
        if message.role != "assistant":
            self._last_frame = frame
            return
        if message.is_intermediate():
            self._activity = activity_for(message)
            return
        self._last_assistant = message
        self._activity = None

    def _raw_text_allowed(self, final: bool) -> bool:
        if self._frames_seen or self._sse_seen or not self._text.strip():
            return False
        head = self._text.lstrip()
        return final or not (head.startswith(DATA_PREFIX) or DATA_PREFIX.startswith(head))

    def _current_message(self, final: bool) -> Message | None:
        if self._last_assistant is not None:
            return self._last_assistant.model_copy(
                update={"id": self.message_id, "created": now_timestamp()},
            )
        if self._last_frame is not None:
            text = fallback_text(self._last_frame)
        elif self._raw_text_allowed(final):
            text = self._text
        else:
            return None
        return Message(
            id=self.message_id,
            role="assistant",
            content=[TextContent(text=text)],
        )

    def state(self, *, final: bool = False) -> DecodedState:
        """Current decoded state without consuming input."""
        return DecodedState(
            message=self._current_message(final),
            activity=self._activity,
            error=self._error,
            finished=self._finished,
            finish_reason=self._finish_reason,
        )
