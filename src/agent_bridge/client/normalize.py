"""Normalization of session payloads into canonical models.

The agent server has shipped several response shapes for its session
endpoints. Session lists arrive either wrapped (`{"sessions": [...]}`) or as
a bare list, and per-session fields live either under `metadata` or at the
top level of the entry.

Field precedence for a session list entry (first non-empty value wins):

- `modified`: `modified`, `updated_at`, current time
- `working_dir`: `metadata.working_dir`, `working_dir`, `""`
- `title`: `metadata.title`, `title`, `metadata.description`, `description`,
  `"Session {id[:8]}"`
- `description`: `metadata.description`, `description`, `"Session {id[:8]}"`
- `message_count`: `metadata.message_count`, `message_count`, `0`
- `total_tokens`: `metadata.total_tokens`, `total_tokens`, `0`

Session history uses the `metadata` object when present, otherwise the
top-level fields, and reads messages from `messages` or `history`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from agent_bridge.log import get_logger
from agent_bridge.models import Message, SessionDetails, SessionMetadata


logger = get_logger(__name__)


def _first(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value:
            return value
    return default


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def placeholder_title(session_id: str) -> str:
    """Title for a session that has neither a title nor a description."""
    return f"Session {session_id[:8]}"


def normalize_session_entry(entry: dict[str, Any]) -> SessionMetadata:
    """Convert a single session list entry into `SessionMetadata`."""
    session_id = str(entry.get("id") or "")
    meta = entry.get("metadata")
    meta = meta if isinstance(meta, dict) else {}
    description = _first(meta.get("description"), entry.get("description"))
    fallback = placeholder_title(session_id)
    return SessionMetadata(
        id=session_id,
        path=entry.get("path") or "",
        modified=str(
            _first(entry.get("modified"), entry.get("updated_at"))
            or datetime.now(UTC).isoformat()
        ),
        working_dir=_first(meta.get("working_dir"), entry.get("working_dir"), default=""),
        title=_first(meta.get("title"), entry.get("title"), description, default=fallback),
        description=description or fallback,
        message_count=_as_int(_first(meta.get("message_count"), entry.get("message_count"))),
        total_tokens=_as_int(_first(meta.get("total_tokens"), entry.get("total_tokens"))),
    )


def normalize_session_list(data: Any) -> list[SessionMetadata]:
    """Normalize a wrapped or bare session list.

    Unexpected shapes yield an empty list.
    """
    if isinstance(data, dict) and isinstance(data.get("sessions"), list):
        entries = data["sessions"]
    elif isinstance(data, list):
        entries = data
    else:
        logger.error("Unexpected sessions response format", response_type=type(data).__name__)
        return []
    return [normalize_session_entry(e) for e in entries if isinstance(e, dict)]


def _parse_messages(raw: list[Any], session_id: str) -> list[Message]:
    messages = []
    for item in raw:
        try:
            messages.append(Message.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid message", session_id=session_id, error=str(e))
    return messages


def empty_session_details(session_id: str) -> SessionDetails:
    """Details for a session whose history could not be loaded."""
    fallback = placeholder_title(session_id)
    metadata = SessionMetadata(id=session_id, title=fallback, description=fallback)
    return SessionDetails(session_id=session_id, metadata=metadata)


def normalize_session_details(session_id: str, data: Any) -> SessionDetails:
    """Normalize a session history response."""
    if not isinstance(data, dict):
        return empty_session_details(session_id)

    fallback = placeholder_title(session_id)
    meta = data.get("metadata")
    if isinstance(meta, dict):
        metadata = SessionMetadata(
            id=session_id,
            working_dir=meta.get("working_dir") or "",
            title=_first(meta.get("title"), meta.get("description"), default=fallback),
            description=meta.get("description") or fallback,
            message_count=_as_int(meta.get("message_count")),
            total_tokens=_as_int(meta.get("total_tokens")),
        )
    else:
        metadata = SessionMetadata(
            id=session_id,
            working_dir=data.get("working_dir") or "",
            title=_first(data.get("title"), data.get("description"), default=fallback),
            description=_first(data.get("description"), data.get("title"), default=fallback),
            message_count=_as_int(data.get("message_count")),
            total_tokens=_as_int(data.get("total_tokens")),
        )

    if isinstance(data.get("messages"), list):
        raw_messages = data["messages"]
    elif isinstance(data.get("history"), list):
        raw_messages = data["history"]
    else:
        raw_messages = []
    messages = _parse_messages(raw_messages, session_id)
    if messages and metadata.message_count == 0:
        metadata = metadata.model_copy(update={"message_count": len(messages)})
    return SessionDetails(session_id=session_id, metadata=metadata, messages=messages)
