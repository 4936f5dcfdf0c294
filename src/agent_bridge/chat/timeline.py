"""Ordered conversation history with in-place streaming updates."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from agent_bridge.models import Message


class ConversationTimeline:
    """Messages of one conversation in display order.

    New messages are appended. A streamed message is replaced in place when
    an update with the same id arrives and its text actually changed.
    """

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: list[Message] = list(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        """Copy of the messages in order."""
        return list(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def index_of(self, message_id: str) -> int | None:
        # streamed messages sit at the end, search backwards
        for i in range(len(self._messages) - 1, -1, -1):
            if self._messages[i].id == message_id:
                return i
        return None

    def get(self, message_id: str) -> Message | None:
        index = self.index_of(message_id)
        return None if index is None else self._messages[index]

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def upsert(self, message: Message) -> bool:
        """Insert a message or update the one with the same id.

        Returns:
            True if the timeline changed
        """
        index = self.index_of(message.id)
        if index is None:
            self._messages.append(message)
            return True
        if self._messages[index].fingerprint == message.fingerprint:
            return False
        self._messages[index] = message
        return True

    def replace_all(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages.clear()
