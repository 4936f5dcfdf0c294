"""Wire models shared by the client, the chat decoder and the session registry."""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


MessageRole = Literal["user", "assistant", "system"]


def now_timestamp() -> int:
    """Current unix time in seconds, the unit the agent server uses."""
    return int(time.time())


class BridgeModel(BaseModel):
    """Base model for agent server payloads.

    Fields can be populated by their camelCase alias or their Python name,
    and serialization uses the aliases so payloads round-trip to the server.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        serialize_by_alias=True,
    )


class TextContent(BridgeModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str = ""
    annotations: dict[str, Any] | None = None


class ImageContent(BridgeModel):
    """Base64 encoded image content."""

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")
    annotations: dict[str, Any] | None = None


class ToolCall(BridgeModel):
    """Name and arguments of a requested tool invocation."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BridgeModel):
    """Outcome of parsing a tool call on the server side."""

    status: Literal["success", "error"] = "success"
    value: ToolCall | None = None
    error: str | None = None


class ToolRequestContent(BridgeModel):
    """A tool call issued by the assistant."""

    type: Literal["toolRequest"] = "toolRequest"
    id: str
    tool_call: ToolCallResult = Field(alias="toolCall")

    @property
    def tool_name(self) -> str | None:
        return self.tool_call.value.name if self.tool_call.value else None

    @property
    def arguments(self) -> dict[str, Any]:
        return self.tool_call.value.arguments if self.tool_call.value else {}


class ToolResult(BridgeModel):
    """Tool output, either a list of content items or an error."""

    status: Literal["success", "error"] = "success"
    value: Any = None
    error: str | None = None


class ToolResponseContent(BridgeModel):
    """Result of a tool call, sent back to the assistant."""

    type: Literal["toolResponse"] = "toolResponse"
    id: str
    tool_result: ToolResult = Field(alias="toolResult")


class ToolConfirmationRequestContent(BridgeModel):
    """Server asks the user to confirm a tool call before it runs."""

    type: Literal["toolConfirmationRequest"] = "toolConfirmationRequest"
    id: str
    tool_name: str = Field(alias="toolName")
    arguments: dict[str, Any] = Field(default_factory=dict)
    prompt: str | None = None


class ThinkingContent(BridgeModel):
    """Model reasoning that is shown as transient activity only."""

    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None


class RedactedThinkingContent(BridgeModel):
    """Reasoning the provider chose not to reveal."""

    type: Literal["redactedThinking"] = "redactedThinking"
    data: str = ""


class UnknownContent(BridgeModel):
    """Content part of a type this client does not know about."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str


_KNOWN_CONTENT_TYPES = frozenset({
    "text",
    "image",
    "toolRequest",
    "toolResponse",
    "toolConfirmationRequest",
    "thinking",
    "redactedThinking",
})


def _content_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in _KNOWN_CONTENT_TYPES else "unknown"


Content = Annotated[
    Annotated[TextContent, Tag("text")]
    | Annotated[ImageContent, Tag("image")]
    | Annotated[ToolRequestContent, Tag("toolRequest")]
    | Annotated[ToolResponseContent, Tag("toolResponse")]
    | Annotated[ToolConfirmationRequestContent, Tag("toolConfirmationRequest")]
    | Annotated[ThinkingContent, Tag("thinking")]
    | Annotated[RedactedThinkingContent, Tag("redactedThinking")]
    | Annotated[UnknownContent, Tag("unknown")],
    Discriminator(_content_tag),
]
"""Tagged union of all message content parts, keyed on `type`."""


class Message(BridgeModel):
    """A single conversation message.

    The `id` stays stable while a streamed response is updated in place,
    and the order of `content` is preserved across updates.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:8])
    role: MessageRole
    created: int = Field(default_factory=now_timestamp)
    content: list[Content] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(part.text for part in self.content if isinstance(part, TextContent))

    @property
    def fingerprint(self) -> str:
        """Content-derived key used to skip no-op updates."""
        return "".join(part.text for part in self.content if isinstance(part, TextContent))

    @property
    def tool_requests(self) -> list[ToolRequestContent]:
        return [part for part in self.content if isinstance(part, ToolRequestContent)]

    @property
    def tool_responses(self) -> list[ToolResponseContent]:
        return [part for part in self.content if isinstance(part, ToolResponseContent)]

    def is_intermediate(self) -> bool:
        """Whether this message only carries reasoning or in-flight tool requests."""
        if not self.content:
            return False
        intermediate = (ThinkingContent, RedactedThinkingContent, ToolRequestContent)
        return all(isinstance(part, intermediate) for part in self.content)


def create_user_message(text: str, message_id: str | None = None) -> Message:
    """Create a user message with a single text part."""
    return Message(
        id=message_id or f"user_{uuid4().hex[:12]}",
        role="user",
        content=[TextContent(text=text)],
    )


def create_assistant_message(text: str, message_id: str | None = None) -> Message:
    """Create an assistant message with a single text part."""
    return Message(
        id=message_id or f"ai_{uuid4().hex[:12]}",
        role="assistant",
        content=[TextContent(text=text)],
    )


class SessionMetadata(BridgeModel):
    """Canonical description of a conversation session."""

    id: str
    path: str = ""
    modified: str = ""
    working_dir: str = ""
    title: str = ""
    description: str = ""
    message_count: int = 0
    total_tokens: int = 0
    is_local: bool = Field(default=False, alias="isLocal")
    """True while the session only exists on the client side."""


class SessionDetails(BridgeModel):
    """A session together with its message history."""

    session_id: str
    metadata: SessionMetadata
    messages: list[Message] = Field(default_factory=list)


class AgentVersions(BridgeModel):
    """Agent versions offered by the server."""

    available_versions: list[str] = Field(default_factory=list)
    default_version: str | None = None
