"""Chat streaming: decoding, events and the conversation timeline."""

from agent_bridge.chat.cancellation import CancellationToken
from agent_bridge.chat.decoder import DecodedState, StreamingChatDecoder
from agent_bridge.chat.events import (
    ActivityEvent,
    ChatEvent,
    ErrorEvent,
    FinishEvent,
    MessageUpdateEvent,
)
from agent_bridge.chat.processor import ChatProcessor
from agent_bridge.chat.timeline import ConversationTimeline

__all__ = [
    "ActivityEvent",
    "CancellationToken",
    "ChatEvent",
    "ChatProcessor",
    "ConversationTimeline",
    "DecodedState",
    "ErrorEvent",
    "FinishEvent",
    "MessageUpdateEvent",
    "StreamingChatDecoder",
]
