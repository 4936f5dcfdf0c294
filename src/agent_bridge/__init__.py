"""Async client and supervisor for a locally spawned AI agent server."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from agent_bridge.chat import (
    ActivityEvent,
    CancellationToken,
    ChatProcessor,
    ConversationTimeline,
    ErrorEvent,
    FinishEvent,
    MessageUpdateEvent,
    StreamingChatDecoder,
)
from agent_bridge.client import AgentApiClient
from agent_bridge.config import ProviderConfig, ServerConfig, read_provider_config
from agent_bridge.exceptions import (
    AgentBridgeError,
    ApiRequestError,
    BinaryNotFoundError,
    ConfigurationError,
    InvalidResponseError,
    MissingProviderConfigError,
    ServerNotRunningError,
    ServerStartError,
    StreamError,
)
from agent_bridge.log import configure_logging, get_logger
from agent_bridge.manager import ServerManager, ServerStatus
from agent_bridge.models import Message, SessionDetails, SessionMetadata
from agent_bridge.sessions import SessionRegistry

try:
    __version__ = version("agent-bridge")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ActivityEvent",
    "AgentApiClient",
    "AgentBridgeError",
    "ApiRequestError",
    "BinaryNotFoundError",
    "CancellationToken",
    "ChatProcessor",
    "ConfigurationError",
    "ConversationTimeline",
    "ErrorEvent",
    "FinishEvent",
    "InvalidResponseError",
    "Message",
    "MessageUpdateEvent",
    "MissingProviderConfigError",
    "ProviderConfig",
    "ServerConfig",
    "ServerManager",
    "ServerNotRunningError",
    "ServerStartError",
    "ServerStatus",
    "SessionDetails",
    "SessionMetadata",
    "SessionRegistry",
    "StreamError",
    "StreamingChatDecoder",
    "configure_logging",
    "get_logger",
    "read_provider_config",
]
