"""HTTP client for the agent server."""

from agent_bridge.client.api_client import AgentApiClient
from agent_bridge.client.normalize import (
    normalize_session_details,
    normalize_session_entry,
    normalize_session_list,
)

__all__ = [
    "AgentApiClient",
    "normalize_session_details",
    "normalize_session_entry",
    "normalize_session_list",
]
