"""Agent server process management."""

from agent_bridge.server.binary import find_binary
from agent_bridge.server.ports import find_available_port
from agent_bridge.server.process import (
    ProcessSupervisor,
    ServerEndpoint,
    ServerHandle,
    SpawnConfig,
)
from agent_bridge.server.readiness import wait_until_ready
from agent_bridge.server.secrets import generate_secret_key

__all__ = [
    "ProcessSupervisor",
    "ServerEndpoint",
    "ServerHandle",
    "SpawnConfig",
    "find_available_port",
    "find_binary",
    "generate_secret_key",
    "wait_until_ready",
]
