"""Exceptions raised by agent_bridge."""

from __future__ import annotations

from collections.abc import Sequence


class AgentBridgeError(Exception):
    """Base class for all agent_bridge errors."""


class ConfigurationError(AgentBridgeError):
    """Raised when required configuration is missing or invalid."""


class MissingProviderConfigError(ConfigurationError):
    """Raised when provider or model settings are not configured."""

    def __init__(self, missing: Sequence[str], config_path: str | None = None):
        self.missing = list(missing)
        location = config_path or "the agent config file"
        msg = (
            f"Failed to load required configuration ({', '.join(self.missing)}) "
            f"from {location}. Please ensure it exists and contains valid "
            "GOOSE_PROVIDER and GOOSE_MODEL keys."
        )
        super().__init__(msg)


class BinaryNotFoundError(ConfigurationError):
    """Raised when the agent server binary cannot be found."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Binary not found at {path}")


class ServerStartError(AgentBridgeError):
    """Raised when the agent server process fails to spawn or become ready."""


class ServerNotRunningError(AgentBridgeError):
    """Raised when an operation requires a running server."""

    def __init__(self):
        super().__init__("Server is not running")


class ApiRequestError(AgentBridgeError):
    """Raised for non-2xx responses from the agent server."""

    def __init__(self, status_code: int, reason: str, body: str):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"API request failed: {status_code} {reason} - {body}")


class InvalidResponseError(AgentBridgeError):
    """Raised when a 2xx response body is not valid JSON or has the wrong shape."""

    def __init__(self, method: str, path: str, detail: str):
        self.method = method
        self.path = path
        super().__init__(f"Invalid response from {method} {path}: {detail}")


class StreamError(AgentBridgeError):
    """Raised when the transport fails while a chat response is streaming."""
