"""Configuration models for the agent server and its provider settings."""

from __future__ import annotations

import os
from pathlib import Path
import sys
from typing import Any

from pydantic import ConfigDict, Field
from schemez import Schema
import yamling

from agent_bridge.log import get_logger


logger = get_logger(__name__)

DEFAULT_BINARY_NAME = "goosed"
PORT_ENV_VAR = "GOOSE_PORT"
SECRET_ENV_VAR = "GOOSE_SERVER__SECRET_KEY"
PROVIDER_KEY = "GOOSE_PROVIDER"
MODEL_KEY = "GOOSE_MODEL"

DEFAULT_FORWARDED_ENV_VARS: tuple[str, ...] = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "DATABRICKS_HOST",
    "DATABRICKS_TOKEN",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "OLLAMA_HOST",
)
"""Host credentials passed through to the agent server when present."""


class ProviderConfig(Schema):
    """Provider and model selection read from the agent config file."""

    provider: str | None = Field(default=None, examples=["openai", "anthropic"])
    """LLM provider the agent should use."""

    model: str | None = Field(default=None, examples=["gpt-4o", "claude-sonnet-4-0"])
    """Model name for the provider."""

    model_config = ConfigDict(frozen=True)

    @property
    def missing_keys(self) -> list[str]:
        """Names of the config keys that are not set."""
        missing = []
        if not self.provider:
            missing.append(PROVIDER_KEY)
        if not self.model:
            missing.append(MODEL_KEY)
        return missing


class ServerConfig(Schema):
    """Settings used to launch and configure the local agent server."""

    binary_path: str | None = Field(default=None, title="Binary path")
    """Explicit path to the agent server binary. Discovered when unset."""

    binary_name: str = Field(default=DEFAULT_BINARY_NAME, title="Binary name")
    """Executable name used for discovery."""

    subcommand: str = Field(default="agent", title="Subcommand")
    """Argument passed to the binary to run the HTTP agent server."""

    working_dir: str | None = Field(default=None, title="Working directory")
    """Working directory of the server process. Defaults to the user home."""

    env: dict[str, str] = Field(default_factory=dict, title="Environment overrides")
    """Extra environment variables, applied last."""

    forwarded_env_vars: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FORWARDED_ENV_VARS),
        title="Forwarded credentials",
    )
    """Host variables copied into the server environment when set."""

    secret_key: str | None = Field(default=None, title="Secret key")
    """Injected shared secret. A fresh one is generated on every start when unset."""

    port_env_var: str = Field(default=PORT_ENV_VAR, title="Port variable")
    secret_env_var: str = Field(default=SECRET_ENV_VAR, title="Secret variable")

    readiness_attempts: int = Field(default=60, gt=0, title="Readiness attempts")
    readiness_interval: float = Field(default=0.1, gt=0, title="Readiness interval")
    """Seconds between readiness probes."""

    stop_timeout: float = Field(default=5.0, gt=0, title="Stop timeout")
    """Seconds to wait for a graceful exit before killing the process."""

    provider: str | None = Field(default=None, title="Provider")
    """Provider override. Read from the agent config file when unset."""

    model: str | None = Field(default=None, title="Model")
    """Model override. Read from the agent config file when unset."""

    system_prompt: str | None = Field(default=None, title="System prompt")
    """Prompt extension sent to the agent after it is created."""

    extensions: list[str] = Field(default_factory=lambda: ["developer"], title="Extensions")
    """Builtin extensions enabled on the agent."""

    log_sensitive_requests: bool = Field(default=False, title="Log request bodies")
    """Log (redacted) request bodies at debug level."""

    model_config = ConfigDict(frozen=True)

    def resolve_working_dir(self) -> Path:
        return Path(self.working_dir).expanduser() if self.working_dir else Path.home()


def get_config_path() -> Path | None:
    """Return the location of the agent config file for this platform.

    Returns None on Windows when APPDATA is not set.
    """
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        if not app_data:
            logger.error("Could not determine APPDATA directory on Windows")
            return None
        return Path(app_data) / "Block" / "goose" / "config" / "config.yaml"
    return Path.home() / ".config" / "goose" / "config.yaml"


def _string_value(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


def read_provider_config(path: str | os.PathLike[str] | None = None) -> ProviderConfig:
    """Read provider and model from the agent config file.

    Missing or unreadable files yield an empty config. The caller decides
    whether missing keys are fatal.

    Args:
        path: Config file to read. Defaults to the platform location.
    """
    config_path = Path(path) if path is not None else get_config_path()
    if config_path is None:
        logger.warning("Could not determine agent config path for this platform")
        return ProviderConfig()
    if not config_path.exists():
        logger.info("Agent config file not found", path=str(config_path))
        return ProviderConfig()

    try:
        data = yamling.load_yaml_file(config_path)
    except (OSError, yamling.YAMLError):
        logger.exception("Failed to read agent config file", path=str(config_path))
        return ProviderConfig()

    if not isinstance(data, dict):
        logger.warning("Invalid agent config structure", path=str(config_path))
        return ProviderConfig()

    config = ProviderConfig(
        provider=_string_value(data, PROVIDER_KEY),
        model=_string_value(data, MODEL_KEY),
    )
    for key in config.missing_keys:
        logger.warning("Key not found or invalid in agent config", key=key)
    logger.info("Loaded agent config", provider=config.provider, model=config.model)
    return config
