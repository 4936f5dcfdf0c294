"""Lifecycle management of the local agent server."""

from __future__ import annotations

import asyncio
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Self

import httpx
from psygnal import Signal

from agent_bridge.client.api_client import AgentApiClient
from agent_bridge.config import (
    PROVIDER_KEY,
    ProviderConfig,
    ServerConfig,
    get_config_path,
    read_provider_config,
)
from agent_bridge.exceptions import AgentBridgeError, MissingProviderConfigError, ServerStartError
from agent_bridge.log import get_logger
from agent_bridge.server.binary import find_binary
from agent_bridge.server.ports import find_available_port
from agent_bridge.server.process import ProcessSupervisor, ServerHandle, SpawnConfig
from agent_bridge.server.readiness import wait_until_ready
from agent_bridge.server.secrets import generate_secret_key


if TYPE_CHECKING:
    import os
    from types import TracebackType

    import structlog


class ServerStatus(StrEnum):
    """Lifecycle state of the agent server."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class ServerManager:
    """Starts, configures and stops one agent server.

    The status moves `stopped -> starting -> running`, or ends in `error`
    when starting fails. Only `stop()` leaves the error state. An unexpected
    process exit moves a running server back to `stopped`; there is no
    automatic restart.

    Example:
        async with ServerManager(ServerConfig(provider="openai", model="gpt-4o")) as manager:
            client = manager.get_api_client()
    """

    status_changed = Signal(ServerStatus)
    """Emitted on every status transition."""

    server_exited = Signal(object)
    """Emitted with the return code when a running server exits unexpectedly."""

    error_occurred = Signal(Exception)
    """Emitted with the exception that made starting fail."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        provider_config_path: str | os.PathLike[str] | None = None,
        supervisor: ProcessSupervisor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """Initialize the manager.

        Args:
            config: Server settings
            provider_config_path: Agent config file to read provider and model from
            supervisor: Process supervisor, one is created when omitted
            transport: httpx transport for the readiness probe and API client
            logger: Logger to use, defaults to the module logger
        """
        self.config = config or ServerConfig()
        self.log = logger if logger is not None else get_logger(__name__)
        self._provider_config_path = provider_config_path
        self._supervisor = supervisor or ProcessSupervisor(
            stop_timeout=self.config.stop_timeout,
            logger=self.log,
        )
        self._supervisor.process_exited.connect(self._on_process_exited)
        self._transport = transport
        self._lock = asyncio.Lock()
        self._status = ServerStatus.STOPPED
        self._handle: ServerHandle | None = None
        self._client: AgentApiClient | None = None
        self._provider_config: ProviderConfig | None = None
        self._last_error: Exception | None = None
        self._background: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @property
    def status(self) -> ServerStatus:
        return self._status

    @property
    def last_error(self) -> Exception | None:
        """The error that caused the last failed start."""
        return self._last_error

    @property
    def port(self) -> int | None:
        return self._handle.port if self._handle else None

    @property
    def server_url(self) -> str | None:
        return self._handle.endpoint.base_url if self._handle else None

    @property
    def secret_key(self) -> str | None:
        return self._handle.secret_key if self._handle else None

    def is_ready(self) -> bool:
        return self._status is ServerStatus.RUNNING and self._client is not None

    def get_api_client(self) -> AgentApiClient | None:
        """Client bound to the running server, None unless running."""
        return self._client if self.is_ready() else None

    def _set_status(self, status: ServerStatus) -> None:
        self._status = status
        self.log.info("Server status changed", status=str(status))
        self.status_changed.emit(status)

    def _resolve_provider_config(self) -> ProviderConfig:
        if self._provider_config is not None:
            return self._provider_config
        if self.config.provider and self.config.model:
            resolved = ProviderConfig(provider=self.config.provider, model=self.config.model)
        else:
            from_file = read_provider_config(self._provider_config_path)
            resolved = ProviderConfig(
                provider=self.config.provider or from_file.provider,
                model=self.config.model or from_file.model,
            )
        if missing := resolved.missing_keys:
            path = self._provider_config_path or get_config_path()
            raise MissingProviderConfigError(missing, str(path) if path else None)
        self._provider_config = resolved
        return resolved

    def _resolve_binary(self) -> Path:
        if self.config.binary_path:
            return Path(self.config.binary_path).expanduser()
        return find_binary(self.config.binary_name)

    async def start(self) -> bool:
        """Start the server and configure the agent.

        Returns:
            True if the server is running afterwards
        """
        async with self._lock:
            if self._status is not ServerStatus.STOPPED:
                self.log.info("Start ignored", status=str(self._status))
                return self._status is ServerStatus.RUNNING
            self._last_error = None
            self._set_status(ServerStatus.STARTING)
            try:
                await self._launch()
            except (AgentBridgeError, httpx.HTTPError, OSError) as e:
                self.log.exception("Failed to start agent server")
                await self._teardown()
                self._last_error = e
                self._set_status(ServerStatus.ERROR)
                self.error_occurred.emit(e)
                return False
            except BaseException:
                await self._teardown()
                self._set_status(ServerStatus.STOPPED)
                raise
            self._set_status(ServerStatus.RUNNING)
            self.log.info("Agent server is running", port=self.port)
            return True

    async def _launch(self) -> None:
        provider = self._resolve_provider_config()
        binary = self._resolve_binary()
        secret_key = self.config.secret_key or generate_secret_key()
        port = find_available_port()
        self.log.debug("Using secret key", prefix=secret_key[:4], length=len(secret_key))
        spawn_config = SpawnConfig(
            binary_path=binary,
            port=port,
            secret_key=secret_key,
            working_dir=self.config.resolve_working_dir(),
            subcommand=self.config.subcommand,
            env=self.config.env,
            forwarded_env_vars=self.config.forwarded_env_vars,
            port_env_var=self.config.port_env_var,
            secret_env_var=self.config.secret_env_var,
        )
        self._handle = await self._supervisor.start(spawn_config)
        ready = await wait_until_ready(
            port,
            max_attempts=self.config.readiness_attempts,
            interval=self.config.readiness_interval,
            transport=self._transport,
            log=self.log,
        )
        if not ready:
            msg = f"Agent server did not become ready on port {port}"
            raise ServerStartError(msg)
        if not self._handle.is_running:
            msg = f"Agent server exited during startup with code {self._handle.returncode}"
            raise ServerStartError(msg)

        client = AgentApiClient.from_endpoint(
            self._handle.endpoint,
            transport=self._transport,
            log_sensitive_requests=self.config.log_sensitive_requests,
            logger=self.log,
        )
        try:
            await self._configure_agent(client, provider)
        except BaseException:
            await client.aclose()
            raise
        self._client = client

    async def _configure_agent(self, client: AgentApiClient, provider: ProviderConfig) -> None:
        if not provider.provider:
            raise MissingProviderConfigError([PROVIDER_KEY])
        versions = await client.get_agent_versions()
        for extension in self.config.extensions:
            self.log.info("Adding extension to agent", extension=extension)
            await client.add_extension(extension)
        await client.create_agent(provider.provider, provider.model, versions.default_version)
        await client.set_agent_prompt(self.config.system_prompt)
        self.log.info("Agent configuration complete")

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        handle, self._handle = self._handle, None
        if client is not None:
            await client.aclose()
        if handle is not None:
            await self._supervisor.stop(handle)

    async def stop(self) -> None:
        """Stop the server. Also resets the error state and cached provider config."""
        async with self._lock:
            await self._teardown()
            self._provider_config = None
            if self._status is not ServerStatus.STOPPED:
                self._set_status(ServerStatus.STOPPED)

    async def restart(self) -> bool:
        await self.stop()
        return await self.start()

    def _on_process_exited(self, handle: ServerHandle, returncode: int | None) -> None:
        if handle is not self._handle or self._status is not ServerStatus.RUNNING:
            return
        self.log.warning("Agent server exited unexpectedly", returncode=returncode)
        client, self._client = self._client, None
        self._handle = None
        self._provider_config = None
        if client is not None:
            task = asyncio.get_running_loop().create_task(client.aclose())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        self._set_status(ServerStatus.STOPPED)
        self.server_exited.emit(returncode)
