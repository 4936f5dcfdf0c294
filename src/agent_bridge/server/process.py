"""Spawning and supervising the agent server process."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
import os
from pathlib import Path
import subprocess
import sys
from typing import TYPE_CHECKING

from psygnal import Signal

from agent_bridge.config import DEFAULT_FORWARDED_ENV_VARS, PORT_ENV_VAR, SECRET_ENV_VAR
from agent_bridge.exceptions import BinaryNotFoundError, ServerStartError
from agent_bridge.log import get_logger
from agent_bridge.server.binary import ensure_executable, executable_name
from agent_bridge.server.ports import LOOPBACK_HOST


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    import structlog


IS_WINDOWS = sys.platform == "win32"


@dataclass(frozen=True, slots=True)
class ServerEndpoint:
    """Address and credentials a client needs to talk to a running server."""

    port: int
    secret_key: str
    host: str = LOOPBACK_HOST

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(kw_only=True)
class SpawnConfig:
    """Everything needed to launch one agent server process."""

    binary_path: Path
    port: int
    secret_key: str
    working_dir: Path | None = None
    subcommand: str = "agent"
    env: Mapping[str, str] = field(default_factory=dict)
    """Explicit overrides, applied after everything else."""
    forwarded_env_vars: Sequence[str] = DEFAULT_FORWARDED_ENV_VARS
    port_env_var: str = PORT_ENV_VAR
    secret_env_var: str = SECRET_ENV_VAR


@dataclass(kw_only=True)
class ServerHandle:
    """A spawned server process. Owned by the supervisor that created it."""

    port: int
    working_dir: Path
    process: asyncio.subprocess.Process
    secret_key: str = field(repr=False)
    binary_path: Path
    stop_requested: bool = False
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)

    @property
    def endpoint(self) -> ServerEndpoint:
        return ServerEndpoint(port=self.port, secret_key=self.secret_key)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None


def detached_spawn_options() -> dict[str, object]:
    """Subprocess arguments that detach the server from our console and signals.

    On Windows the child gets no console (so no window) and its own process
    group. Elsewhere it leads a new session.
    """
    if IS_WINDOWS:
        flags = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        return {"creationflags": flags}
    return {"start_new_session": True}


def build_server_env(
    config: SpawnConfig,
    base_env: Mapping[str, str] | None = None,
) -> tuple[dict[str, str], list[str]]:
    """Assemble the environment for the server process.

    Args:
        config: Spawn configuration
        base_env: Parent environment, defaults to `os.environ`

    Returns:
        The environment and the names of forwarded credentials that were set
    """
    parent = dict(os.environ if base_env is None else base_env)
    home = str(Path.home())
    bin_dir = str(config.binary_path.parent)
    env = {
        **parent,
        "HOME": home,
        "USERPROFILE": home,
        "APPDATA": parent.get("APPDATA") or str(Path(home) / "AppData" / "Roaming"),
        "LOCALAPPDATA": parent.get("LOCALAPPDATA") or str(Path(home) / "AppData" / "Local"),
        "PATH": os.pathsep.join(p for p in (bin_dir, parent.get("PATH", "")) if p),
        config.port_env_var: str(config.port),
        config.secret_env_var: config.secret_key,
    }
    forwarded = []
    for name in config.forwarded_env_vars:
        if value := parent.get(name):
            env[name] = value
            forwarded.append(name)
    env.update(config.env)
    return env, forwarded


class ProcessSupervisor:
    """Starts and stops agent server processes.

    Process output is relayed line by line to the logger and an exit
    watcher emits `process_exited` once the process is gone.
    """

    process_exited = Signal(object, object)
    """Emitted with (handle, returncode) when a supervised process exits."""

    def __init__(
        self,
        *,
        stop_timeout: float = 5.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.stop_timeout = stop_timeout
        self.log = logger if logger is not None else get_logger(__name__)

    def _prepare_binary(self, binary_path: Path) -> Path:
        path = binary_path.with_name(executable_name(binary_path.name))
        if not path.is_file():
            raise BinaryNotFoundError(str(path))
        try:
            ensure_executable(path)
        except OSError as e:
            msg = f"Binary at {path} is not executable: {e}"
            raise ServerStartError(msg) from e
        return path

    async def start(self, config: SpawnConfig) -> ServerHandle:
        """Spawn the server binary.

        Raises:
            BinaryNotFoundError: If the binary does not exist
            ServerStartError: If the process could not be spawned
        """
        binary = self._prepare_binary(config.binary_path)
        working_dir = config.working_dir or Path.home()
        env, forwarded = build_server_env(config)
        if forwarded:
            self.log.info("Forwarding credentials to server", variables=forwarded)

        cmd = [str(binary), config.subcommand]
        self.log.info("Starting agent server", command=cmd, port=config.port, cwd=str(working_dir))
        platform_kwargs = detached_spawn_options()
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(working_dir),
                env=env,
                **platform_kwargs,  # type: ignore[arg-type]
            )
        except OSError as e:
            msg = f"Failed to start agent server {binary}: {e}"
            raise ServerStartError(msg) from e

        handle = ServerHandle(
            port=config.port,
            working_dir=working_dir,
            process=process,
            secret_key=config.secret_key,
            binary_path=binary,
        )
        relays = [
            asyncio.create_task(self._relay(process.stdout, error=False)),
            asyncio.create_task(self._relay(process.stderr, error=True)),
        ]
        watcher = asyncio.create_task(self._watch(handle, relays))
        handle._tasks = [*relays, watcher]
        self.log.info("Agent server spawned", pid=process.pid, port=config.port)
        return handle

    async def _relay(self, stream: asyncio.StreamReader | None, *, error: bool) -> None:
        if stream is None:
            return
        while line := await stream.readline():
            text = line.decode(errors="replace").rstrip()
            if not text:
                continue
            if error:
                self.log.error("Server stderr", line=text)
            else:
                self.log.info("Server stdout", line=text)

    async def _watch(self, handle: ServerHandle, relays: list[asyncio.Task[None]]) -> None:
        returncode = await handle.process.wait()
        await asyncio.gather(*relays, return_exceptions=True)
        if handle.stop_requested:
            self.log.info("Agent server stopped", pid=handle.pid, returncode=returncode)
        else:
            self.log.warning("Agent server exited", pid=handle.pid, returncode=returncode)
        self.process_exited.emit(handle, returncode)

    async def _kill(self, handle: ServerHandle) -> None:
        process = handle.process
        if IS_WINDOWS:
            killer = await asyncio.create_subprocess_exec(
                "taskkill",
                "/pid",
                str(process.pid),
                "/T",
                "/F",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
            await process.wait()
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except TimeoutError:
            self.log.warning("Server did not exit in time, killing", pid=process.pid)
            process.kill()
            await process.wait()

    async def stop(self, handle: ServerHandle) -> None:
        """Terminate the server process. Calling it again is a no-op."""
        if handle.stop_requested:
            return
        handle.stop_requested = True
        if handle.is_running:
            self.log.info("Stopping agent server", pid=handle.pid)
            with contextlib.suppress(ProcessLookupError):
                await self._kill(handle)
        watcher = handle._tasks[-1] if handle._tasks else None
        if watcher is not None:
            try:
                await asyncio.wait_for(asyncio.shield(watcher), timeout=self.stop_timeout)
            except TimeoutError:
                self.log.warning("Output relay did not finish, cancelling", pid=handle.pid)
                for task in handle._tasks:
                    task.cancel()
