from __future__ import annotations

import stat
import sys
from typing import TYPE_CHECKING

import pytest

from agent_bridge.config import ServerConfig


if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


FAKE_SERVER = '''
import json
import os
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

PORT = int(os.environ["GOOSE_PORT"])
SECRET = os.environ["GOOSE_SERVER__SECRET_KEY"]

GET_ROUTES = {
    "/status": "ok",
    "/agent/versions": {"available_versions": ["truncate"], "default_version": "truncate"},
    "/sessions": {"sessions": []},
}
POST_ROUTES = {"/extensions/add", "/agent", "/agent/prompt"}


class Handler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _send(self, status, payload):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _authorized(self):
        if self.headers.get("X-Secret-Key") == SECRET:
            return True
        self._send(401, {"error": "unauthorized"})
        return False

    def do_GET(self):
        if self.path == "/status":
            self._send(200, GET_ROUTES["/status"])
            return
        if not self._authorized():
            return
        if self.path in GET_ROUTES:
            self._send(200, GET_ROUTES[self.path])
        else:
            self._send(404, {"error": "not found"})

    def do_POST(self):
        length = int(self.headers.get("Content-Length") or 0)
        self.rfile.read(length)
        if not self._authorized():
            return
        if self.path in POST_ROUTES:
            self._send(200, {})
        else:
            self._send(404, {"error": "not found"})


ThreadingHTTPServer(("127.0.0.1", PORT), Handler).serve_forever()
'''


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_executable(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a script to the temp dir and mark it executable."""

    def make(name: str, content: str) -> Path:
        return write_executable(tmp_path / name, content)

    return make


@pytest.fixture
def fake_server_binary(tmp_path: Path) -> Path:
    """Executable that serves the agent server endpoints needed for startup."""
    return write_executable(tmp_path / "fake-agent", f"#!{sys.executable}\n{FAKE_SERVER}")


@pytest.fixture
def sleeping_binary(tmp_path: Path) -> Path:
    """Executable that runs until it is terminated."""
    return write_executable(tmp_path / "sleeper", "#!/bin/sh\nexec sleep 60\n")


@pytest.fixture
def server_config(fake_server_binary: Path, tmp_path: Path) -> ServerConfig:
    return ServerConfig(
        binary_path=str(fake_server_binary),
        working_dir=str(tmp_path),
        provider="openai",
        model="gpt-4o",
        readiness_attempts=200,
        readiness_interval=0.05,
        forwarded_env_vars=[],
    )
