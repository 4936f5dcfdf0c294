"""Free port discovery on the loopback interface."""

from __future__ import annotations

import socket


LOOPBACK_HOST = "127.0.0.1"


def find_available_port(host: str = LOOPBACK_HOST) -> int:
    """Return a port the OS reports as free on the given host.

    The socket is closed before returning, so another process may grab the
    port before the server binds it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        sock.listen(1)
        return sock.getsockname()[1]
