"""
wallet_link/ports.py

Loopback port allocation for the callback listener.

allocate_free_port() asks the OS for an ephemeral port and gives it back
immediately. Another process may grab the port before the listener binds it;
that window is small and accepted. bind_listener_socket() then performs the
real bind so that a lost race surfaces as an OSError in the caller.
"""

import socket

LOOPBACK_HOST = "127.0.0.1"


def _family_for(host: str) -> int:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def allocate_free_port(host: str = LOOPBACK_HOST) -> int:
    """Return a TCP port that was free on `host` at the time of the call."""
    with socket.socket(_family_for(host), socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def bind_listener_socket(host: str, port: int) -> socket.socket:
    """
    Bind (but do not listen on) a TCP socket for the callback server.

    The caller owns the returned socket and must close it. Raises OSError
    if the port is taken.
    """
    sock = socket.socket(_family_for(host), socket.SOCK_STREAM)
    try:
        # Same option uvicorn sets on its own sockets; does not allow stealing
        # a port that another socket is actively listening on.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock
