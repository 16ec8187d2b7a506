"""
wallet_link/errors.py

Exceptions raised to callers of the callback listener.

Only a failure to bind the loopback port is raised. Everything that can go
wrong after the server is up (bad origin, bad body, bad signature, timeout)
resolves the session to None instead; see session.SessionOutcome.
"""


class WalletLinkError(Exception):
    """Base class for wallet_link errors."""


class BindFailure(WalletLinkError):
    """The listener socket could not be bound to the chosen loopback port."""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        self.reason = reason
        msg = f"could not bind callback listener to {host}:{port}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
