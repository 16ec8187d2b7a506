"""
wallet_link/link.py

Caller-side glue: open the authenticator page in the system browser once the
listener knows its port, then wait for the wallet response.

The page is opened as

    <authURL>?port=<port>[&token=<session token>]

The session token, when present, comes from an external identity service and
is passed through untouched; this package never mints or checks it.
"""

import asyncio
import logging
import webbrowser
from typing import Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from .authenticator import WalletAuthenticator
from .models import WalletResponse

_log = logging.getLogger(__name__)


def build_authenticator_url(
    auth_url: str,
    port: int,
    session_token: Optional[str] = None,
) -> str:
    params = {"port": str(port)}
    if session_token:
        params["token"] = session_token

    parts = urlsplit(auth_url)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


async def authenticate_wallet(
    authenticator: Optional[WalletAuthenticator] = None,
    *,
    session_token: Optional[str] = None,
    open_browser: Callable[[str], object] = webbrowser.open,
) -> Optional[WalletResponse]:
    """
    Run one wallet link: listen, open the browser, return the response.

    Returns None when no valid wallet response arrived (or a session is
    already running on `authenticator`). BindFailure propagates.
    """
    authenticator = authenticator or WalletAuthenticator()

    def open_authenticator(port: int) -> None:
        url = build_authenticator_url(authenticator.auth_url, port, session_token)
        open_browser(url)
        if authenticator.use_logging:
            _log.info("Authenticator opened: %s", url)

    return await authenticator.listen_for_wallet_response(open_authenticator)


def run_wallet_link(
    authenticator: Optional[WalletAuthenticator] = None,
    **kwargs,
) -> Optional[WalletResponse]:
    """Blocking wrapper for callers without an event loop."""
    return asyncio.run(authenticate_wallet(authenticator, **kwargs))
