"""
wallet_link — prove wallet ownership via a browser signing page and a
one-shot loopback HTTP callback.
"""

from .authenticator import WalletAuthenticator, parse_body, validate_origin
from .errors import BindFailure, WalletLinkError
from .link import authenticate_wallet, build_authenticator_url, run_wallet_link
from .models import UnverifiedWalletResponse, VerifiedWalletResponse, WalletResponse
from .ports import allocate_free_port
from .session import SessionOutcome, SessionState

__version__ = "0.1.0"

__all__ = [
    "BindFailure",
    "SessionOutcome",
    "SessionState",
    "UnverifiedWalletResponse",
    "VerifiedWalletResponse",
    "WalletAuthenticator",
    "WalletLinkError",
    "WalletResponse",
    "allocate_free_port",
    "authenticate_wallet",
    "build_authenticator_url",
    "parse_body",
    "run_wallet_link",
    "validate_origin",
]
