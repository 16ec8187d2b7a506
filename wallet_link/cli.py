#!/usr/bin/env python3
"""
cli.py — wallet-link command line.

Commands:
- link:          open the authenticator page and wait for the wallet response
- verify-audit:  check the hash chain of a wallet link audit log

Exit codes (link):
- 0: wallet response received (check verified=, for signed responses)
- 1: no wallet identity produced (bad origin/body, timeout, or a bad
     signature with --require-verified)
- 2: the loopback port could not be bound
"""

from __future__ import annotations

import argparse
import logging
import sys
import webbrowser
from pathlib import Path
from typing import List, Optional

from .audit import AuditLog, verify_log_chain
from .authenticator import WalletAuthenticator
from .config import settings
from .errors import BindFailure
from .link import build_authenticator_url, run_wallet_link
from .models import VerifiedWalletResponse

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


def _cmd_link(args: argparse.Namespace) -> int:
    auth_url = args.auth_url or settings.AUTH_URL
    timeout = settings.session_timeout if args.timeout is None else (args.timeout or None)
    audit = AuditLog(args.audit_dir) if args.audit_dir else None

    authenticator = WalletAuthenticator(
        use_logging=args.verbose or settings.USE_LOGGING,
        auth_url=auth_url,
        verify_signatures=not args.unverified,
        require_verified=True if args.require_verified else None,
        timeout=timeout,
        audit=audit,
    )

    def open_browser(url: str) -> bool:
        print(f"Authenticator: {url}", flush=True)
        if args.no_browser:
            return False
        return webbrowser.open(url)

    try:
        wallet = run_wallet_link(
            authenticator,
            session_token=args.token,
            open_browser=open_browser,
        )
    except BindFailure as e:
        print(f"FAIL: {e}", file=sys.stderr)
        return 2

    if wallet is None:
        outcome = authenticator.last_outcome.value if authenticator.last_outcome else "unknown"
        print("FAIL", file=sys.stderr)
        print(f"outcome={outcome}", file=sys.stderr)
        return 1

    print("OK")
    print(f"public_key={wallet.display_key}")
    if isinstance(wallet, VerifiedWalletResponse):
        print(f"verified={str(wallet.is_verified).lower()}")
    return 0


def _cmd_verify_audit(args: argparse.Namespace) -> int:
    if verify_log_chain(args.log):
        print("OK")
        return 0
    print("FAIL", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="wallet-link",
        description="Prove wallet ownership through a browser signing page and a loopback callback.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    link = sub.add_parser("link", help="Open the authenticator page and wait for the wallet.")
    link.add_argument(
        "--auth-url",
        default=None,
        help="Authenticator page; also the only accepted Origin (default: WALLET_LINK_AUTH_URL).",
    )
    link.add_argument(
        "--token",
        default=None,
        help="Optional session token appended to the authenticator URL.",
    )
    link.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the wallet (0 waits forever).",
    )
    link.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the authenticator URL instead of opening it.",
    )
    link.add_argument(
        "--unverified",
        action="store_true",
        help="Accept a bare publicKey payload without a signature.",
    )
    link.add_argument(
        "--require-verified",
        action="store_true",
        help="Treat a signed response whose signature does not verify as no wallet.",
    )
    link.add_argument(
        "--audit-dir",
        type=Path,
        default=None,
        help="Append the session outcome to a hash-chained audit log in this directory.",
    )
    link.add_argument("-v", "--verbose", action="store_true", help="Log listener events.")
    link.set_defaults(func=_cmd_link)

    verify = sub.add_parser("verify-audit", help="Verify an audit log hash chain.")
    verify.add_argument(
        "log",
        type=Path,
        help="Path to audit JSONL file (e.g. audit/wallet_link_audit.jsonl)",
    )
    verify.set_defaults(func=_cmd_verify_audit)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if getattr(args, "verbose", False):
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
