"""
wallet_link/audit.py

Optional session log for wallet links, one JSON object per line.

Every line carries `prev_hash` and `hash`; `hash` is SHA3-256 over the
previous hash (raw 32 bytes, all zeros for the first line) followed by the
line's other fields as sorted, compact JSON. Editing, dropping or
reordering a line breaks the chain from that point on, which
`verify_log_chain` (and `wallet-link verify-audit`) detects.

A link call itself only answers "wallet or None"; the outcome recorded
here says why. Message and signature bytes are reduced to length and
digest before they reach the file.
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

# Linux/macOS file lock
import fcntl


GENESIS_HASH = "0" * 64  # 32 bytes hex

LOG_NAME = "wallet_link_audit.jsonl"
STATE_NAME = "wallet_link_audit.state"
LOCK_NAME = "wallet_link_audit.lock"


_CHAIN_FIELDS = ("prev_hash", "hash")


def _encode_record(record: Dict[str, Any]) -> bytes:
    # sorted keys, no whitespace: the same event always hashes the same
    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _digest(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def _chain_hash(prev_hash: str, content: Dict[str, Any]) -> str:
    return _digest(bytes.fromhex(prev_hash) + _encode_record(content))


def build_event(
    *,
    outcome: str,
    port: int,
    origin: Optional[str] = None,
    preflights: int = 0,
    public_key: Optional[str] = None,
    message: Optional[bytes] = None,
    signature: Optional[bytes] = None,
    duration_s: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Describe one finished session for the audit log.

    Only lengths and digests of `message` and `signature` are kept.
    """
    out: Dict[str, Any] = {
        "ts": int(time.time()),
        "event": "wallet_link.session",
        "outcome": outcome,
        "port": port,
        "preflights": preflights,
    }

    if origin:
        out["origin"] = origin[:200]
    if public_key:
        out["public_key"] = public_key
    if duration_s is not None:
        out["duration_ms"] = int(duration_s * 1000)

    if message is not None:
        out["message_len"] = len(message)
        out["message_sha3_256"] = _digest(message)

    if signature is not None:
        out["signature_len"] = len(signature)
        out["signature_sha3_256"] = _digest(signature)

    return out


class AuditLog:
    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.log_path = self.directory / LOG_NAME
        self.state_path = self.directory / STATE_NAME
        self.lock_path = self.directory / LOCK_NAME

    def _last_hash(self) -> str:
        # caller holds the lock; an unreadable state file restarts at genesis
        if not self.state_path.exists():
            return GENESIS_HASH
        tip = self.state_path.read_text(encoding="utf-8").strip().lower()
        if len(tip) != len(GENESIS_HASH):
            return GENESIS_HASH
        try:
            bytes.fromhex(tip)
        except ValueError:
            return GENESIS_HASH
        return tip

    def append(self, event: Dict[str, Any]) -> str:
        """
        Chain `event` onto the log and return its hash.

        Chain fields supplied by the caller are dropped; the log alone
        decides `prev_hash` and `hash`.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        content = {k: v for k, v in event.items() if k not in _CHAIN_FIELDS}

        with open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._last_hash()
                event_hash = _chain_hash(prev_hash, content)
                line = _encode_record({**content, "prev_hash": prev_hash, "hash": event_hash})

                with open(self.log_path, "ab") as f:
                    f.write(line + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(event_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return event_hash

    def verify(self) -> bool:
        return verify_log_chain(self.log_path)


def verify_log_chain(path: Path) -> bool:
    """
    Replay a wallet link audit log from the genesis hash.

    False as soon as one line is not a JSON object, points at the wrong
    predecessor, or carries a hash its content does not produce. A log that
    was never written counts as intact.
    """
    path = Path(path)
    if not path.exists():
        return True

    expected_prev = GENESIS_HASH
    try:
        with open(path, "rb") as f:
            for line in filter(None, (raw.strip() for raw in f)):
                record = json.loads(line.decode("utf-8"))
                if not isinstance(record, dict):
                    return False

                content = {k: v for k, v in record.items() if k not in _CHAIN_FIELDS}
                if record.get("prev_hash") != expected_prev:
                    return False
                if record.get("hash") != _chain_hash(expected_prev, content):
                    return False
                expected_prev = record["hash"]
    except (ValueError, UnicodeDecodeError):
        return False

    return True
