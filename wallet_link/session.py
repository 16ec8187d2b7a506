# wallet_link/session.py
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"


class SessionOutcome(str, Enum):
    # non-null results
    ACCEPTED = "accepted"
    VERIFIED = "verified"

    # resolved to None
    ORIGIN_MISMATCH = "origin_mismatch"
    MALFORMED_PAYLOAD = "malformed_payload"
    VERIFICATION_FAILED = "verification_failed"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"


@dataclass
class CallbackSession:
    port: int
    result: asyncio.Future
    state: SessionState = SessionState.IDLE
    outcome: Optional[SessionOutcome] = None
    preflights: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def is_listening(self) -> bool:
        return self.state == SessionState.LISTENING

    def claim(self) -> bool:
        """
        Mark the session resolved before the POST body is read.

        Returns False if another POST already claimed it. Must be called on
        the event loop thread without awaiting in between check and set.
        """
        if self.state != SessionState.LISTENING:
            return False
        self.state = SessionState.RESOLVED
        return True

    def resolve(self, outcome: SessionOutcome, value: Any = None) -> None:
        self.state = SessionState.RESOLVED
        self.outcome = outcome
        if not self.result.done():
            self.result.set_result(value)

    @property
    def age_seconds(self) -> float:
        return time.monotonic() - self.started_at
