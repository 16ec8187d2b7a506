import ipaddress
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # page that opens the wallet and POSTs back; also the only accepted Origin
    AUTH_URL: str = "http://localhost:3000"

    # diagnostic log lines only, never changes behavior
    USE_LOGGING: bool = False

    LISTEN_HOST: str = "127.0.0.1"

    # milliseconds the browser may cache the preflight answer
    PREFLIGHT_MAX_AGE_MS: int = 120000

    # <= 0 waits forever
    SESSION_TIMEOUT_SECONDS: float = 300.0

    # signed payload (publicKey/message/signature) vs plain publicKey
    VERIFY_SIGNATURES: bool = True
    # opt-in: a signed response that fails verification resolves to None
    REQUIRE_VERIFIED: bool = False

    AUDIT_ENABLED: bool = False
    AUDIT_DIR: Path = Path("audit")

    model_config = SettingsConfigDict(env_prefix="WALLET_LINK_", env_file=".env")

    @field_validator("AUTH_URL")
    @classmethod
    def check_auth_url(cls, v: str) -> str:
        """
        AUTH_URL must be an absolute http(s) URL.

        Unlike an origin allowlist we do NOT normalize it (case, trailing
        slash, default port): the Origin header is compared against this
        exact string, so what is configured is what must arrive.
        """
        v = (v or "").strip()
        p = urlparse(v)

        if p.scheme not in ("http", "https"):
            raise ValueError("AUTH_URL must start with http:// or https://")

        if not p.hostname:
            raise ValueError("AUTH_URL must include a hostname")

        return v

    @field_validator("LISTEN_HOST")
    @classmethod
    def check_loopback(cls, v: str) -> str:
        v = (v or "").strip()
        try:
            addr = ipaddress.ip_address(v)
        except ValueError:
            raise ValueError("LISTEN_HOST must be an IP literal (e.g. 127.0.0.1)")
        if not addr.is_loopback:
            raise ValueError("LISTEN_HOST must be a loopback address")
        return v

    @field_validator("PREFLIGHT_MAX_AGE_MS")
    @classmethod
    def check_max_age(cls, v: int) -> int:
        if v < 0:
            raise ValueError("PREFLIGHT_MAX_AGE_MS cannot be negative")
        return v

    @property
    def session_timeout(self) -> Optional[float]:
        if self.SESSION_TIMEOUT_SECONDS <= 0:
            return None
        return self.SESSION_TIMEOUT_SECONDS


# Fail fast at import time on a bad environment rather than on the first login.
settings = Settings()
