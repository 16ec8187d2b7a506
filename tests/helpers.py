import json

import httpx
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

AUTH_URL = "https://example.test"
EVIL_URL = "https://evil.test"
LISTENER_IP = "http://127.0.0.1"


def listener_url(port: int) -> str:
    return f"{LISTENER_IP}:{port}/"


def make_client() -> httpx.AsyncClient:
    # trust_env=False: never route loopback traffic through a proxy from the env
    return httpx.AsyncClient(trust_env=False, timeout=5.0)


def raw_public_key(sk: Ed25519PrivateKey) -> bytes:
    return sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def signed_payload(message: bytes = b"link wallet 42", *, sk=None, tamper=False) -> dict:
    """JSON-ready signed wallet payload (byte fields as int arrays)."""
    sk = sk or Ed25519PrivateKey.generate()
    sig = sk.sign(message)
    if tamper:
        sig = bytes([sig[0] ^ 0x01]) + sig[1:]
    return {
        "publicKey": list(raw_public_key(sk)),
        "message": list(message),
        "signature": list(sig),
    }


def dumps(payload) -> str:
    return json.dumps(payload, separators=(",", ":"))
