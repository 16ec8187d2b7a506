"""
wallet_link/identity.py

Wallet signature verification.

The browser page asks the wallet to sign a message and sends back:
  - publicKey  (raw 32-byte Ed25519 public key)
  - message    (the exact bytes that were signed)
  - signature  (raw 64-byte Ed25519 signature)

We verify the signature locally. The wallet address shown to users is the
Base58 encoding of the public key (Solana-style); it is a display form only
and carries no extra security meaning.

Verification never raises: wrong key length, wrong signature length or a
non-bytes argument all count as "not verified".
"""

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey


ED25519_PUBLIC_KEY_LEN = 32
ED25519_SIGNATURE_LEN = 64


def encode_base58(data: bytes) -> str:
    """Base58 (Bitcoin alphabet) text form of raw bytes."""
    return base58.b58encode(bytes(data)).decode("ascii")


def load_ed25519_public_key(raw: bytes) -> Ed25519PublicKey:
    """
    Load a raw Ed25519 public key.

    The key MUST be exactly 32 bytes, no PEM/DER wrapping.
    """
    if len(raw) != ED25519_PUBLIC_KEY_LEN:
        raise ValueError(f"Ed25519 public key must be {ED25519_PUBLIC_KEY_LEN} bytes")
    return Ed25519PublicKey.from_public_bytes(bytes(raw))


def verify_ed25519_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """
    Verify an Ed25519 signature over `message`.

    Returns:
      True  -> signature valid for public_key
      False -> invalid signature OR malformed input
    """
    if not isinstance(public_key, (bytes, bytearray)):
        return False
    if not isinstance(message, (bytes, bytearray)):
        return False
    if not isinstance(signature, (bytes, bytearray)):
        return False

    if len(signature) != ED25519_SIGNATURE_LEN:
        return False

    try:
        pk = load_ed25519_public_key(public_key)
        pk.verify(bytes(signature), bytes(message))
    except (InvalidSignature, ValueError, TypeError):
        return False

    return True
