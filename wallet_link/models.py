import base64
from typing import Annotated, Any, Type, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from .identity import encode_base58, verify_ed25519_signature


def _coerce_bytes(value: Any) -> bytes:
    """
    Accept the two encodings browsers / JSON serializers use for byte arrays:
      - a list of ints 0..255 (JSON.stringify(Array.from(u8)))
      - a standard Base64 string (how most JSON libraries write byte[])
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        if not all(isinstance(b, int) and not isinstance(b, bool) for b in value):
            raise ValueError("byte array must contain integers")
        # bytes() raises ValueError for anything outside 0..255
        return bytes(value)
    if isinstance(value, str):
        s = value.strip()
        s += "=" * (-len(s) % 4)
        return base64.b64decode(s, validate=True)
    raise ValueError("expected a byte array or a base64 string")


WireBytes = Annotated[bytes, BeforeValidator(_coerce_bytes)]


class UnverifiedWalletResponse(BaseModel):
    """Callback payload that only claims a wallet address."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    public_key: str = Field(
        validation_alias=AliasChoices("publicKey", "PublicKey", "public_key"),
        min_length=1,
    )

    @property
    def display_key(self) -> str:
        return self.public_key


class VerifiedWalletResponse(BaseModel):
    """
    Callback payload carrying a wallet signature over `message`.

    `is_verified` is computed on every access and is never part of the
    payload; a client cannot claim it.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    public_key: WireBytes = Field(
        validation_alias=AliasChoices("publicKey", "PublicKey", "public_key"),
    )
    message: WireBytes = Field(
        validation_alias=AliasChoices("message", "Message"),
    )
    signature: WireBytes = Field(
        validation_alias=AliasChoices("signature", "msgSig", "MsgSig"),
    )

    @property
    def public_key_base58(self) -> str:
        return encode_base58(self.public_key)

    @property
    def is_verified(self) -> bool:
        return verify_ed25519_signature(self.public_key, self.message, self.signature)

    @property
    def display_key(self) -> str:
        return self.public_key_base58


WalletResponse = Union[UnverifiedWalletResponse, VerifiedWalletResponse]


def response_model_for(verify_signatures: bool) -> Type[BaseModel]:
    return VerifiedWalletResponse if verify_signatures else UnverifiedWalletResponse
