import base64

import base58
import pytest

from wallet_link.authenticator import parse_body
from wallet_link.models import (
    UnverifiedWalletResponse,
    VerifiedWalletResponse,
    response_model_for,
)

from helpers import dumps, signed_payload


def test_model_selected_by_configuration():
    assert response_model_for(True) is VerifiedWalletResponse
    assert response_model_for(False) is UnverifiedWalletResponse


def test_plain_public_key():
    wallet = parse_body(b'{"publicKey":"Test1234"}', UnverifiedWalletResponse)
    assert wallet.public_key == "Test1234"
    assert wallet.display_key == "Test1234"


@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"{not json",
        b"[]",
        b'{"publicKey":""}',
        b'{"publicKey":123}',
        b'{"other":"x"}',
        b"\xff\xfe\x00",
    ],
)
def test_plain_malformed_bodies(body):
    assert parse_body(body, UnverifiedWalletResponse) is None


def test_field_name_variants():
    body = dumps({"PublicKey": "QUJD", "Message": "", "MsgSig": [1, 2]}).encode()
    wallet = parse_body(body, VerifiedWalletResponse)
    assert wallet.public_key == b"ABC"
    assert wallet.message == b""
    assert wallet.signature == b"\x01\x02"


def test_signed_int_arrays_verify(ed25519_key):
    wallet = parse_body(dumps(signed_payload(sk=ed25519_key)).encode(), VerifiedWalletResponse)
    assert wallet.is_verified is True


def test_signed_base64_fields_verify(ed25519_key):
    payload = signed_payload(b"sign me", sk=ed25519_key)
    as_b64 = {k: base64.b64encode(bytes(v)).decode() for k, v in payload.items()}
    wallet = parse_body(dumps(as_b64).encode(), VerifiedWalletResponse)
    assert wallet.message == b"sign me"
    assert wallet.is_verified is True


def test_signature_mismatch_not_verified():
    wallet = parse_body(dumps(signed_payload(tamper=True)).encode(), VerifiedWalletResponse)
    assert wallet.is_verified is False


def test_empty_arrays_parse_but_do_not_verify():
    body = b'{"publicKey":"VGVzdDEyMzQ=","message":[],"signature":[]}'
    wallet = parse_body(body, VerifiedWalletResponse)
    assert wallet.public_key == b"Test1234"
    assert wallet.is_verified is False


def test_is_verified_is_not_accepted_from_payload():
    payload = signed_payload(tamper=True)
    payload["isVerified"] = True
    payload["is_verified"] = True
    wallet = parse_body(dumps(payload).encode(), VerifiedWalletResponse)
    assert wallet.is_verified is False


@pytest.mark.parametrize(
    "field, value",
    [
        ("publicKey", [256]),
        ("publicKey", [-1]),
        ("publicKey", ["a"]),
        ("publicKey", [True]),
        ("message", "not base64!"),
        ("signature", {"bytes": 1}),
    ],
)
def test_signed_malformed_fields(field, value):
    payload = signed_payload()
    payload[field] = value
    assert parse_body(dumps(payload).encode(), VerifiedWalletResponse) is None


def test_signed_missing_field():
    payload = signed_payload()
    del payload["signature"]
    assert parse_body(dumps(payload).encode(), VerifiedWalletResponse) is None


def test_base58_display_key(ed25519_key):
    wallet = parse_body(dumps(signed_payload(sk=ed25519_key)).encode(), VerifiedWalletResponse)
    assert wallet.display_key == wallet.public_key_base58
    assert base58.b58decode(wallet.public_key_base58) == wallet.public_key
