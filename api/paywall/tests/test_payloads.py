"""
Tests for the X-PAYMENT header codec
"""

import base64
import json

import pytest

from api.paywall.errors import PaymentErrorKind, PaymentHeaderError
from api.paywall.payloads import (
    PaymentRequirements,
    decode_payment_header,
    try_decode_payment_header,
    encode_payment_response,
)
from conftest import PAYER, RECIPIENT, evm_payment, encode_header

SOLANA_TX = "AQABAgMEBQYHCAkKCwwNDg8Q"


def test_decode_base64_evm_payload():
    payment = decode_payment_header(encode_header(evm_payment()))
    assert payment.scheme == "exact"
    assert payment.network == "base-mainnet"
    assert payment.family == "evm"
    assert payment.signer() == PAYER


def test_decode_plain_json_payload():
    payment = decode_payment_header(json.dumps(evm_payment()))
    assert payment.signer() == PAYER


def test_decode_unpadded_base64():
    header = encode_header(evm_payment()).rstrip("=")
    assert decode_payment_header(header).signer() == PAYER


def test_signer_is_normalized():
    payment = decode_payment_header(encode_header(evm_payment(payer=PAYER.upper().replace("0X", "0x"))))
    assert payment.signer() == PAYER


def test_decode_svm_payload():
    header = encode_header({
        "x402Version": 1,
        "scheme": "exact",
        "network": "solana-mainnet",
        "payload": {"transaction": SOLANA_TX},
    })
    payment = decode_payment_header(header)
    assert payment.family == "svm"
    assert payment.svm().transaction == SOLANA_TX
    assert payment.signer() is None


@pytest.mark.parametrize("header", ["", "   ", "%%%not-base64%%%", base64.b64encode(b"not json").decode()])
def test_undecodable_headers_are_malformed(header):
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(header)
    assert exc_info.value.kind == PaymentErrorKind.MALFORMED_HEADER


def test_non_object_json_is_malformed():
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(base64.b64encode(b"[1, 2, 3]").decode())
    assert exc_info.value.kind == PaymentErrorKind.MALFORMED_HEADER


def test_deeply_nested_json_is_malformed():
    header = base64.b64encode(b"[" * 5000).decode()
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(header)
    assert exc_info.value.kind == PaymentErrorKind.MALFORMED_HEADER
    assert try_decode_payment_header(header) is None
    assert try_decode_payment_header("{" + '"a":[' * 5000) is None


def test_unsupported_scheme():
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(encode_header(evm_payment(scheme="upto")))
    assert exc_info.value.kind == PaymentErrorKind.UNSUPPORTED_SCHEME


def test_evm_payload_without_signature_is_malformed():
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(encode_header(evm_payment(signature="")))
    assert exc_info.value.kind == PaymentErrorKind.MALFORMED_HEADER


def test_evm_payload_with_bad_signer_is_invalid_payer():
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(encode_header(evm_payment(payer="0x123")))
    assert exc_info.value.kind == PaymentErrorKind.INVALID_PAYER


def test_svm_payload_without_transaction_is_malformed():
    header = encode_header({
        "x402Version": 1,
        "scheme": "exact",
        "network": "solana-devnet",
        "payload": {"transaction": ""},
    })
    with pytest.raises(PaymentHeaderError) as exc_info:
        decode_payment_header(header)
    assert exc_info.value.kind == PaymentErrorKind.MALFORMED_HEADER


def test_try_decode_returns_none_on_failure():
    assert try_decode_payment_header(None) is None
    assert try_decode_payment_header("garbage!!") is None
    assert try_decode_payment_header(encode_header(evm_payment())) is not None


def test_encode_payment_response_is_base64_json():
    encoded = encode_payment_response({"success": True, "transaction": "0xabc"})
    assert json.loads(base64.b64decode(encoded)) == {"success": True, "transaction": "0xabc"}


def test_requirements_wire_form():
    requirements = PaymentRequirements(
        network="base-mainnet",
        amount="2500000",
        resource="https://example.com/articles/premium",
        description="Premium article",
        pay_to=RECIPIENT,
        asset="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        extra={"name": "USD Coin", "version": "2"},
        id="42",
    )
    data = requirements.to_dict()
    assert data["payTo"] == RECIPIENT
    assert data["amount"] == data["maxAmountRequired"] == "2500000"
    assert data["timeout"] == data["maxTimeoutSeconds"] == 300
    assert data["scheme"] == "exact"
    assert data["mimeType"] == "text/html"
    assert data["extra"] == {"name": "USD Coin", "version": "2"}
