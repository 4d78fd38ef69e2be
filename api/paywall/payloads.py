"""
x402 wire models and X-PAYMENT header codec

Only the "exact" scheme is accepted. A payload is checked structurally
for its chain family before any trust is extended to it.
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .addresses import network_family, normalize_address, SVM_FAMILY
from .errors import PaymentErrorKind, PaymentHeaderError

logger = logging.getLogger(__name__)

X402_VERSION = 1
SUPPORTED_SCHEME = 'exact'

X_PAYMENT_HEADER = 'X-PAYMENT'
X_PAYMENT_RESPONSE_HEADER = 'X-PAYMENT-RESPONSE'


class PaymentRequirements(BaseModel):
    """Payment terms advertised in a 402 response"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    scheme: str = SUPPORTED_SCHEME
    network: str
    amount: str
    resource: str
    description: str
    pay_to: str = Field(alias='payTo')
    asset: str
    timeout: int = 300
    mime_type: str = Field(default='text/html', alias='mimeType')
    extra: Optional[Dict[str, str]] = None
    id: str

    def to_dict(self) -> Dict[str, Any]:
        """Wire form, including the x402 v1 field names clients expect"""
        data = self.model_dump(by_alias=True, exclude_none=True)
        data['maxAmountRequired'] = self.amount
        data['maxTimeoutSeconds'] = self.timeout
        return data


class EvmAuthorization(BaseModel):
    """EIP-3009 transferWithAuthorization parameters"""
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(default=None, alias='from')
    to: Optional[str] = None
    value: Optional[str] = None
    valid_after: Optional[str] = Field(default=None, alias='validAfter')
    valid_before: Optional[str] = Field(default=None, alias='validBefore')
    nonce: Optional[str] = None

    @field_validator('value', 'valid_after', 'valid_before', mode='before')
    @classmethod
    def _stringify_numbers(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ExactEvmPayload(BaseModel):
    signature: str = Field(min_length=1)
    authorization: EvmAuthorization


class ExactSvmPayload(BaseModel):
    transaction: str = Field(min_length=1)


class PaymentPayload(BaseModel):
    """Client-submitted proof of payment intent (decoded X-PAYMENT)"""
    model_config = ConfigDict(populate_by_name=True)

    x402_version: int = Field(default=X402_VERSION, alias='x402Version')
    scheme: str
    network: str
    payload: Dict[str, Any]

    @property
    def family(self) -> str:
        return network_family(self.network)

    def evm(self) -> ExactEvmPayload:
        return ExactEvmPayload.model_validate(self.payload)

    def svm(self) -> ExactSvmPayload:
        return ExactSvmPayload.model_validate(self.payload)

    def raw_signer(self) -> Optional[str]:
        """EVM authorization `from` exactly as presented"""
        if self.family == SVM_FAMILY:
            return None
        authorization = self.payload.get('authorization') or {}
        if not isinstance(authorization, dict):
            return None
        value = authorization.get('from')
        return value if isinstance(value, str) else None

    def signer(self) -> Optional[str]:
        """Normalized EVM authorization signer, if any"""
        return normalize_address(self.raw_signer(), self.network)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _decode_envelope(header_value: str) -> Union[Dict[str, Any], Any]:
    value = header_value.strip()
    if value.startswith('{'):
        return json.loads(value)

    padded = value + '=' * (-len(value) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        raw = base64.urlsafe_b64decode(padded)
    return json.loads(raw.decode('utf-8'))


def decode_payment_header(header_value: str) -> PaymentPayload:
    """
    Decode and structurally validate an X-PAYMENT header

    Raises:
        PaymentHeaderError: with kind MALFORMED_HEADER, UNSUPPORTED_SCHEME or
            INVALID_PAYER
    """
    if not header_value or not header_value.strip():
        raise PaymentHeaderError(PaymentErrorKind.MALFORMED_HEADER, "Empty payment header")

    try:
        data = _decode_envelope(header_value)
    except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError) as e:
        raise PaymentHeaderError(PaymentErrorKind.MALFORMED_HEADER, f"Undecodable payment header: {e}")

    if not isinstance(data, dict):
        raise PaymentHeaderError(PaymentErrorKind.MALFORMED_HEADER, "Payment header is not a JSON object")

    try:
        payment = PaymentPayload.model_validate(data)
    except ValidationError as e:
        raise PaymentHeaderError(PaymentErrorKind.MALFORMED_HEADER, f"Invalid payment payload: {e.error_count()} errors")

    if payment.scheme != SUPPORTED_SCHEME:
        raise PaymentHeaderError(
            PaymentErrorKind.UNSUPPORTED_SCHEME,
            f"Unsupported payment scheme: {payment.scheme}"
        )

    if payment.family == SVM_FAMILY:
        try:
            payment.svm()
        except ValidationError:
            raise PaymentHeaderError(PaymentErrorKind.MALFORMED_HEADER, "SVM payload requires a transaction")
        return payment

    try:
        payment.evm()
    except ValidationError:
        raise PaymentHeaderError(
            PaymentErrorKind.MALFORMED_HEADER,
            "EVM payload requires a signature and an authorization"
        )

    if payment.signer() is None:
        raise PaymentHeaderError(PaymentErrorKind.INVALID_PAYER, "Authorization signer is not a valid address")

    return payment


def try_decode_payment_header(header_value: Optional[str]) -> Optional[PaymentPayload]:
    """Decode X-PAYMENT, logging and returning None on any failure"""
    if not header_value:
        return None
    try:
        return decode_payment_header(header_value)
    except PaymentHeaderError as e:
        logger.warning(f"Ignoring X-PAYMENT header ({e.kind.value}): {e}")
        return None


def encode_payment_response(settlement: Dict[str, Any]) -> str:
    """Encode a settlement for the X-PAYMENT-RESPONSE header"""
    json_bytes = json.dumps(settlement, default=str).encode('utf-8')
    return base64.b64encode(json_bytes).decode('utf-8')
