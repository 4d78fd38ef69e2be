"""
Error taxonomy for the x402 paywall

Every failure the gateway can report carries one PaymentErrorKind. Amount
errors are raised (they are configuration defects); runtime payment
failures travel as PaymentError values so callers branch once on `kind`.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class PaymentErrorKind(str, Enum):
    """Classification of paywall failures"""
    # Resource configuration defects
    INVALID_AMOUNT_FORMAT = "invalid_amount_format"
    PRECISION_EXCEEDED = "precision_exceeded"
    AMOUNT_NOT_POSITIVE = "amount_not_positive"

    # Client submitted something we cannot read (treated as "no payment")
    MALFORMED_HEADER = "malformed_header"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    INVALID_PAYER = "invalid_payer"

    # Attempt failures (always logged)
    PAYMENT_REQUIRED = "payment_required"
    VALIDATION_ERROR = "validation_error"
    FACILITATOR_ERROR = "facilitator_error"
    PAYMENT_NOT_VERIFIED = "payment_not_verified"
    PROOF_CONFIRMATION_FAILED = "proof_confirmation_failed"
    PAYER_UNRESOLVABLE = "payer_unresolvable"
    UNEXPECTED_ERROR = "unexpected_error"


DEFAULT_STATUS_CODES: Dict[PaymentErrorKind, int] = {
    PaymentErrorKind.PAYMENT_REQUIRED: 402,
    PaymentErrorKind.VALIDATION_ERROR: 400,
    PaymentErrorKind.FACILITATOR_ERROR: 502,
    PaymentErrorKind.PAYMENT_NOT_VERIFIED: 402,
    PaymentErrorKind.PROOF_CONFIRMATION_FAILED: 502,
    PaymentErrorKind.PAYER_UNRESOLVABLE: 502,
    PaymentErrorKind.UNEXPECTED_ERROR: 500,
}

PUBLIC_MESSAGES: Dict[PaymentErrorKind, str] = {
    PaymentErrorKind.PAYMENT_REQUIRED: "Payment is required to access this resource.",
    PaymentErrorKind.VALIDATION_ERROR: "The submitted payment could not be validated.",
    PaymentErrorKind.FACILITATOR_ERROR: "The payment service is temporarily unavailable. Please try again.",
    PaymentErrorKind.PAYMENT_NOT_VERIFIED: "Payment not verified.",
    PaymentErrorKind.PROOF_CONFIRMATION_FAILED: "The payment settlement could not be confirmed.",
    PaymentErrorKind.PAYER_UNRESOLVABLE: "The paying wallet could not be identified.",
    PaymentErrorKind.UNEXPECTED_ERROR: "An unexpected error occurred while processing your payment.",
}


def support_reference(log_id: Optional[int]) -> Optional[str]:
    """Opaque support token derived from a payment log row id"""
    if log_id is None:
        return None
    return f"X402-{int(log_id):06d}"


# =============================================================================
# AMOUNT ERRORS
# =============================================================================

class AmountError(ValueError):
    """Configured amount cannot be charged"""
    kind: PaymentErrorKind = PaymentErrorKind.INVALID_AMOUNT_FORMAT


class InvalidAmountFormat(AmountError):
    kind = PaymentErrorKind.INVALID_AMOUNT_FORMAT


class PrecisionExceeded(AmountError):
    kind = PaymentErrorKind.PRECISION_EXCEEDED


class AmountNotPositive(AmountError):
    kind = PaymentErrorKind.AMOUNT_NOT_POSITIVE


class PaywallConfigurationError(Exception):
    """Resource cannot be gated with its current metadata"""


# =============================================================================
# HEADER ERRORS
# =============================================================================

class PaymentHeaderError(ValueError):
    """X-PAYMENT header could not be decoded into a usable payload"""

    def __init__(self, kind: PaymentErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


# =============================================================================
# RUNTIME PAYMENT ERRORS
# =============================================================================

@dataclass
class PaymentError:
    """Classified payment failure"""
    kind: PaymentErrorKind
    message: str
    status_code: int = 0
    code: Optional[str] = None
    facilitator_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.status_code:
            self.status_code = DEFAULT_STATUS_CODES.get(self.kind, 500)
        if self.code is None:
            self.code = self.kind.value

    @property
    def public_message(self) -> str:
        """Message safe to show end users"""
        if self.kind == PaymentErrorKind.UNEXPECTED_ERROR:
            return PUBLIC_MESSAGES[self.kind]
        return self.message or PUBLIC_MESSAGES.get(self.kind, "Payment failed.")
