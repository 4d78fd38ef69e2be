"""
Settlement proof confirmation

A facilitator's `verified` flag is not accepted on its own. Access is only
granted when the settlement also carries a non-empty signature and signed
payload. Checking that signature against a key is the facilitator's job and
is not repeated here.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

REFERENCE_FIELDS = ('reference', 'paymentId', 'payment_id', 'id')


@dataclass(frozen=True)
class SettlementProof:
    """Facilitator attestation that settlement happened"""
    signature: str
    payload: Any
    transaction: Optional[str] = None
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signature': self.signature,
            'payload': self.payload,
            'transaction': self.transaction,
            'reference': self.reference,
        }


def _as_object(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list)):
        return bool(value)
    return True


def locate_proof(settlement: Any) -> Optional[Dict[str, Any]]:
    """Find the proof object: `proof`, then `settlement_proof`, then the settlement itself"""
    container = _as_object(settlement)
    if container is None:
        return None

    for field in ('proof', 'settlement_proof'):
        if field in container and container[field] is not None:
            return _as_object(container[field])

    return container


def extract_settlement_proof(settlement: Any) -> Optional[SettlementProof]:
    """Pull the signature/payload pair out of a settlement, or None if incomplete"""
    proof = locate_proof(settlement)
    if proof is None:
        return None

    signed_message = _as_object(proof.get('signedMessage')) or {}

    signature = proof.get('signature')
    if not _is_present(signature):
        signature = signed_message.get('signature')

    payload = proof.get('payload')
    if not _is_present(payload):
        payload = signed_message.get('payload')

    if not _is_present(signature) or not _is_present(payload):
        return None

    container = _as_object(settlement) or {}
    transaction = container.get('transaction') or proof.get('transaction')

    reference = None
    for field in REFERENCE_FIELDS:
        value = proof.get(field) or container.get(field)
        if _is_present(value):
            reference = str(value)
            break

    return SettlementProof(
        signature=str(signature),
        payload=payload,
        transaction=str(transaction) if _is_present(transaction) else None,
        reference=reference,
    )


def confirm_structurally_valid(settlement: Any) -> bool:
    """True only if the settlement carries both a signature and a signed payload"""
    confirmed = extract_settlement_proof(settlement) is not None
    if not confirmed:
        logger.warning("Settlement proof missing signature or payload")
    return confirmed
