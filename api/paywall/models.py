"""
SQLAlchemy models for the x402 paywall payment log
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func
from api.database import Base

PAYMENT_STATUS_PENDING = 'pending'
PAYMENT_STATUS_VERIFIED = 'verified'
PAYMENT_STATUS_FAILED = 'failed'

PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_VERIFIED, PAYMENT_STATUS_FAILED)


class PaymentLog(Base):
    """Append-only record of every payment attempt against a gated resource"""
    __tablename__ = "x402_payment_logs"

    id = Column(Integer, primary_key=True, index=True)
    resource_id = Column(String(191), nullable=False, index=True)
    user_address = Column(String(255))
    normalized_address = Column(String(255), index=True)
    amount = Column(String(80), nullable=False)  # atomic units
    token_address = Column(String(255), nullable=False)
    network = Column(String(50), nullable=False, index=True)
    transaction_hash = Column(String(255), index=True)
    payer_identifier = Column(String(255))
    settlement_proof = Column(Text)  # JSON
    payment_status = Column(String(20), nullable=False, index=True)  # 'pending', 'verified', 'failed'
    facilitator_signature = Column(Text)
    facilitator_reference = Column(String(255))
    status_code = Column(Integer)
    error_code = Column(String(100))
    facilitator_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index('ix_x402_payment_logs_paid_lookup', 'resource_id', 'normalized_address', 'payment_status'),
    )

    def __repr__(self):
        return f"<PaymentLog(id={self.id}, resource={self.resource_id}, status={self.payment_status})>"

    def to_dict(self):
        return {
            'id': self.id,
            'resource_id': self.resource_id,
            'user_address': self.user_address,
            'normalized_address': self.normalized_address,
            'amount': self.amount,
            'token_address': self.token_address,
            'network': self.network,
            'transaction_hash': self.transaction_hash,
            'payer_identifier': self.payer_identifier,
            'payment_status': self.payment_status,
            'facilitator_reference': self.facilitator_reference,
            'status_code': self.status_code,
            'error_code': self.error_code,
            'facilitator_message': self.facilitator_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
