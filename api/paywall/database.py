"""
Async payment log repository
SQLAlchemy async operations for x402_payment_logs
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .addresses import normalize_address
from .monitoring import payment_attempts_total
from .models import (
    PaymentLog,
    PAYMENT_STATUSES,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_VERIFIED,
    PAYMENT_STATUS_FAILED,
)

logger = logging.getLogger(__name__)


@dataclass
class PaymentLogEntry:
    """Values for one payment log row"""
    resource_id: str
    amount: str
    token_address: str
    network: str
    payment_status: str
    user_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    payer_identifier: Optional[str] = None
    settlement_proof: Optional[Dict[str, Any]] = None
    facilitator_signature: Optional[str] = None
    facilitator_reference: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    facilitator_message: Optional[str] = None


class PaymentLogRepository:
    """
    Append-only payment log

    Each call opens its own session so the orchestrator never holds a
    connection across the facilitator round trip.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def log_payment(self, entry: PaymentLogEntry) -> int:
        """
        Insert one row and return its id

        Raises:
            ValueError: unknown status, or a verified row without a settlement proof
        """
        if entry.payment_status not in PAYMENT_STATUSES:
            raise ValueError(f"Unknown payment status: {entry.payment_status}")
        if entry.payment_status == PAYMENT_STATUS_VERIFIED and not entry.settlement_proof:
            raise ValueError("Verified payment log entries require a settlement proof")

        row = PaymentLog(
            resource_id=str(entry.resource_id),
            user_address=entry.user_address,
            normalized_address=normalize_address(entry.user_address, entry.network),
            amount=entry.amount,
            token_address=entry.token_address,
            network=entry.network,
            transaction_hash=entry.transaction_hash,
            payer_identifier=entry.payer_identifier,
            settlement_proof=json.dumps(entry.settlement_proof, default=str) if entry.settlement_proof else None,
            payment_status=entry.payment_status,
            facilitator_signature=entry.facilitator_signature,
            facilitator_reference=entry.facilitator_reference,
            status_code=entry.status_code,
            error_code=entry.error_code,
            facilitator_message=entry.facilitator_message,
        )

        async with self.session_factory() as db:
            db.add(row)
            await db.commit()
            await db.refresh(row)

        payment_attempts_total.labels(network=entry.network, status=entry.payment_status).inc()
        logger.info(
            f"Logged {entry.payment_status} payment {row.id} for resource {entry.resource_id}"
            f" (status {entry.status_code}, code {entry.error_code})"
        )
        return row.id

    async def get_payment_logs(self, resource_id: str, limit: int = 50) -> List[PaymentLog]:
        """Most recent rows for a resource"""
        stmt = (
            select(PaymentLog)
            .where(PaymentLog.resource_id == str(resource_id))
            .order_by(PaymentLog.created_at.desc(), PaymentLog.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def has_user_paid(self, resource_id: str, address: str, network: str) -> bool:
        """Whether a verified payment exists for this resource and payer"""
        normalized = normalize_address(address, network)
        if normalized is None:
            return False

        stmt = (
            select(PaymentLog.id)
            .where(
                and_(
                    PaymentLog.resource_id == str(resource_id),
                    PaymentLog.normalized_address == normalized,
                    PaymentLog.payment_status == PAYMENT_STATUS_VERIFIED,
                )
            )
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def update_payment_status(self, log_id: int, status: str) -> bool:
        """
        Resolve a legacy pending row to verified or failed

        This is the only mutation the log allows.
        """
        if status not in (PAYMENT_STATUS_VERIFIED, PAYMENT_STATUS_FAILED):
            raise ValueError(f"Pending rows can only move to verified or failed, not {status}")

        async with self.session_factory() as db:
            if status == PAYMENT_STATUS_VERIFIED:
                row = await db.get(PaymentLog, log_id)
                if row is None or not row.settlement_proof:
                    logger.warning(f"Refusing to verify payment log {log_id} without a settlement proof")
                    return False

            stmt = (
                update(PaymentLog)
                .where(
                    and_(
                        PaymentLog.id == log_id,
                        PaymentLog.payment_status == PAYMENT_STATUS_PENDING,
                    )
                )
                .values(payment_status=status)
            )
            result = await db.execute(stmt)
            await db.commit()

        updated = result.rowcount > 0
        if updated:
            logger.info(f"Payment log {log_id} moved from pending to {status}")
        return updated
