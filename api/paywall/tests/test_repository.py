"""
Tests for the payment log repository (aiosqlite)
"""

import json

import pytest
from sqlalchemy import select, func

from api.paywall.database import PaymentLogEntry
from api.paywall.models import PaymentLog
from conftest import BASE_USDC, PAYER, TX_HASH


def make_entry(status="failed", **overrides):
    values = dict(
        resource_id="42",
        amount="2500000",
        token_address=BASE_USDC,
        network="base-mainnet",
        payment_status=status,
        user_address=PAYER.upper().replace("0X", "0x"),
    )
    values.update(overrides)
    return PaymentLogEntry(**values)


@pytest.mark.asyncio
async def test_log_payment_returns_id_and_normalizes_address(repository, session_factory):
    log_id = await repository.log_payment(make_entry(status_code=402, error_code="payment_required"))
    assert isinstance(log_id, int)

    async with session_factory() as db:
        row = await db.get(PaymentLog, log_id)
    assert row.normalized_address == PAYER
    assert row.payment_status == "failed"
    assert row.status_code == 402


@pytest.mark.asyncio
async def test_verified_row_requires_proof(repository, session_factory):
    with pytest.raises(ValueError):
        await repository.log_payment(make_entry(status="verified"))

    async with session_factory() as db:
        count = (await db.execute(select(func.count(PaymentLog.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_verified_row_stores_proof_as_json(repository, session_factory):
    proof = {"signature": "sig", "payload": {"tx": TX_HASH}}
    log_id = await repository.log_payment(make_entry(status="verified", settlement_proof=proof))

    async with session_factory() as db:
        row = await db.get(PaymentLog, log_id)
    assert json.loads(row.settlement_proof) == proof


@pytest.mark.asyncio
async def test_unknown_status_is_rejected(repository):
    with pytest.raises(ValueError):
        await repository.log_payment(make_entry(status="refunded"))


@pytest.mark.asyncio
async def test_has_user_paid(repository):
    assert await repository.has_user_paid("42", PAYER, "base-mainnet") is False

    await repository.log_payment(make_entry(status="failed"))
    assert await repository.has_user_paid("42", PAYER, "base-mainnet") is False

    await repository.log_payment(make_entry(status="verified", settlement_proof={"signature": "s", "payload": "p"}))
    assert await repository.has_user_paid("42", PAYER.upper().replace("0X", "0x"), "base-mainnet") is True
    assert await repository.has_user_paid("43", PAYER, "base-mainnet") is False
    assert await repository.has_user_paid("42", "not-an-address", "base-mainnet") is False


@pytest.mark.asyncio
async def test_get_payment_logs_newest_first(repository):
    first = await repository.log_payment(make_entry())
    second = await repository.log_payment(make_entry())
    await repository.log_payment(make_entry(resource_id="other"))

    rows = await repository.get_payment_logs("42")
    assert [row.id for row in rows] == [second, first]


@pytest.mark.asyncio
async def test_pending_row_can_be_resolved_once(repository):
    log_id = await repository.log_payment(make_entry(status="pending"))

    assert await repository.update_payment_status(log_id, "failed") is True
    assert await repository.update_payment_status(log_id, "failed") is False


@pytest.mark.asyncio
async def test_pending_row_without_proof_cannot_be_verified(repository):
    log_id = await repository.log_payment(make_entry(status="pending"))
    assert await repository.update_payment_status(log_id, "verified") is False


@pytest.mark.asyncio
async def test_pending_row_with_proof_can_be_verified(repository, session_factory):
    log_id = await repository.log_payment(make_entry(status="pending", settlement_proof={"signature": "s", "payload": "p"}))
    assert await repository.update_payment_status(log_id, "verified") is True

    async with session_factory() as db:
        row = await db.get(PaymentLog, log_id)
    assert row.payment_status == "verified"


@pytest.mark.asyncio
async def test_update_to_pending_is_rejected(repository):
    with pytest.raises(ValueError):
        await repository.update_payment_status(1, "pending")
