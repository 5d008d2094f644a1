"""Tests for payment confirmation and settlement."""

import asyncio
from decimal import Decimal
from unittest.mock import ANY, AsyncMock, patch

import pytest
from sqlalchemy import func, select

from qrpay.core.errors import (
    AlreadyProcessedError,
    ExpiredError,
    NotFoundError,
    SettlementProofInvalid,
    UpstreamError,
)
from qrpay.core.events import EventBus
from qrpay.models.payment import Payment, PaymentStatus
from qrpay.models.transaction import Transaction, TransactionStatus
from qrpay.services.transaction_service import TransactionProcessor, normalize_settlement_proof

TX_HASH = "0x" + "4F1c" * 16


async def count_transactions(db, **filters) -> int:
    query = select(func.count()).select_from(Transaction)
    for column, value in filters.items():
        query = query.where(getattr(Transaction, column) == value)
    return await db.scalar(query)


@pytest.mark.asyncio
async def test_end_to_end_confirmation(db, sessions, processor, merchant, notifier):
    """Merchant charges 1000 ARS for a coffee at 1300 ARS/USDT."""
    payment = await sessions.create_session(db, merchant.id, Decimal("1000"), "Coffee")

    transaction = await processor.confirm(db, payment.session_id, TX_HASH)

    assert transaction.status == TransactionStatus.CONFIRMED
    assert transaction.exchange_rate == Decimal("1300")
    assert transaction.target_amount == Decimal("0.769231")
    assert transaction.target_currency == "USDT"
    assert transaction.source_amount == Decimal("1000")
    assert transaction.source_currency == "ARS"
    assert transaction.quote_source == "CACHED"
    assert transaction.settlement_ref == TX_HASH.lower()
    assert transaction.wallet_address == merchant.wallet_address
    assert transaction.confirmation_count == 1

    stored = await sessions.lookup(db, payment.id)
    assert stored.status == PaymentStatus.PAID
    assert stored.version == 2

    assert len(notifier.notices) == 1
    assert notifier.notices[0].transaction_id == transaction.id
    assert notifier.notices[0].status == "CONFIRMED"


@pytest.mark.asyncio
async def test_confirm_by_payment_id(db, sessions, processor, merchant):
    payment = await sessions.create_session(db, merchant.id, 500, "Tea")

    transaction = await processor.confirm(db, payment.id, TX_HASH)

    assert transaction.payment_id == payment.id


@pytest.mark.asyncio
async def test_confirm_unknown_payment(db, processor):
    with pytest.raises(NotFoundError):
        await processor.confirm(db, "pay_0_00000000", TX_HASH)


@pytest.mark.asyncio
async def test_confirm_after_expiry(db, sessions, processor, merchant, clock, session_factory):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")
    clock.advance(31 * 60)

    with pytest.raises(ExpiredError):
        await processor.confirm(db, payment.session_id, TX_HASH)

    async with session_factory() as other:
        stored = await other.get(Payment, payment.id)
        assert stored.status == PaymentStatus.EXPIRED
        assert await count_transactions(other) == 0


@pytest.mark.asyncio
async def test_payment_expiring_while_pricing(db, sessions, processor, merchant, clock, upstream):
    """The storage-level expiry guard catches a payment that expires mid-request."""
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")
    clock.advance(1790)

    fetch_rate = upstream.fetch_rate

    async def slow_fetch():
        clock.advance(20)
        return await fetch_rate()

    upstream.fetch_rate = slow_fetch

    with pytest.raises(ExpiredError):
        await processor.confirm(db, payment.session_id, TX_HASH)

    stored = await sessions.lookup(db, payment.id)
    assert stored.status == PaymentStatus.EXPIRED
    assert await count_transactions(db) == 0


@pytest.mark.asyncio
async def test_second_confirmation_is_rejected(db, sessions, processor, merchant):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")
    await processor.confirm(db, payment.session_id, TX_HASH)

    with pytest.raises(AlreadyProcessedError):
        await processor.confirm(db, payment.session_id, "0xbeef")
    with pytest.raises(AlreadyProcessedError):
        await processor.confirm(db, payment.session_id, TX_HASH)

    assert await count_transactions(db) == 1


@pytest.mark.asyncio
async def test_concurrent_confirmations_settle_once(db, sessions, processor, merchant, session_factory):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    async def attempt(proof: str):
        async with session_factory() as session:
            return await processor.confirm(session, payment.session_id, proof)

    results = await asyncio.gather(
        *[attempt(f"0x{i:064x}") for i in range(1, 6)],
        return_exceptions=True
    )

    confirmed = [r for r in results if isinstance(r, Transaction)]
    rejected = [r for r in results if isinstance(r, AlreadyProcessedError)]
    assert len(confirmed) == 1
    assert len(rejected) == 4

    async with session_factory() as other:
        assert await count_transactions(other) == 1
        assert await count_transactions(other, status=TransactionStatus.CONFIRMED) == 1
        stored = await other.get(Payment, payment.id)
        assert stored.status == PaymentStatus.PAID
        assert stored.version == 2


@pytest.mark.asyncio
async def test_two_simultaneous_confirmations_with_same_proof(db, sessions, processor, merchant, session_factory):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    async def attempt():
        async with session_factory() as session:
            return await processor.confirm(session, payment.session_id, TX_HASH)

    first, second = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    outcomes = sorted(type(r).__name__ for r in (first, second))
    assert outcomes == ["AlreadyProcessedError", "Transaction"]


@pytest.mark.asyncio
@pytest.mark.parametrize("proof", ["", "not-a-hash", "0x", "0x" + "a" * 65, "0xZZ"])
async def test_invalid_proof_records_failure(db, sessions, processor, merchant, proof):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    with pytest.raises(SettlementProofInvalid):
        await processor.confirm(db, payment.session_id, proof)

    failed = await processor.list_transactions(db, payment_id=payment.id)
    assert len(failed) == 1
    assert failed[0].status == TransactionStatus.FAILED
    assert failed[0].failure_reason

    # The payment stays payable
    assert (await sessions.lookup(db, payment.id)).status == PaymentStatus.PENDING
    transaction = await processor.confirm(db, payment.session_id, TX_HASH)
    assert transaction.status == TransactionStatus.CONFIRMED


@pytest.mark.asyncio
async def test_reused_proof_is_rejected(db, sessions, processor, merchant):
    first = await sessions.create_session(db, merchant.id, 1000, "Coffee")
    second = await sessions.create_session(db, merchant.id, 2000, "Lunch")
    await processor.confirm(db, first.session_id, TX_HASH)

    with pytest.raises(SettlementProofInvalid, match="already used"):
        await processor.confirm(db, second.session_id, TX_HASH.upper().replace("0X", "0x"))

    assert (await sessions.lookup(db, second.id)).status == PaymentStatus.PENDING
    assert await count_transactions(db, payment_id=second.id, status=TransactionStatus.FAILED) == 1


@pytest.mark.asyncio
async def test_notifier_failure_does_not_revert_settlement(db, sessions, processor, merchant, notifier):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    with patch.object(notifier, "notify", AsyncMock(side_effect=UpstreamError("ledger down"))) as notify:
        transaction = await processor.confirm(db, payment.session_id, TX_HASH)

    notify.assert_awaited_once()
    assert transaction.status == TransactionStatus.CONFIRMED
    assert (await sessions.lookup(db, payment.id)).status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_confirmation_publishes_payment_paid(db, sessions, price_oracle, notifier, merchant, clock):
    bus = AsyncMock(spec=EventBus)
    processor = TransactionProcessor(sessions, price_oracle, notifier, clock=clock, bus=bus)
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    transaction = await processor.confirm(db, payment.session_id, TX_HASH)

    bus.publish.assert_awaited_once_with("payment_paid", ANY)
    assert bus.publish.await_args.args[1]["transaction_id"] == transaction.id


@pytest.mark.asyncio
async def test_fallback_priced_settlement_is_flagged(db, sessions, processor, merchant, upstream):
    upstream.rate = Decimal("0")
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")

    transaction = await processor.confirm(db, payment.session_id, TX_HASH)

    assert transaction.quote_source == "FALLBACK"
    assert transaction.exchange_rate == Decimal("1000")
    assert transaction.target_amount == Decimal("1")


@pytest.mark.asyncio
async def test_get_and_list_transactions(db, sessions, processor, merchant):
    payment = await sessions.create_session(db, merchant.id, 1000, "Coffee")
    with pytest.raises(SettlementProofInvalid):
        await processor.confirm(db, payment.session_id, "garbage")
    transaction = await processor.confirm(db, payment.session_id, TX_HASH)

    assert (await processor.get_transaction(db, transaction.id)).id == transaction.id

    confirmed = await processor.list_transactions(db, status_filter=TransactionStatus.CONFIRMED)
    assert [t.id for t in confirmed] == [transaction.id]
    assert len(await processor.list_transactions(db, payment_id=payment.id)) == 2

    with pytest.raises(NotFoundError):
        await processor.get_transaction(db, "missing")


@pytest.mark.parametrize("proof, expected", [
    ("0xABC", "0xabc"),
    ("  0x1f  ", "0x1f"),
    ("abc123", "0xabc123"),
    ("0x", None),
    ("0xg1", None),
    (None, None),
])
def test_normalize_settlement_proof(proof, expected):
    assert normalize_settlement_proof(proof) == expected
