"""Unit tests for the settlement run orchestrator"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from settlement_gateway.domain.enums import LumpFailureKind, SettlementStatus, SettlementType
from settlement_gateway.domain.exceptions import (
    BankResolutionError,
    BusinessAlreadySettledError,
    FundingWalletNotFoundError,
    InsufficientFundingError,
    NothingToSettleError,
    SettlementCompletedError,
    SettlementNotFoundError,
    SettlementRunningError,
    SettlementValidationError,
    UnreconciledPayoutError,
)
from settlement_gateway.domain.models import PayoutResult, RunOptions
from settlement_gateway.infrastructure.database.models import (
    Business,
    FundingWallet,
    SettledSubaccount,
    Settlement,
    SettlementMember,
    Transaction,
)
from settlement_gateway.infrastructure.database.repositories import SettlementRepository, TransactionRepository
from settlement_gateway.services.grouper import SettlementGrouper
from settlement_gateway.services.reporting import SettlementReporter

FULL = RunOptions(run_type=SettlementType.FULL)
BLOCKED_ACCOUNT = "9999999999"


def _due_business(ledger, settlement, name="Ada Stores", payout_date=None, txns=3, **kwargs):
    """Business with `txns` pending 1000/50/10 payments (940 net each)"""
    business = ledger.business(name=name, **kwargs)
    ledger.member(settlement, business, payout_date=payout_date or settlement.period_date)
    for _ in range(txns):
        ledger.transaction(business, settlement, amount=1000, fee=50, vat=10)
    return business


def _fresh(db, model, ident):
    db.expire_all()
    return db.get(model, ident)


def _pending_count(db, settlement_id, business_id) -> int:
    db.expire_all()
    return len(TransactionRepository(db).pending_transactions(settlement_id, business_id))


async def _blocked_payout(request):
    if request.destination.account_no == BLOCKED_ACCOUNT:
        return PayoutResult(success=False, message="beneficiary account is restricted")
    return PayoutResult(success=True, provider_reference="PO-OK")


async def _run(orchestrator, settlement_id, options=FULL):
    handle = await orchestrator.run_settlement(settlement_id, options)
    return await handle.wait()


# Happy path


async def test_full_run_settles_due_business(orchestrator, ledger, db, payout_gateway, notifier, today):
    """Test a due business is paid, its transactions settled and the settlement completed"""
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.funding_wallet(available=10_000)
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    summary = await _run(orchestrator, settlement_id)

    assert summary.error is None
    assert summary.status == SettlementStatus.COMPLETED
    assert summary.amount_settled == 2820
    assert len(summary.succeeded) == 1

    request = payout_gateway.execute_payout.await_args.args[0]
    assert request.amount == 2820
    assert request.destination.account_no == "0123456789"

    assert _pending_count(db, settlement_id, business_id) == 0
    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "completed"
    assert stored.is_running is False
    assert stored.is_settled is True
    assert stored.settled_amount_minor == 2820
    assert stored.due_today_amount_minor == 0
    assert stored.last_run_at is not None
    assert SettlementRepository(db).is_business_settled(settlement_id, business_id)

    wallet = db.scalars(select(FundingWallet)).one()
    assert wallet.available_minor == 10_000 - 2820

    histories = SettlementRepository(db).list_histories(settlement_id)
    assert len(histories) == 1
    assert histories[0].amount_settled_minor == 2820
    assert histories[0].groups[0]["business"] == str(business_id)
    assert histories[0].analytics["settled_businesses"] == [str(business_id)]

    events = [c.args[0]["event"] for c in notifier.send_event.await_args_list]
    assert events == ["BUSINESS_SETTLED"]


async def test_payout_leg_recorded(orchestrator, ledger, db, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement, txns=1)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    await _run(orchestrator, settlement_id)

    db.expire_all()
    legs = db.scalars(select(Transaction).where(Transaction.feature == "bank-settlement")).all()
    assert len(legs) == 1
    assert legs[0].business_id == business_id
    assert legs[0].amount_minor == 940
    assert legs[0].status == "successful"
    assert legs[0].provider_reference == "PO-TEST"


async def test_wallet_business_is_credited_without_gateway(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement, settle_into="wallet")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    summary = await _run(orchestrator, settlement_id)

    assert summary.status == SettlementStatus.COMPLETED
    payout_gateway.resolve_bank_account.assert_not_awaited()
    payout_gateway.execute_payout.assert_not_awaited()
    assert _fresh(db, Business, business_id).wallet_balance_minor == 2820
    destinations = {
        t.settle_destination
        for t in db.scalars(select(Transaction).where(Transaction.feature == "payment-link")).all()
    }
    assert destinations == {"wallet"}


# Pre-flight rejections


async def test_rejects_when_other_settlement_running(orchestrator, ledger, db, today):
    """Test platform-wide single flight; the target is left untouched"""
    other = ledger.settlement(period_date=today - timedelta(days=1), status="processing", is_running=True)
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id = settlement.id

    with pytest.raises(SettlementRunningError, match=f"settlement for {other.period_date.isoformat()} is currently running"):
        await orchestrator.run_settlement(settlement_id, FULL)

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "pending"
    assert stored.is_running is False


async def test_rejects_when_self_running(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today, status="processing", is_running=True)
    _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id = settlement.id

    with pytest.raises(SettlementRunningError, match="^settlement is currently running$"):
        await orchestrator.run_settlement(settlement_id, FULL)

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "processing"
    assert stored.is_running is True
    payout_gateway.execute_payout.assert_not_awaited()


async def test_business_run_rejected_when_other_settlement_running(orchestrator, ledger, db, payout_gateway, today):
    ledger.settlement(period_date=today - timedelta(days=1), status="processing", is_running=True)
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    with pytest.raises(SettlementRunningError):
        await orchestrator.run_settlement(settlement_id, RunOptions(SettlementType.BUSINESS, business_id=business_id))

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "pending"
    assert stored.is_running is False
    payout_gateway.execute_payout.assert_not_awaited()


async def test_second_run_rejected_while_first_in_flight(orchestrator, ledger, db, today):
    """Test only one run can hold the slot at a time"""
    first = ledger.settlement(period_date=today)
    second = ledger.settlement(period_date=today - timedelta(days=1))
    _due_business(ledger, first)
    _due_business(ledger, second, name="Bola Foods", payout_date=today)
    ledger.funding_wallet()
    ledger.commit()
    first_id, second_id = first.id, second.id

    handle = await orchestrator.run_settlement(first_id, FULL)
    with pytest.raises(SettlementRunningError):
        await orchestrator.run_settlement(second_id, FULL)
    with pytest.raises(SettlementRunningError):
        await orchestrator.run_settlement(first_id, FULL)

    await handle.wait()
    summary = await _run(orchestrator, second_id)
    assert summary.status == SettlementStatus.COMPLETED


def test_acquire_run_slot_is_exclusive(ledger, db, today):
    first = ledger.settlement(period_date=today)
    second = ledger.settlement(period_date=today - timedelta(days=1))
    ledger.commit()

    repo = SettlementRepository(db)
    assert repo.acquire_run_slot(first.id) is True
    assert repo.acquire_run_slot(second.id) is False
    assert repo.acquire_run_slot(first.id) is False
    db.commit()

    repo.release_run_slot(first.id, datetime.now(timezone.utc))
    assert repo.acquire_run_slot(second.id) is True


async def test_rejects_completed_settlement(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today, status="completed")
    ledger.funding_wallet()
    ledger.commit()

    with pytest.raises(SettlementCompletedError, match="settlement is already completed"):
        await orchestrator.run_settlement(settlement.id, FULL)


async def test_rejects_unknown_settlement(orchestrator, ledger):
    with pytest.raises(SettlementNotFoundError):
        await orchestrator.run_settlement(uuid.uuid4(), FULL)


async def test_rejects_missing_funding_wallet(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement)
    ledger.commit()

    with pytest.raises(FundingWalletNotFoundError):
        await orchestrator.run_settlement(settlement.id, FULL)


async def test_business_run_requires_business_id(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    ledger.commit()

    with pytest.raises(SettlementValidationError, match="business id is required"):
        await orchestrator.run_settlement(settlement.id, RunOptions(run_type=SettlementType.BUSINESS))


async def test_invalid_run_type(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    ledger.commit()

    with pytest.raises(SettlementValidationError):
        await orchestrator.run_settlement(settlement.id, RunOptions(run_type="monthly-settlement"))


async def test_balance_checked_against_due_today_only(orchestrator, ledger, db, today):
    """Test available 1000 covers due-today 800 even though the total is 5000"""
    settlement = ledger.settlement(period_date=today)
    due = ledger.business(name="Due Today")
    ledger.member(settlement, due, payout_date=today)
    ledger.transaction(due, settlement, amount=870, fee=50, vat=20)  # 800
    later = ledger.business(name="Due Later")
    ledger.member(settlement, later, payout_date=today + timedelta(days=2))
    ledger.transaction(later, settlement, amount=4300, fee=80, vat=20)  # 4200
    ledger.funding_wallet(available=1000)
    ledger.commit()
    settlement_id, later_id = settlement.id, later.id

    summary = await _run(orchestrator, settlement_id)

    assert summary.amount_settled == 800
    assert summary.status == SettlementStatus.PROCESSING
    assert _pending_count(db, settlement_id, later_id) == 1
    stored = _fresh(db, Settlement, settlement_id)
    assert stored.total_amount_minor == 5000
    assert stored.is_running is False


async def test_force_run_checks_total_amount(orchestrator, ledger, db, today):
    settlement = ledger.settlement(period_date=today)
    due = ledger.business(name="Due Today")
    ledger.member(settlement, due, payout_date=today)
    ledger.transaction(due, settlement, amount=870, fee=50, vat=20)
    later = ledger.business(name="Due Later")
    ledger.member(settlement, later, payout_date=today + timedelta(days=2))
    ledger.transaction(later, settlement, amount=4300, fee=80, vat=20)
    ledger.funding_wallet(available=1000)
    ledger.commit()
    settlement_id = settlement.id

    with pytest.raises(InsufficientFundingError, match="available balance is too low to run settlement"):
        await orchestrator.run_settlement(settlement_id, RunOptions(SettlementType.FULL, force_run=True))

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "pending"
    assert stored.is_running is False


async def test_insufficient_balance_leaves_state_unchanged(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement)
    ledger.funding_wallet(available=500)
    ledger.commit()
    settlement_id = settlement.id

    with pytest.raises(InsufficientFundingError):
        await orchestrator.run_settlement(settlement_id, FULL)

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "pending"
    assert stored.is_running is False
    payout_gateway.execute_payout.assert_not_awaited()


async def test_nothing_due_today(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement, payout_date=today + timedelta(days=1))
    ledger.funding_wallet()
    ledger.commit()

    with pytest.raises(NothingToSettleError, match="no business is due to be settled"):
        await orchestrator.run_settlement(settlement.id, FULL)


async def test_add_past_requires_past_due_business(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()

    with pytest.raises(NothingToSettleError):
        await orchestrator.run_settlement(settlement.id, RunOptions(SettlementType.FULL, add_past=True))


async def test_add_past_settles_today_and_overdue(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today - timedelta(days=2))
    _due_business(ledger, settlement, name="Overdue", payout_date=today - timedelta(days=1))
    _due_business(ledger, settlement, name="Due Today", payout_date=today)
    _due_business(ledger, settlement, name="Later", payout_date=today + timedelta(days=1))
    ledger.funding_wallet()
    ledger.commit()

    summary = await _run(orchestrator, settlement.id, RunOptions(SettlementType.FULL, add_past=True))

    assert len(summary.succeeded) == 2
    assert summary.amount_settled == 2 * 2820
    assert summary.status == SettlementStatus.PROCESSING


async def test_business_already_settled(orchestrator, ledger, payout_gateway, today):
    """Test rejection without any gateway call"""
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    member = ledger.db.scalars(select(SettlementMember)).one()
    member.settled_at = datetime.now(timezone.utc)
    ledger.funding_wallet()
    ledger.commit()

    with pytest.raises(BusinessAlreadySettledError, match="business has already been settled"):
        await orchestrator.run_settlement(
            settlement.id, RunOptions(SettlementType.BUSINESS, business_id=business.id)
        )

    payout_gateway.resolve_bank_account.assert_not_awaited()
    payout_gateway.execute_payout.assert_not_awaited()


async def test_business_with_nothing_pending(orchestrator, ledger, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement, txns=0)
    ledger.funding_wallet()
    ledger.commit()

    with pytest.raises(NothingToSettleError, match="cannot settle NGN0 to business"):
        await orchestrator.run_settlement(
            settlement.id, RunOptions(SettlementType.BUSINESS, business_id=business.id)
        )


async def test_business_run_settles_only_that_business(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    target = _due_business(ledger, settlement, name="Target")
    other = _due_business(ledger, settlement, name="Other", account_no="1234567890", bank_code="044")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, target_id, other_id = settlement.id, target.id, other.id

    summary = await _run(orchestrator, settlement_id, RunOptions(SettlementType.BUSINESS, business_id=target_id))

    assert [o.business_id for o in summary.succeeded] == [target_id]
    assert summary.status == SettlementStatus.PROCESSING
    assert payout_gateway.execute_payout.await_count == 1
    assert _pending_count(db, settlement_id, other_id) == 3


# Partial failure and retry


async def test_one_failed_payout_does_not_block_others(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    blocked = _due_business(ledger, settlement, name="Blocked", account_no=BLOCKED_ACCOUNT)
    healthy = _due_business(ledger, settlement, name="Healthy", account_no="1234567890", bank_code="044")
    ledger.funding_wallet(available=10_000)
    ledger.commit()
    settlement_id, blocked_id, healthy_id = settlement.id, blocked.id, healthy.id
    payout_gateway.execute_payout.side_effect = _blocked_payout

    summary = await _run(orchestrator, settlement_id)

    assert summary.status == SettlementStatus.PROCESSING
    assert [o.business_id for o in summary.succeeded] == [healthy_id]
    assert [o.business_id for o in summary.failed] == [blocked_id]
    assert summary.failed[0].failure_kind == LumpFailureKind.PAYOUT
    assert _pending_count(db, settlement_id, blocked_id) == 3
    assert _pending_count(db, settlement_id, healthy_id) == 0

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.status == "processing"
    assert stored.is_running is False
    assert db.scalars(select(FundingWallet)).one().available_minor == 10_000 - 2820

    history = SettlementRepository(db).list_histories(settlement_id)[0]
    outcomes = {g["business"]: g["success"] for g in history.groups}
    assert outcomes == {str(blocked_id): False, str(healthy_id): True}
    assert db.scalars(
        select(Transaction).where(Transaction.feature == "bank-settlement", Transaction.status == "failed")
    ).all()

    # Retry pays only the business still pending
    payout_gateway.execute_payout.side_effect = None
    summary = await _run(orchestrator, settlement_id)

    assert [o.business_id for o in summary.outcomes] == [blocked_id]
    assert summary.status == SettlementStatus.COMPLETED
    assert payout_gateway.execute_payout.await_count == 3
    assert len(SettlementRepository(db).list_histories(settlement_id)) == 2


async def test_bank_resolution_failure(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id
    payout_gateway.resolve_bank_account.side_effect = BankResolutionError("Unable to resolve account: 404")

    summary = await _run(orchestrator, settlement_id)

    assert summary.failed[0].failure_kind == LumpFailureKind.BANK_RESOLUTION
    payout_gateway.execute_payout.assert_not_awaited()
    assert _pending_count(db, settlement_id, business_id) == 3


async def test_persistence_failure_after_payout_is_held_for_reconciliation(
    orchestrator, ledger, db, payout_gateway, today
):
    """Test a failed write after the transfer leaves no half-settled lump and no second transfer"""
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.funding_wallet(available=10_000)
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    with patch.object(TransactionRepository, "mark_settled", side_effect=SQLAlchemyError("disk I/O error")):
        summary = await _run(orchestrator, settlement_id)

    assert summary.failed[0].failure_kind == LumpFailureKind.PERSISTENCE
    assert _pending_count(db, settlement_id, business_id) == 3
    assert not SettlementRepository(db).is_business_settled(settlement_id, business_id)
    assert db.scalars(select(FundingWallet)).one().available_minor == 10_000
    assert _fresh(db, Settlement, settlement_id).is_running is False

    leg = db.scalars(select(Transaction).where(Transaction.feature == "bank-settlement")).one()
    assert leg.status == "unreconciled"
    assert leg.provider_reference == "PO-TEST"

    # The transfer already went out, so later runs must not pay the business again
    summary = await _run(orchestrator, settlement_id)

    assert summary.outcomes == []
    assert summary.status == SettlementStatus.PROCESSING
    assert payout_gateway.execute_payout.await_count == 1
    with pytest.raises(UnreconciledPayoutError):
        await orchestrator.run_settlement(settlement_id, RunOptions(SettlementType.BUSINESS, business_id=business_id))


async def test_payout_rejection_marks_leg_failed_not_unreconciled(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement, account_no=BLOCKED_ACCOUNT)
    ledger.funding_wallet()
    ledger.commit()
    payout_gateway.execute_payout.side_effect = _blocked_payout

    await _run(orchestrator, settlement.id)

    db.expire_all()
    leg = db.scalars(select(Transaction).where(Transaction.feature == "bank-settlement")).one()
    assert leg.status == "failed"


async def test_unexpected_lump_error_does_not_stop_the_run(orchestrator, ledger, db, payout_gateway, today):
    """Test an error inside one lump fails only that lump"""
    settlement = ledger.settlement(period_date=today)
    broken = _due_business(ledger, settlement, name="Broken")
    healthy = _due_business(ledger, settlement, name="Healthy", account_no="1234567890", bank_code="044")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, broken_id, healthy_id = settlement.id, broken.id, healthy.id
    resolve = payout_gateway.resolve_bank_account.side_effect

    def resolve_or_crash(bank_code, account_no, provider_name=None):
        if account_no == "0123456789":
            raise RuntimeError("boom")
        return resolve(bank_code, account_no, provider_name)

    payout_gateway.resolve_bank_account.side_effect = resolve_or_crash

    summary = await _run(orchestrator, settlement_id)

    assert summary.error is None
    assert [o.business_id for o in summary.failed] == [broken_id]
    assert summary.failed[0].failure_kind == LumpFailureKind.UNEXPECTED
    assert summary.failed[0].message == "boom"
    assert [o.business_id for o in summary.succeeded] == [healthy_id]
    assert payout_gateway.execute_payout.await_count == 1
    assert _pending_count(db, settlement_id, broken_id) == 3

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.is_running is False
    assert stored.status == "processing"
    history = SettlementRepository(db).list_histories(settlement_id)[0]
    assert {g["business"]: g["failure"] for g in history.groups} == {
        str(broken_id): "unexpected",
        str(healthy_id): None,
    }


async def test_failed_payout_leg_write_is_confined_to_its_lump(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement, name="First")
    _due_business(ledger, settlement, name="Second", account_no="1234567890", bank_code="044")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id = settlement.id
    create_leg = TransactionRepository.create_payout_transaction
    calls = []

    def create_leg_once_failing(self, *args, **kwargs):
        calls.append(kwargs["business_id"])
        if len(calls) == 1:
            raise SQLAlchemyError("write failed")
        return create_leg(self, *args, **kwargs)

    with patch.object(TransactionRepository, "create_payout_transaction", create_leg_once_failing):
        summary = await _run(orchestrator, settlement_id)

    assert summary.error is None
    assert len(summary.outcomes) == 2
    assert summary.failed[0].failure_kind == LumpFailureKind.PERSISTENCE
    assert summary.failed[0].business_id == calls[0]
    assert summary.succeeded[0].amount_settled == 2820
    assert payout_gateway.execute_payout.await_count == 1
    assert _pending_count(db, settlement_id, calls[0]) == 3
    assert len(SettlementRepository(db).list_histories(settlement_id)) == 1


async def test_unexpected_error_releases_run_slot(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    _due_business(ledger, settlement)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id = settlement.id

    with patch.object(SettlementGrouper, "build_groups", side_effect=RuntimeError("boom")):
        summary = await _run(orchestrator, settlement_id)

    assert summary.error == "boom"
    payout_gateway.execute_payout.assert_not_awaited()
    stored = _fresh(db, Settlement, settlement_id)
    assert stored.is_running is False
    assert stored.status == "processing"


# Zero-amount guard


async def test_zero_amount_lump_is_never_paid(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    zero = ledger.business(name="Fees Only", account_no="1234567890", bank_code="044")
    ledger.member(settlement, zero, payout_date=today)
    ledger.transaction(zero, settlement, amount=60, fee=50, vat=10)
    _due_business(ledger, settlement, txns=1)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id = settlement.id

    summary = await _run(orchestrator, settlement_id)

    assert payout_gateway.execute_payout.await_count == 1
    assert payout_gateway.execute_payout.await_args.args[0].amount == 940
    history = SettlementRepository(db).list_histories(settlement_id)[0]
    assert len(history.groups) == 1
    assert summary.status == SettlementStatus.COMPLETED


# Sub-account splits


async def test_subaccount_share_paid_before_business(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.subaccount(business, payment_link="link-a", split_type="percentage", split_value="30")
    ledger.funding_wallet(available=10_000)
    ledger.commit()
    settlement_id = settlement.id

    summary = await _run(orchestrator, settlement_id)

    amounts = [c.args[0].amount for c in payout_gateway.execute_payout.await_args_list]
    accounts = [c.args[0].destination.account_no for c in payout_gateway.execute_payout.await_args_list]
    assert amounts == [846, 1974]
    assert accounts == ["2345678901", "0123456789"]
    assert summary.amount_settled == 1974
    assert summary.amount_shared == 846

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.settled_shared_minor == 846
    assert stored.settled_amount_minor == 1974
    assert db.scalars(select(FundingWallet)).one().available_minor == 10_000 - 2820


async def test_paid_share_is_not_paid_again_on_retry(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement, account_no=BLOCKED_ACCOUNT)
    ledger.subaccount(business, payment_link="link-a", split_type="percentage", split_value="30")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id
    payout_gateway.execute_payout.side_effect = _blocked_payout

    summary = await _run(orchestrator, settlement_id)

    assert summary.failed[0].failure_kind == LumpFailureKind.PAYOUT
    assert _pending_count(db, settlement_id, business_id) == 3
    assert len(db.scalars(select(SettledSubaccount)).all()) == 1

    payout_gateway.execute_payout.side_effect = None
    summary = await _run(orchestrator, settlement_id)

    assert summary.status == SettlementStatus.COMPLETED
    assert [c.args[0].amount for c in payout_gateway.execute_payout.await_args_list] == [846, 1974, 1974]


async def test_failed_share_blocks_primary(orchestrator, ledger, db, payout_gateway, today):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.subaccount(business, payment_link="link-a", account_no=BLOCKED_ACCOUNT)
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id
    payout_gateway.execute_payout.side_effect = _blocked_payout

    summary = await _run(orchestrator, settlement_id)

    assert summary.failed[0].failure_kind == LumpFailureKind.SUBACCOUNT_PAYOUT
    assert payout_gateway.execute_payout.await_count == 1
    payout_gateway.resolve_bank_account.assert_not_awaited()
    assert _pending_count(db, settlement_id, business_id) == 3


async def test_share_is_paid_for_transactions_reported_after_settling(orchestrator, ledger, db, payout_gateway, today):
    """Test a reopened business pays the sub-account its share of the new payments"""
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement)
    ledger.subaccount(business, payment_link="link-a", split_type="percentage", split_value="30")
    ledger.funding_wallet(available=10_000)
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id

    summary = await _run(orchestrator, settlement_id)
    assert summary.status == SettlementStatus.COMPLETED

    db.expire_all()
    late = ledger.transaction(db.get(Business, business_id), amount=1000, fee=50, vat=10)
    ledger.commit()
    SettlementReporter(db).report_transaction(late.reference, today)
    db.commit()
    assert _fresh(db, Settlement, settlement_id).status == "processing"

    summary = await _run(orchestrator, settlement_id)

    payouts = [(c.args[0].destination.account_no, c.args[0].amount) for c in payout_gateway.execute_payout.await_args_list]
    assert payouts[2:] == [("2345678901", 282), ("0123456789", 658)]
    assert summary.status == SettlementStatus.COMPLETED
    assert summary.amount_shared == 282
    assert summary.amount_settled == 658

    stored = _fresh(db, Settlement, settlement_id)
    assert stored.settled_shared_minor == 846 + 282
    assert stored.settled_amount_minor == 1974 + 658
    assert db.scalars(select(FundingWallet)).one().available_minor == 10_000 - 2820 - 940
    assert _pending_count(db, settlement_id, business_id) == 0


async def test_paid_share_is_topped_up_when_payments_arrive_before_retry(
    orchestrator, ledger, db, payout_gateway, today
):
    settlement = ledger.settlement(period_date=today)
    business = _due_business(ledger, settlement, account_no=BLOCKED_ACCOUNT)
    ledger.subaccount(business, payment_link="link-a", split_type="percentage", split_value="30")
    ledger.funding_wallet()
    ledger.commit()
    settlement_id, business_id = settlement.id, business.id
    payout_gateway.execute_payout.side_effect = _blocked_payout

    summary = await _run(orchestrator, settlement_id)
    assert summary.failed[0].failure_kind == LumpFailureKind.PAYOUT

    db.expire_all()
    late = ledger.transaction(db.get(Business, business_id), amount=1000, fee=50, vat=10)
    ledger.commit()
    SettlementReporter(db).report_transaction(late.reference, today)
    db.commit()

    payout_gateway.execute_payout.side_effect = None
    summary = await _run(orchestrator, settlement_id)

    # 30% of 3760 is 1128, of which 846 went out on the first run
    amounts = [c.args[0].amount for c in payout_gateway.execute_payout.await_args_list]
    assert amounts == [846, 1974, 282, 2632]
    assert summary.status == SettlementStatus.COMPLETED
    db.expire_all()
    assert sum(s.amount_minor for s in db.scalars(select(SettledSubaccount)).all()) == 1128
