"""Unit tests for due-date selection and lump assembly"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from settlement_gateway.domain.enums import DueBucket, SettlementType, SplitType
from settlement_gateway.domain.grouping import build_lump, classify_due, is_due_for_run
from settlement_gateway.domain.models import (
    PayoutDestination,
    PendingTransaction,
    RunOptions,
    SettlementAmountBreakdown,
    SubaccountSplit,
)

TODAY = date(2024, 3, 15)


def _txn(link: str, amount: int = 1000, fee: int = 50, vat: int = 10) -> PendingTransaction:
    return PendingTransaction(
        id=uuid.uuid4(),
        reference=f"TXN{uuid.uuid4().hex[:8]}",
        payment_link=link,
        amount=amount,
        fee=fee,
        vat=vat,
        stamp=0,
        revenue=20,
    )


def test_classify_due():
    assert classify_due(TODAY, TODAY) == DueBucket.TODAY
    assert classify_due(TODAY - timedelta(days=1), TODAY) == DueBucket.PAST
    assert classify_due(TODAY + timedelta(days=2), TODAY) == DueBucket.FUTURE


@pytest.mark.parametrize(
    "options, bucket, expected",
    [
        (RunOptions(SettlementType.FULL), DueBucket.TODAY, True),
        (RunOptions(SettlementType.FULL), DueBucket.PAST, False),
        (RunOptions(SettlementType.FULL, add_past=True), DueBucket.PAST, True),
        (RunOptions(SettlementType.FULL, add_past=True), DueBucket.FUTURE, False),
        (RunOptions(SettlementType.FULL, force_run=True), DueBucket.FUTURE, True),
        (RunOptions(SettlementType.BUSINESS, business_id=uuid.uuid4()), DueBucket.PAST, False),
        (RunOptions(SettlementType.BUSINESS, business_id=uuid.uuid4(), force_run=True), DueBucket.FUTURE, True),
    ],
)
def test_is_due_for_run(options, bucket, expected):
    """Test member selection per run flags"""
    assert is_due_for_run(bucket, options) is expected


def test_build_lump_without_splits():
    """Test lump amount is the aggregated net and nothing is shared"""
    txns = [_txn("link-a") for _ in range(3)]
    breakdown = SettlementAmountBreakdown(gross=3000, fee=150, vat=30, stamp=0, revenue=60, count=3)

    lump = build_lump(uuid.uuid4(), "Ada Stores", breakdown, txns, {})

    assert lump.amount == 2820
    assert lump.shared_amount == 0
    assert lump.amount_to_settle == 2820
    assert lump.transaction_ids == [t.id for t in txns]


def test_build_lump_splits_only_their_link():
    """Test a split on link-a takes a share of link-a's net only"""
    txns = [_txn("link-a"), _txn("link-b")]
    breakdown = SettlementAmountBreakdown(gross=2000, fee=100, vat=20, count=2)
    split = SubaccountSplit(
        subaccount_id=uuid.uuid4(),
        code="SUB1",
        payment_link="link-a",
        destination=PayoutDestination(account_no="2345678901", account_name="PARTNER", bank_code="011"),
        split_type=SplitType.PERCENTAGE,
        split_value=Decimal("50"),
    )

    lump = build_lump(uuid.uuid4(), "Ada Stores", breakdown, txns, {"link-a": [split]})

    assert lump.amount == 1880
    assert [s.amount for s in lump.subaccounts] == [470]  # half of 940
    assert lump.amount_to_settle == 1410

    snapshot = lump.snapshot()
    assert snapshot["shared_amount"] == 470
    assert snapshot["subaccounts"][0]["split_type"] == "percentage"
