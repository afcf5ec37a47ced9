"""Lump assembly rules - which businesses are due and what each one is owed"""

import uuid
from datetime import date
from typing import Dict, List

from settlement_gateway.domain.enums import DueBucket, SettlementType
from settlement_gateway.domain.models import (
    PendingTransaction,
    RunOptions,
    SettlementAmountBreakdown,
    SettlementLump,
    SubaccountSplit,
)
from settlement_gateway.domain.splits import split_lump


def classify_due(payout_date: date, today: date) -> DueBucket:
    """Bucket a member's payout date relative to `today`"""
    if payout_date == today:
        return DueBucket.TODAY
    if payout_date < today:
        return DueBucket.PAST
    return DueBucket.FUTURE


def is_due_for_run(bucket: DueBucket, options: RunOptions) -> bool:
    """
    Selection rules for a run:
    - force_run: every unsettled member, whatever its payout date
    - add_past (full runs only): due today or overdue
    - otherwise: due today only
    """
    if options.force_run:
        return True

    if options.run_type == SettlementType.FULL and options.add_past:
        return bucket in (DueBucket.TODAY, DueBucket.PAST)

    return bucket == DueBucket.TODAY


def build_lump(
    business_id: uuid.UUID,
    business_name: str,
    breakdown: SettlementAmountBreakdown,
    transactions: List[PendingTransaction],
    splits_by_link: Dict[str, List[SubaccountSplit]],
) -> SettlementLump:
    """
    Assemble one business's lump from its pending transactions.

    The lump amount is the aggregated net. Payment links with sub-account
    splits have their own net divided between the sub-accounts. The primary
    business keeps the rest.
    """
    by_link: Dict[str, List[PendingTransaction]] = {}
    for txn in transactions:
        if txn.payment_link:
            by_link.setdefault(txn.payment_link, []).append(txn)

    shares = []
    for link, link_txns in by_link.items():
        splits = splits_by_link.get(link)
        if not splits:
            continue
        link_net = sum(t.net for t in link_txns)
        link_shares, _ = split_lump(link_net, splits)
        shares.extend(s for s in link_shares if s.amount > 0)

    return SettlementLump(
        business_id=business_id,
        business_name=business_name,
        amount=breakdown.net,
        gross=breakdown.gross,
        fee=breakdown.fee,
        vat=breakdown.vat,
        stamp=breakdown.stamp,
        revenue=breakdown.revenue,
        transaction_ids=[t.id for t in transactions],
        payment_links=list(by_link.keys()),
        subaccounts=shares,
    )
