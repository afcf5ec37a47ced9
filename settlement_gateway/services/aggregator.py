"""Payable totals for businesses within a settlement"""

import uuid
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from settlement_gateway.domain.enums import SettleStatus
from settlement_gateway.domain.models import (
    PendingTransaction,
    SettlementAmountBreakdown,
    SettlementAnalyticsReport,
)
from settlement_gateway.infrastructure.database.repositories import TransactionRepository


class SettlementAggregator:
    """
    Computes settlement figures fresh from the ledger on every call.

    Nothing is cached, so repeated calls over an unchanged ledger return the
    same values and a retried run always sees current pending amounts.
    """

    def __init__(self, db: Session):
        self.transactions = TransactionRepository(db)

    def aggregate_settlement_amount(
        self,
        settlement_id: uuid.UUID,
        business_id: uuid.UUID,
        status: Optional[SettleStatus] = SettleStatus.PENDING,
    ) -> int:
        """Net payable amount (gross less fee, vat and stamp); 0 when nothing matches"""
        return self.transactions.aggregate_breakdown(settlement_id, business_id, status).net

    def aggregate_settlement_analytics(
        self, settlement_id: uuid.UUID, business_id: uuid.UUID
    ) -> SettlementAnalyticsReport:
        """
        Reporting figures over every successful transaction, with the currently
        due `amount` taken from the pending subset.

        When nothing is pending, `amount` falls back to the all-status total
        less fee and vat.
        """
        everything = self.transactions.aggregate_breakdown(settlement_id, business_id)
        if everything.count == 0:
            return SettlementAnalyticsReport(
                total_amount=0, fee=0, vat=0, revenue=0, provider_fee=0, count=0, amount=0
            )

        pending = self.transactions.aggregate_breakdown(settlement_id, business_id, SettleStatus.PENDING)
        if pending.count == 0:
            amount = everything.gross - (everything.fee + everything.vat)
        else:
            amount = pending.gross - (pending.fee + pending.vat)

        return SettlementAnalyticsReport(
            total_amount=everything.gross,
            fee=everything.fee,
            vat=everything.vat,
            revenue=everything.revenue,
            provider_fee=everything.provider_fee,
            count=everything.count,
            amount=amount,
        )

    def aggregate_settlement_totals(self, settlement_id: uuid.UUID) -> SettlementAmountBreakdown:
        """Breakdown across every business in the settlement"""
        return self.transactions.aggregate_breakdown(settlement_id)

    def collect_pending(
        self, settlement_id: uuid.UUID, business_id: uuid.UUID
    ) -> Tuple[SettlementAmountBreakdown, List[PendingTransaction]]:
        """Pending rows for one business and the breakdown over exactly those rows"""
        rows = self.transactions.pending_transactions(settlement_id, business_id)
        breakdown = self.transactions.aggregate_breakdown(
            settlement_id,
            business_id,
            SettleStatus.PENDING,
            transaction_ids=[row.id for row in rows],
        )
        return breakdown, rows
