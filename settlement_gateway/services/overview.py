"""Recomputes the due-today / past-due summary of a settlement"""

import uuid
from datetime import date

from sqlalchemy.orm import Session

from settlement_gateway.domain.enums import DueBucket
from settlement_gateway.domain.exceptions import SettlementNotFoundError
from settlement_gateway.domain.grouping import classify_due
from settlement_gateway.domain.models import DueOverview, SettlementOverview
from settlement_gateway.infrastructure.database.models import Settlement
from settlement_gateway.infrastructure.database.repositories import SettlementRepository
from settlement_gateway.services.aggregator import SettlementAggregator


class SettlementOverviewRefresher:
    """
    Pure recomputation over current rows: the same ledger always yields the
    same overview. Changes are flushed, the caller commits.
    """

    def __init__(self, db: Session):
        self.db = db
        self.settlements = SettlementRepository(db)
        self.aggregator = SettlementAggregator(db)

    def refresh(self, settlement_id: uuid.UUID, today: date) -> SettlementOverview:
        settlement = self.settlements.get_by_id(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(f"settlement {settlement_id} not found")
        return self._refresh(settlement, today)

    def refresh_open(self, today: date) -> int:
        """Refresh every pending or processing settlement; returns how many"""
        open_settlements = self.settlements.list_open()
        for settlement in open_settlements:
            self._refresh(settlement, today)
        return len(open_settlements)

    def _refresh(self, settlement: Settlement, today: date) -> SettlementOverview:
        members = self.settlements.members(settlement.id)
        totals = self.aggregator.aggregate_settlement_totals(settlement.id)

        due = {DueBucket.TODAY: [0, 0], DueBucket.PAST: [0, 0]}
        for member in members:
            if member.settled_at is not None:
                continue
            amount = self.aggregator.aggregate_settlement_amount(settlement.id, member.business_id)
            if amount <= 0:
                continue
            bucket = classify_due(member.payout_date, today)
            if bucket in due:
                due[bucket][0] += amount
                due[bucket][1] += 1

        overview = SettlementOverview(
            businesses=len(members),
            total_amount=totals.gross,
            amount=totals.net,
            total_fee=totals.fee,
            total_vat=totals.vat,
            revenue=totals.revenue,
            due_today=DueOverview(amount=due[DueBucket.TODAY][0], businesses=due[DueBucket.TODAY][1]),
            past_due=DueOverview(amount=due[DueBucket.PAST][0], businesses=due[DueBucket.PAST][1]),
        )

        settlement.total_amount_minor = totals.net
        settlement.overview_businesses = overview.businesses
        settlement.overview_total_amount_minor = overview.total_amount
        settlement.overview_amount_minor = overview.amount
        settlement.overview_total_fee_minor = overview.total_fee
        settlement.overview_total_vat_minor = overview.total_vat
        settlement.overview_revenue_minor = overview.revenue
        settlement.due_today_amount_minor = overview.due_today.amount
        settlement.due_today_businesses = overview.due_today.businesses
        settlement.past_due_amount_minor = overview.past_due.amount
        settlement.past_due_businesses = overview.past_due.businesses
        self.db.flush()

        return overview
