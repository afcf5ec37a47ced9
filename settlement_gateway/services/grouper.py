"""Builds the payout lumps for a settlement run"""

import logging
from datetime import date
from typing import List

from sqlalchemy.orm import Session

from settlement_gateway.domain.enums import SettlementType
from settlement_gateway.domain.grouping import build_lump, classify_due, is_due_for_run
from settlement_gateway.domain.models import RunOptions, SettlementLump
from settlement_gateway.infrastructure.database.models import Business, Settlement
from settlement_gateway.infrastructure.database.repositories import (
    BusinessRepository,
    SettlementRepository,
    TransactionRepository,
)
from settlement_gateway.services.aggregator import SettlementAggregator

logger = logging.getLogger(__name__)


class SettlementGrouper:
    """Selects due, unsettled members and turns each into a lump"""

    def __init__(self, db: Session):
        self.settlements = SettlementRepository(db)
        self.businesses = BusinessRepository(db)
        self.transactions = TransactionRepository(db)
        self.aggregator = SettlementAggregator(db)

    def build_groups(self, settlement: Settlement, options: RunOptions, today: date) -> List[SettlementLump]:
        members = self.settlements.members(settlement.id)
        if options.run_type == SettlementType.BUSINESS:
            members = [m for m in members if m.business_id == options.business_id]

        # A sent but unrecorded payout must be reconciled before paying again
        unreconciled = self.transactions.unreconciled_business_ids(settlement.id)

        lumps = []
        for member in members:
            if member.settled_at is not None:
                continue
            if member.business_id in unreconciled:
                logger.warning(
                    "Skipping business with unreconciled payout",
                    extra={"settlement_id": str(settlement.id), "business_id": str(member.business_id)},
                )
                continue
            if not is_due_for_run(classify_due(member.payout_date, today), options):
                continue

            lump = self.build_business_lump(settlement.id, member.business)
            if lump.amount <= 0:
                logger.info(
                    "Skipping zero-amount lump",
                    extra={"settlement_id": str(settlement.id), "business_id": str(member.business_id)},
                )
                continue
            lumps.append(lump)

        return lumps

    def build_business_lump(self, settlement_id, business: Business) -> SettlementLump:
        breakdown, rows = self.aggregator.collect_pending(settlement_id, business.id)
        splits = self.businesses.splits_by_link(business.id, {row.payment_link for row in rows})
        return build_lump(business.id, business.name, breakdown, rows, splits)
