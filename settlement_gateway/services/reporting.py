"""Tags successful payment-link transactions into the settlement for their day"""

import logging
import uuid
from datetime import date

from sqlalchemy.orm import Session

from settlement_gateway.config import settings
from settlement_gateway.domain.enums import (
    SUCCESSFUL_STATUSES,
    SettlementStatus,
    SettleStatus,
    TransactionFeature,
)
from settlement_gateway.domain.exceptions import (
    BusinessNotFoundError,
    SettlementValidationError,
    TransactionNotFoundError,
)
from settlement_gateway.infrastructure.database.models import Settlement
from settlement_gateway.infrastructure.database.repositories import (
    BusinessRepository,
    SettlementRepository,
    TransactionRepository,
)
from settlement_gateway.services.overview import SettlementOverviewRefresher
from settlement_gateway.utils.date_utils import add_days

logger = logging.getLogger(__name__)


class SettlementReporter:
    def __init__(self, db: Session, code_prefix: str | None = None):
        self.db = db
        self.code_prefix = code_prefix or settings.settlement_code_prefix
        self.transactions = TransactionRepository(db)
        self.settlements = SettlementRepository(db)
        self.businesses = BusinessRepository(db)

    def create_settlement(self, period_date: date, description: str = "") -> Settlement:
        code = f"{self.code_prefix}{uuid.uuid4().hex[:12].upper()}"
        return self.settlements.create(
            code=code,
            period_date=period_date,
            description=description or f"Settlement for {period_date.isoformat()}",
        )

    def report_transaction(self, reference: str, today: date) -> Settlement:
        """
        Add a transaction to today's settlement, creating the settlement if needed.

        The business joins the settlement with a payout date of
        period date + its settlement delay. A business already paid in this
        period is reopened, as is a completed settlement. Reporting the same
        transaction twice changes nothing.

        Raises:
            TransactionNotFoundError, BusinessNotFoundError
            SettlementValidationError: transaction is not a successful payment-link payment
        """
        txn = self.transactions.get_by_reference(reference)
        if txn is None:
            raise TransactionNotFoundError(f"transaction {reference} not found")
        if txn.feature != TransactionFeature.PAYMENT_LINK.value:
            raise SettlementValidationError("only payment-link transactions can be settled")
        if txn.status not in [s.value for s in SUCCESSFUL_STATUSES]:
            raise SettlementValidationError("transaction is not successful")

        if txn.settlement_id is not None:
            return self.settlements.get_by_id(txn.settlement_id)

        business = self.businesses.get_by_id(txn.business_id)
        if business is None:
            raise BusinessNotFoundError(f"business {txn.business_id} not found")

        settlement = self.settlements.get_by_date(today)
        if settlement is None:
            settlement = self.create_settlement(today)

        txn.settlement_id = settlement.id
        txn.settle_status = SettleStatus.PENDING.value
        txn.settle_amount_minor = txn.amount_minor - (txn.fee_minor + txn.vat_fee_minor + txn.stamp_fee_minor)

        payout_date = add_days(settlement.period_date, business.settlement_days)
        member = self.settlements.get_member(settlement.id, business.id)
        if member is None:
            self.settlements.add_member(settlement.id, business.id, payout_date)
        elif member.settled_at is not None:
            member.settled_at = None
        business.next_payout = payout_date

        if settlement.status == SettlementStatus.COMPLETED.value:
            settlement.status = SettlementStatus.PROCESSING.value
            settlement.is_settled = False
            settlement.settled_at = None

        self.db.flush()
        SettlementOverviewRefresher(self.db).refresh(settlement.id, today)

        logger.info(
            "Transaction reported for settlement",
            extra={
                "reference": reference,
                "settlement_id": str(settlement.id),
                "business_id": str(business.id),
                "payout_date": payout_date.isoformat(),
            },
        )
        return settlement
