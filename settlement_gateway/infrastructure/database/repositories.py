"""Data access layer for settlement entities"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, aliased

from settlement_gateway.domain.enums import (
    SUCCESSFUL_STATUSES,
    SettlementStatus,
    SettleStatus,
    SplitType,
    TransactionFeature,
    TransactionStatus,
)
from settlement_gateway.domain.models import (
    FundingWalletBalance,
    PayoutDestination,
    PendingTransaction,
    SettlementAmountBreakdown,
    SubaccountSplit,
)
from settlement_gateway.infrastructure.database.models import (
    Business,
    FundingWallet,
    SettledSubaccount,
    Settlement,
    SettlementHistory,
    SettlementMember,
    Subaccount,
    Transaction,
)

_SUCCESSFUL = [s.value for s in SUCCESSFUL_STATUSES]


class TransactionRepository:
    """Repository for transactions and settlement aggregates"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_reference(self, reference: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.reference == reference).first()

    def _settlement_filters(
        self,
        settlement_id: uuid.UUID,
        business_id: Optional[uuid.UUID],
        settle_status: Optional[SettleStatus],
    ) -> List[Any]:
        filters = [
            Transaction.settlement_id == settlement_id,
            Transaction.feature == TransactionFeature.PAYMENT_LINK.value,
            Transaction.status.in_(_SUCCESSFUL),
        ]
        if business_id is not None:
            filters.append(Transaction.business_id == business_id)
        if settle_status is not None:
            filters.append(Transaction.settle_status == settle_status.value)
        return filters

    def aggregate_breakdown(
        self,
        settlement_id: uuid.UUID,
        business_id: Optional[uuid.UUID] = None,
        settle_status: Optional[SettleStatus] = None,
        transaction_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> SettlementAmountBreakdown:
        """Grouped sums over qualifying payment-link transactions (all zero when none match)"""
        filters = self._settlement_filters(settlement_id, business_id, settle_status)
        if transaction_ids is not None:
            ids = list(transaction_ids)
            if not ids:
                return SettlementAmountBreakdown()
            filters.append(Transaction.id.in_(ids))

        row = self.db.execute(
            select(
                func.coalesce(func.sum(Transaction.amount_minor), 0),
                func.coalesce(func.sum(Transaction.fee_minor), 0),
                func.coalesce(func.sum(Transaction.vat_fee_minor), 0),
                func.coalesce(func.sum(Transaction.stamp_fee_minor), 0),
                func.coalesce(func.sum(Transaction.revenue_minor), 0),
                func.count(Transaction.id),
            ).where(*filters)
        ).one()

        return SettlementAmountBreakdown(
            gross=int(row[0]),
            fee=int(row[1]),
            vat=int(row[2]),
            stamp=int(row[3]),
            revenue=int(row[4]),
            count=int(row[5]),
        )

    def pending_transactions(self, settlement_id: uuid.UUID, business_id: uuid.UUID) -> List[PendingTransaction]:
        """Pending payment-link transactions for one business, oldest first"""
        rows = (
            self.db.query(Transaction)
            .filter(*self._settlement_filters(settlement_id, business_id, SettleStatus.PENDING))
            .order_by(Transaction.created_at, Transaction.reference)
            .all()
        )
        return [
            PendingTransaction(
                id=t.id,
                reference=t.reference,
                payment_link=t.payment_link,
                amount=t.amount_minor,
                fee=t.fee_minor,
                vat=t.vat_fee_minor,
                stamp=t.stamp_fee_minor,
                revenue=t.revenue_minor,
            )
            for t in rows
        ]

    def mark_settled(self, transaction_ids: List[uuid.UUID], settled_at: datetime, destination: str) -> int:
        """Flip still-pending transactions to settled; returns rows changed"""
        if not transaction_ids:
            return 0
        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.id.in_(transaction_ids),
                Transaction.settle_status == SettleStatus.PENDING.value,
            )
            .values(
                settle_status=SettleStatus.SETTLED.value,
                settled_at=settled_at,
                settle_destination=destination,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def create_payout_transaction(
        self,
        business_id: uuid.UUID,
        settlement_id: uuid.UUID,
        amount_minor: int,
        currency: str,
        narration: str,
        destination: str,
    ) -> Transaction:
        """Record a settlement credit leg before calling the provider"""
        txn = Transaction(
            reference=f"SET{uuid.uuid4().hex[:16].upper()}",
            business_id=business_id,
            settlement_id=settlement_id,
            feature=TransactionFeature.BANK_SETTLEMENT.value,
            status=TransactionStatus.PENDING.value,
            currency=currency,
            amount_minor=amount_minor,
            settle_destination=destination,
            narration=narration,
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def update_payout_status(
        self,
        transaction_id: uuid.UUID,
        status: TransactionStatus,
        provider_reference: Optional[str] = None,
        settled_at: Optional[datetime] = None,
    ) -> None:
        values: Dict[str, Any] = {"status": status.value}
        if provider_reference is not None:
            values["provider_reference"] = provider_reference
        if settled_at is not None:
            values["settled_at"] = settled_at
            values["settle_status"] = SettleStatus.SETTLED.value
        self.db.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def unreconciled_business_ids(self, settlement_id: uuid.UUID) -> Set[uuid.UUID]:
        """Businesses with a payout leg that was sent but never recorded as settled"""
        rows = self.db.execute(
            select(Transaction.business_id)
            .where(
                Transaction.settlement_id == settlement_id,
                Transaction.feature == TransactionFeature.BANK_SETTLEMENT.value,
                Transaction.status == TransactionStatus.UNRECONCILED.value,
            )
            .distinct()
        ).scalars()
        return set(rows)


class SettlementRepository:
    """Repository for settlements, members and run history"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, settlement_id: uuid.UUID) -> Optional[Settlement]:
        return self.db.query(Settlement).filter(Settlement.id == settlement_id).first()

    def get_by_date(self, period_date: date) -> Optional[Settlement]:
        return (
            self.db.query(Settlement)
            .filter(Settlement.period_date == period_date)
            .order_by(Settlement.created_at)
            .first()
        )

    def create(self, code: str, period_date: date, description: str = "") -> Settlement:
        settlement = Settlement(
            code=code,
            period_date=period_date,
            description=description,
            status=SettlementStatus.PENDING.value,
        )
        self.db.add(settlement)
        self.db.flush()
        return settlement

    def list_open(self) -> List[Settlement]:
        return (
            self.db.query(Settlement)
            .filter(Settlement.status.in_([SettlementStatus.PENDING.value, SettlementStatus.PROCESSING.value]))
            .order_by(Settlement.period_date)
            .all()
        )

    def find_running(self, exclude_id: Optional[uuid.UUID] = None) -> Optional[Settlement]:
        query = self.db.query(Settlement).filter(Settlement.is_running.is_(True))
        if exclude_id is not None:
            query = query.filter(Settlement.id != exclude_id)
        return query.first()

    def acquire_run_slot(self, settlement_id: uuid.UUID) -> bool:
        """
        Atomically mark the settlement running.

        Succeeds only if it is idle, not completed and no other settlement
        anywhere is running.
        """
        other = aliased(Settlement)
        someone_running = select(other.id).where(other.is_running.is_(True)).exists()

        result = self.db.execute(
            update(Settlement)
            .where(
                Settlement.id == settlement_id,
                Settlement.is_running.is_(False),
                Settlement.status != SettlementStatus.COMPLETED.value,
                ~someone_running,
            )
            .values(is_running=True, status=SettlementStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_run_slot(self, settlement_id: uuid.UUID, last_run_at: datetime) -> None:
        self.db.execute(
            update(Settlement)
            .where(Settlement.id == settlement_id)
            .values(is_running=False, last_run_at=last_run_at)
            .execution_options(synchronize_session=False)
        )

    # Members
    def members(self, settlement_id: uuid.UUID) -> List[SettlementMember]:
        return (
            self.db.query(SettlementMember)
            .filter(SettlementMember.settlement_id == settlement_id)
            .order_by(SettlementMember.payout_date, SettlementMember.id)
            .all()
        )

    def get_member(self, settlement_id: uuid.UUID, business_id: uuid.UUID) -> Optional[SettlementMember]:
        return (
            self.db.query(SettlementMember)
            .filter(
                SettlementMember.settlement_id == settlement_id,
                SettlementMember.business_id == business_id,
            )
            .first()
        )

    def add_member(self, settlement_id: uuid.UUID, business_id: uuid.UUID, payout_date: date) -> SettlementMember:
        member = SettlementMember(settlement_id=settlement_id, business_id=business_id, payout_date=payout_date)
        self.db.add(member)
        self.db.flush()
        return member

    def settled_business_ids(self, settlement_id: uuid.UUID) -> Set[uuid.UUID]:
        rows = self.db.execute(
            select(SettlementMember.business_id).where(
                SettlementMember.settlement_id == settlement_id,
                SettlementMember.settled_at.is_not(None),
            )
        ).scalars()
        return set(rows)

    def is_business_settled(self, settlement_id: uuid.UUID, business_id: uuid.UUID) -> bool:
        member = self.get_member(settlement_id, business_id)
        return member is not None and member.settled_at is not None

    # Sub-accounts
    def paid_share_amounts(
        self, settlement_id: uuid.UUID, transaction_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, int]:
        """
        Amount already paid to each sub-account out of the given transactions.

        A recorded share counts while any transaction it was computed from is
        still among `transaction_ids`. Shares of transactions settled since
        then belong to an earlier lump and are ignored.
        """
        wanted = {str(i) for i in transaction_ids}
        paid: Dict[uuid.UUID, int] = {}
        if not wanted:
            return paid

        rows = self.db.query(SettledSubaccount).filter(SettledSubaccount.settlement_id == settlement_id).all()
        for row in rows:
            if wanted.intersection(row.transaction_ids or []):
                paid[row.subaccount_id] = paid.get(row.subaccount_id, 0) + row.amount_minor
        return paid

    def record_settled_subaccount(
        self,
        settlement_id: uuid.UUID,
        subaccount_id: uuid.UUID,
        amount_minor: int,
        transaction_ids: Iterable[uuid.UUID],
    ) -> None:
        self.db.add(
            SettledSubaccount(
                settlement_id=settlement_id,
                subaccount_id=subaccount_id,
                amount_minor=amount_minor,
                transaction_ids=sorted(str(i) for i in transaction_ids),
            )
        )
        self.db.flush()

    # History
    def append_history(
        self,
        settlement_id: uuid.UUID,
        run_type: str,
        amount_settled_minor: int,
        amount_shared_minor: int,
        currency: str,
        groups: List[Dict[str, Any]],
        analytics: Dict[str, Any],
    ) -> SettlementHistory:
        history = SettlementHistory(
            settlement_id=settlement_id,
            run_type=run_type,
            amount_settled_minor=amount_settled_minor,
            amount_shared_minor=amount_shared_minor,
            currency=currency,
            groups=groups,
            analytics=analytics,
        )
        self.db.add(history)
        self.db.flush()
        return history

    def list_histories(self, settlement_id: uuid.UUID, limit: int = 50) -> List[SettlementHistory]:
        return (
            self.db.query(SettlementHistory)
            .filter(SettlementHistory.settlement_id == settlement_id)
            .order_by(SettlementHistory.created_at.desc())
            .limit(limit)
            .all()
        )


class BusinessRepository:
    """Repository for businesses and their payment-link splits"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, business_id: uuid.UUID) -> Optional[Business]:
        return self.db.query(Business).filter(Business.id == business_id).first()

    def splits_by_link(self, business_id: uuid.UUID, payment_links: Iterable[str]) -> Dict[str, List[SubaccountSplit]]:
        links = [link for link in payment_links if link]
        if not links:
            return {}

        rows = (
            self.db.query(Subaccount)
            .filter(Subaccount.business_id == business_id, Subaccount.payment_link.in_(links))
            .order_by(Subaccount.created_at, Subaccount.code)
            .all()
        )

        result: Dict[str, List[SubaccountSplit]] = {}
        for sub in rows:
            result.setdefault(sub.payment_link, []).append(
                SubaccountSplit(
                    subaccount_id=sub.id,
                    code=sub.code,
                    payment_link=sub.payment_link,
                    destination=PayoutDestination(
                        account_no=sub.account_no,
                        account_name=sub.account_name,
                        bank_code=sub.bank_code,
                        bank_name=sub.bank_name or "",
                    ),
                    split_type=SplitType(sub.split_type),
                    split_value=Decimal(sub.split_value),
                )
            )
        return result

    def credit_wallet(self, business_id: uuid.UUID, amount_minor: int) -> None:
        self.db.execute(
            update(Business)
            .where(Business.id == business_id)
            .values(wallet_balance_minor=Business.wallet_balance_minor + amount_minor)
            .execution_options(synchronize_session=False)
        )


class FundingWalletRepository:
    """Repository for the platform treasury wallet"""

    def __init__(self, db: Session, code: str):
        self.db = db
        self.code = code

    def get(self) -> Optional[FundingWallet]:
        return self.db.query(FundingWallet).filter(FundingWallet.code == self.code).first()

    def get_balance(self) -> Optional[FundingWalletBalance]:
        wallet = self.get()
        if wallet is None:
            return None
        return FundingWalletBalance(
            available=wallet.available_minor,
            settlement=wallet.settlement_minor,
            locked=wallet.locked_minor,
        )

    def debit(self, amount_minor: int) -> None:
        """Remove a paid-out amount from the available and settlement balances"""
        self.db.execute(
            update(FundingWallet)
            .where(FundingWallet.code == self.code)
            .values(
                available_minor=FundingWallet.available_minor - amount_minor,
                settlement_minor=case(
                    (FundingWallet.settlement_minor > amount_minor, FundingWallet.settlement_minor - amount_minor),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )
