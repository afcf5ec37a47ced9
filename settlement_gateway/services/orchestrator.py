"""Settlement run orchestration: pre-flight checks, single-flight guard and payout worker"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_gateway.config import settings
from settlement_gateway.domain.enums import (
    LumpFailureKind,
    SettleDestination,
    SettlementStatus,
    SettlementType,
    TransactionStatus,
)
from settlement_gateway.domain.exceptions import (
    BankResolutionError,
    BusinessAlreadySettledError,
    BusinessNotFoundError,
    FundingWalletNotFoundError,
    InsufficientFundingError,
    NothingToSettleError,
    SettlementCompletedError,
    SettlementNotFoundError,
    SettlementPreconditionError,
    SettlementRunningError,
    SettlementValidationError,
    UnreconciledPayoutError,
)
from settlement_gateway.domain.models import (
    LumpOutcome,
    PayoutDestination,
    PayoutRequest,
    PayoutResult,
    ResolvedBankAccount,
    RunOptions,
    RunSummary,
    SettlementLump,
)
from settlement_gateway.infrastructure.database.models import Settlement
from settlement_gateway.infrastructure.database.repositories import (
    BusinessRepository,
    FundingWalletRepository,
    SettlementRepository,
    TransactionRepository,
)
from settlement_gateway.infrastructure.database.session import Database
from settlement_gateway.infrastructure.observability.logging import log_lump_outcome, log_settlement_run
from settlement_gateway.infrastructure.observability.metrics import (
    record_lump,
    record_rejection,
    record_settlement_run,
)
from settlement_gateway.services.aggregator import SettlementAggregator
from settlement_gateway.services.grouper import SettlementGrouper
from settlement_gateway.services.overview import SettlementOverviewRefresher
from settlement_gateway.services.scheduler import RunHandle, SettlementScheduler
from settlement_gateway.utils.date_utils import utc_now, utc_today
from settlement_gateway.utils.money import format_amount

logger = logging.getLogger(__name__)


@dataclass
class _OpenLeg:
    """Payout transaction of the lump that is not yet recorded as settled"""

    transaction_id: Optional[uuid.UUID] = None
    provider_reference: Optional[str] = None
    sent: bool = False

    def open(self, transaction_id: Optional[uuid.UUID]) -> None:
        self.transaction_id = transaction_id
        self.provider_reference = None
        self.sent = False

    def mark_sent(self, provider_reference: Optional[str]) -> None:
        self.sent = True
        self.provider_reference = provider_reference

    def close(self) -> None:
        self.open(None)


class PayoutGateway(Protocol):
    async def resolve_bank_account(
        self, bank_code: str, account_no: str, provider_name: str | None = None
    ) -> ResolvedBankAccount: ...

    async def execute_payout(self, request: PayoutRequest) -> PayoutResult: ...


class Notifier(Protocol):
    async def send_event(self, payload: Dict[str, Any]) -> None: ...


class SettlementOrchestrator:
    """
    Owns the settlement state machine (pending -> processing -> completed)
    and the platform-wide `is_running` guard.

    `run_settlement` validates and claims the run slot synchronously, then
    hands the payout work to the scheduler. `execute_run` is that work: lumps
    are paid strictly one after another because they share one funding wallet.
    """

    def __init__(
        self,
        database: Database,
        payout_gateway: PayoutGateway,
        scheduler: SettlementScheduler,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], date] = utc_today,
        funding_wallet_code: str | None = None,
    ):
        self.database = database
        self.payout_gateway = payout_gateway
        self.scheduler = scheduler
        self.notifier = notifier
        self.clock = clock
        self.funding_wallet_code = funding_wallet_code or settings.funding_wallet_code

    # Trigger

    async def run_settlement(self, settlement_id: uuid.UUID, options: RunOptions) -> RunHandle:
        """
        Accept a run request and start it in the background.

        Raises:
            SettlementValidationError: bad run type or missing business id
            NotFoundError: settlement, business or funding wallet missing
            SettlementPreconditionError: already running, completed, nothing due,
                or the funding wallet cannot cover the payout
        """
        options = self._validate(options)
        today = self.clock()

        with self.database.session() as db:
            settlements = SettlementRepository(db)
            settlement = settlements.get_by_id(settlement_id)
            if settlement is None:
                raise SettlementNotFoundError("settlement does not exist")

            try:
                self._check_preconditions(db, settlement, options, today)
            except SettlementPreconditionError as e:
                record_rejection(type(e).__name__)
                raise

            # Nothing written during the checks is kept unless the slot is ours
            if not settlements.acquire_run_slot(settlement.id):
                db.rollback()
                record_rejection(SettlementRunningError.__name__)
                raise SettlementRunningError("settlement is currently running")
            db.commit()

        logger.info(
            "Settlement run accepted",
            extra={
                "settlement_id": str(settlement_id),
                "run_type": options.run_type.value,
                "business_id": str(options.business_id) if options.business_id else None,
                "force_run": options.force_run,
                "add_past": options.add_past,
            },
        )
        return self.scheduler.submit(settlement_id, lambda: self.execute_run(settlement_id, options))

    def _validate(self, options: RunOptions) -> RunOptions:
        try:
            run_type = SettlementType(options.run_type)
        except ValueError:
            raise SettlementValidationError("invalid settlement type")

        if run_type == SettlementType.BUSINESS and options.business_id is None:
            raise SettlementValidationError("business id is required")

        return RunOptions(
            run_type=run_type,
            business_id=options.business_id,
            force_run=options.force_run,
            add_past=options.add_past,
        )

    def _check_preconditions(self, db: Session, settlement: Settlement, options: RunOptions, today: date) -> None:
        settlements = SettlementRepository(db)

        if settlement.is_running:
            raise SettlementRunningError("settlement is currently running")

        other = settlements.find_running(exclude_id=settlement.id)
        if other is not None:
            raise SettlementRunningError(f"settlement for {other.period_date.isoformat()} is currently running")

        if settlement.status == SettlementStatus.COMPLETED.value:
            raise SettlementCompletedError("settlement is already completed")

        balance = FundingWalletRepository(db, self.funding_wallet_code).get_balance()
        if balance is None:
            raise FundingWalletNotFoundError("an error occured. contact admin support")

        if options.run_type == SettlementType.BUSINESS:
            business = BusinessRepository(db).get_by_id(options.business_id)
            if business is None:
                raise BusinessNotFoundError("business does not exist")
            if settlements.is_business_settled(settlement.id, business.id):
                raise BusinessAlreadySettledError("business has already been settled")
            if business.id in TransactionRepository(db).unreconciled_business_ids(settlement.id):
                raise UnreconciledPayoutError("business has a payout awaiting reconciliation")

            required = SettlementAggregator(db).aggregate_settlement_amount(settlement.id, business.id)
            if required <= 0:
                raise NothingToSettleError(f"cannot settle {business.currency}0 to business")
        else:
            overview = SettlementOverviewRefresher(db).refresh(settlement.id, today)
            if options.force_run:
                required = settlement.total_amount_minor
            elif options.add_past:
                if overview.past_due.businesses <= 0:
                    raise NothingToSettleError("no business is due to be settled")
                required = overview.due_today.amount + overview.past_due.amount
            else:
                if overview.due_today.businesses <= 0:
                    raise NothingToSettleError("no business is due to be settled")
                required = overview.due_today.amount

        if balance.available < required:
            raise InsufficientFundingError("available balance is too low to run settlement")

    # Worker

    async def execute_run(self, settlement_id: uuid.UUID, options: RunOptions) -> RunSummary:
        """
        Pay out every lump of the run and finalise the settlement.

        Never raises: unexpected errors end up in `RunSummary.error` and the
        run slot is always released.
        """
        start_time = time.time()
        today = self.clock()
        summary = RunSummary(settlement_id=settlement_id, run_type=options.run_type, status=SettlementStatus.PROCESSING)

        try:
            with self.database.session() as db:
                settlement = SettlementRepository(db).get_by_id(settlement_id)
                if settlement is None:
                    raise SettlementNotFoundError(f"settlement {settlement_id} not found")
                lumps = SettlementGrouper(db).build_groups(settlement, options, today)

            groups: List[Dict[str, Any]] = []
            for lump in lumps:
                outcome = await self._settle_lump(settlement_id, lump, today)
                summary.outcomes.append(outcome)
                groups.append(
                    {
                        **lump.snapshot(),
                        "success": outcome.success,
                        "failure": outcome.failure_kind.value if outcome.failure_kind else None,
                        "message": outcome.message,
                    }
                )

            self._finalise(settlement_id, options, summary, groups, today)

        except Exception as e:
            summary.error = str(e)
            logger.error(f"Settlement run failed: {e}", extra={"settlement_id": str(settlement_id)})

        finally:
            self._release(settlement_id)

        duration_ms = (time.time() - start_time) * 1000
        record_settlement_run(options.run_type.value, "errored" if summary.error else summary.status.value)
        log_settlement_run(
            str(settlement_id),
            options.run_type.value,
            summary.status.value,
            len(summary.outcomes),
            len(summary.failed),
            summary.amount_settled,
            duration_ms,
            summary.error,
        )
        return summary

    async def _settle_lump(self, settlement_id: uuid.UUID, lump: SettlementLump, today: date) -> LumpOutcome:
        """Pay one lump. Any error is confined to this lump and reported as its outcome."""
        leg = _OpenLeg()
        with self.database.session() as db:
            try:
                return await self._pay_lump(db, settlement_id, lump, today, leg)
            except SQLAlchemyError as e:
                return self._fail(db, settlement_id, lump, LumpFailureKind.PERSISTENCE, str(e), leg)
            except Exception as e:
                logger.exception(
                    "Unexpected error while settling lump",
                    extra={"settlement_id": str(settlement_id), "business_id": str(lump.business_id)},
                )
                return self._fail(db, settlement_id, lump, LumpFailureKind.UNEXPECTED, str(e), leg)

    async def _pay_lump(
        self, db: Session, settlement_id: uuid.UUID, lump: SettlementLump, today: date, leg: _OpenLeg
    ) -> LumpOutcome:
        transactions = TransactionRepository(db)
        settlements = SettlementRepository(db)
        funding = FundingWalletRepository(db, self.funding_wallet_code)

        business = BusinessRepository(db).get_by_id(lump.business_id)
        currency = business.currency

        # 1. Sub-account shares, each committed as soon as it is paid.
        # Shares already paid out of these same transactions are only topped up.
        paid = settlements.paid_share_amounts(settlement_id, lump.transaction_ids)
        newly_shared = 0
        for share in lump.subaccounts:
            owed = share.amount - paid.get(share.subaccount_id, 0)
            if owed <= 0:
                continue

            payout_txn = transactions.create_payout_transaction(
                business_id=business.id,
                settlement_id=settlement_id,
                amount_minor=owed,
                currency=currency,
                narration=f"Settlement share {share.code}",
                destination=SettleDestination.BANK.value,
            )
            db.commit()
            leg.open(payout_txn.id)

            result = await self._execute_payout(owed, currency, share.destination, payout_txn.reference, payout_txn.narration)
            if not result.success:
                return self._fail(db, settlement_id, lump, LumpFailureKind.SUBACCOUNT_PAYOUT, result.message, leg)
            leg.mark_sent(result.provider_reference)

            transactions.update_payout_status(
                payout_txn.id, TransactionStatus.SUCCESSFUL, result.provider_reference, settled_at=utc_now()
            )
            settlements.record_settled_subaccount(settlement_id, share.subaccount_id, owed, lump.transaction_ids)
            settlement = settlements.get_by_id(settlement_id)
            settlement.settled_shared_minor = settlement.settled_shared_minor + owed
            funding.debit(owed)
            db.commit()
            leg.close()
            record_lump(True, None, owed, "subaccount")
            newly_shared += owed

        # 2. Primary business
        amount = lump.amount_to_settle
        to_wallet = business.settle_into == SettleDestination.WALLET.value
        destination = SettleDestination.WALLET if to_wallet else SettleDestination.BANK

        if amount > 0 and not to_wallet:
            try:
                resolved = await self.payout_gateway.resolve_bank_account(business.bank_code, business.account_no)
            except BankResolutionError as e:
                return self._fail(db, settlement_id, lump, LumpFailureKind.BANK_RESOLUTION, str(e))

            payout_txn = transactions.create_payout_transaction(
                business_id=business.id,
                settlement_id=settlement_id,
                amount_minor=amount,
                currency=currency,
                narration=f"Settlement payout to {business.name}",
                destination=destination.value,
            )
            db.commit()
            leg.open(payout_txn.id)

            result = await self._execute_payout(
                amount,
                currency,
                PayoutDestination(
                    account_no=resolved.account_no,
                    account_name=resolved.account_name,
                    bank_code=resolved.bank_code,
                    bank_name=resolved.bank_name,
                ),
                payout_txn.reference,
                payout_txn.narration,
            )
            if not result.success:
                return self._fail(db, settlement_id, lump, LumpFailureKind.PAYOUT, result.message, leg)
            leg.mark_sent(result.provider_reference)

        # 3. One transaction marks the lump settled
        now = utc_now()
        if amount > 0 and to_wallet:
            BusinessRepository(db).credit_wallet(business.id, amount)
            wallet_txn = transactions.create_payout_transaction(
                business_id=business.id,
                settlement_id=settlement_id,
                amount_minor=amount,
                currency=currency,
                narration=f"Settlement credit to {business.name} wallet",
                destination=destination.value,
            )
            transactions.update_payout_status(wallet_txn.id, TransactionStatus.SUCCESSFUL, settled_at=now)
        elif leg.transaction_id is not None:
            transactions.update_payout_status(
                leg.transaction_id, TransactionStatus.SUCCESSFUL, leg.provider_reference, settled_at=now
            )

        marked = transactions.mark_settled(lump.transaction_ids, now, destination.value)
        if marked != len(lump.transaction_ids):
            logger.warning(
                "Some lump transactions were no longer pending",
                extra={"settlement_id": str(settlement_id), "business_id": str(business.id)},
            )

        member = settlements.get_member(settlement_id, business.id)
        member.settled_at = now
        settlement = settlements.get_by_id(settlement_id)
        settlement.settled_amount_minor = settlement.settled_amount_minor + amount
        if amount > 0:
            funding.debit(amount)
        db.flush()
        SettlementOverviewRefresher(db).refresh(settlement_id, today)
        db.commit()
        leg.close()

        outcome = LumpOutcome(
            business_id=lump.business_id,
            success=True,
            amount_settled=amount,
            amount_shared=newly_shared,
        )
        record_lump(True, None, amount, destination.value)
        log_lump_outcome(str(settlement_id), str(lump.business_id), True, amount)
        await self._notify(
            {
                "event": "BUSINESS_SETTLED",
                "settlement_id": str(settlement_id),
                "business_id": str(lump.business_id),
                "amount_minor": amount,
                "amount": format_amount(amount, currency),
                "destination": destination.value,
            }
        )
        return outcome

    async def _execute_payout(
        self, amount: int, currency: str, destination: PayoutDestination, reference: str, narration: str
    ) -> PayoutResult:
        request = PayoutRequest(
            amount=amount,
            currency=currency,
            destination=destination,
            reference=reference,
            narration=narration,
        )
        try:
            return await self.payout_gateway.execute_payout(request)
        except Exception as e:
            return PayoutResult(success=False, message=str(e))

    def _fail(
        self,
        db: Session,
        settlement_id: uuid.UUID,
        lump: SettlementLump,
        kind: LumpFailureKind,
        message: str,
        leg: Optional[_OpenLeg] = None,
    ) -> LumpOutcome:
        """Discard the lump's uncommitted writes; its transactions stay pending"""
        db.rollback()
        if leg is not None and leg.transaction_id is not None:
            self._close_failed_leg(settlement_id, lump, leg)

        record_lump(False, kind.value, 0, "")
        log_lump_outcome(str(settlement_id), str(lump.business_id), False, lump.amount_to_settle, kind.value, message)
        return LumpOutcome(business_id=lump.business_id, success=False, failure_kind=kind, message=message)

    def _close_failed_leg(self, settlement_id: uuid.UUID, lump: SettlementLump, leg: _OpenLeg) -> None:
        """
        Record how the open payout leg ended, in its own session.

        A leg the provider accepted becomes `unreconciled` with its provider
        reference, which keeps the business out of later runs until someone
        reconciles it. Any other leg is `failed`.
        """
        status = TransactionStatus.UNRECONCILED if leg.sent else TransactionStatus.FAILED
        extra = {
            "settlement_id": str(settlement_id),
            "business_id": str(lump.business_id),
            "transaction_id": str(leg.transaction_id),
            "provider_reference": leg.provider_reference,
        }
        try:
            with self.database.session() as db:
                TransactionRepository(db).update_payout_status(leg.transaction_id, status, leg.provider_reference)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record payout leg as {status.value}: {e}", extra=extra)
            return

        if leg.sent:
            logger.error("Payout sent but settlement not recorded; reconcile before paying again", extra=extra)

    def _finalise(
        self,
        settlement_id: uuid.UUID,
        options: RunOptions,
        summary: RunSummary,
        groups: List[Dict[str, Any]],
        today: date,
    ) -> None:
        with self.database.session() as db:
            settlements = SettlementRepository(db)
            settlement = settlements.get_by_id(settlement_id)
            overview = SettlementOverviewRefresher(db).refresh(settlement_id, today)

            members = settlements.members(settlement_id)
            settled_ids = [str(m.business_id) for m in members if m.settled_at is not None]

            if groups:
                history = settlements.append_history(
                    settlement_id=settlement_id,
                    run_type=options.run_type.value,
                    amount_settled_minor=summary.amount_settled,
                    amount_shared_minor=summary.amount_shared,
                    currency=settings.default_currency,
                    groups=groups,
                    analytics={
                        "settled_businesses": settled_ids,
                        "settled_amount": settlement.settled_amount_minor,
                        "settled_shared": settlement.settled_shared_minor,
                        "due_today": {"amount": overview.due_today.amount, "businesses": overview.due_today.businesses},
                        "past_due": {"amount": overview.past_due.amount, "businesses": overview.past_due.businesses},
                        "failed_businesses": [str(o.business_id) for o in summary.failed],
                    },
                )
                summary.history_id = history.id

            # Members with nothing left to pay count as done
            aggregator = SettlementAggregator(db)
            outstanding = [
                m
                for m in members
                if m.settled_at is None and aggregator.aggregate_settlement_amount(settlement_id, m.business_id) > 0
            ]
            if not summary.failed and members and not outstanding:
                settlement.status = SettlementStatus.COMPLETED.value
                settlement.is_settled = True
                settlement.settled_at = utc_now()

            db.commit()
            summary.status = SettlementStatus(settlement.status)

    def _release(self, settlement_id: uuid.UUID) -> None:
        try:
            with self.database.session() as db:
                SettlementRepository(db).release_run_slot(settlement_id, utc_now())
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to release settlement run slot: {e}", extra={"settlement_id": str(settlement_id)})

    async def _notify(self, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_event(payload)
        except Exception as e:
            logger.warning(f"Settlement notification failed: {e}", extra={"event": payload.get("event")})