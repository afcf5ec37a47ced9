"""Pytest fixtures for testing"""

import uuid
import pytest
from datetime import date
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from settlement_gateway.api.main import create_app
from settlement_gateway.domain.models import PayoutResult, ResolvedBankAccount
from settlement_gateway.infrastructure.database.models import (
    Business,
    FundingWallet,
    Settlement,
    SettlementMember,
    Subaccount,
    Transaction,
)
from settlement_gateway.infrastructure.database.session import Database
from settlement_gateway.services.orchestrator import SettlementOrchestrator
from settlement_gateway.services.scheduler import SettlementScheduler

# Fixed settlement day so due-date bucketing is deterministic
TODAY = date(2024, 3, 15)
FUNDING_WALLET_CODE = "treasury"


class LedgerFactory:
    """Seeds ledger rows; call `commit()` before handing control to the orchestrator"""

    def __init__(self, db: Session):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def commit(self) -> None:
        self.db.commit()

    def business(
        self,
        name: str = "Ada Stores",
        settle_into: str = "bank",
        settlement_days: int = 0,
        account_no: str = "0123456789",
        bank_code: str = "058",
    ) -> Business:
        return self._add(
            Business(
                name=name,
                currency="NGN",
                settle_into=settle_into,
                settlement_days=settlement_days,
                account_no=account_no,
                account_name=name.upper(),
                bank_code=bank_code,
                bank_name="Test Bank",
            )
        )

    def subaccount(
        self,
        business: Business,
        payment_link: str = "link-a",
        split_type: str = "percentage",
        split_value: str = "30",
        account_no: str = "2345678901",
        bank_code: str = "011",
    ) -> Subaccount:
        return self._add(
            Subaccount(
                business_id=business.id,
                code=f"SUB{uuid.uuid4().hex[:8].upper()}",
                payment_link=payment_link,
                account_no=account_no,
                account_name="SPLIT PARTNER",
                bank_code=bank_code,
                split_type=split_type,
                split_value=Decimal(split_value),
            )
        )

    def settlement(self, period_date: date = TODAY, status: str = "pending", is_running: bool = False) -> Settlement:
        return self._add(
            Settlement(
                code=f"STL{uuid.uuid4().hex[:12].upper()}",
                description=f"Settlement for {period_date.isoformat()}",
                period_date=period_date,
                status=status,
                is_running=is_running,
            )
        )

    def funding_wallet(self, available: int = 10_000_000, settlement: int = 0) -> FundingWallet:
        return self._add(
            FundingWallet(
                code=FUNDING_WALLET_CODE,
                currency="NGN",
                available_minor=available,
                settlement_minor=settlement,
                locked_minor=0,
            )
        )

    def member(self, settlement: Settlement, business: Business, payout_date: date = TODAY) -> SettlementMember:
        return self._add(
            SettlementMember(settlement_id=settlement.id, business_id=business.id, payout_date=payout_date)
        )

    def transaction(
        self,
        business: Business,
        settlement: Settlement | None = None,
        amount: int = 1000,
        fee: int = 50,
        vat: int = 10,
        stamp: int = 0,
        revenue: int = 20,
        status: str = "successful",
        feature: str = "payment-link",
        settle_status: str = "pending",
        payment_link: str = "link-a",
    ) -> Transaction:
        return self._add(
            Transaction(
                reference=f"TXN{uuid.uuid4().hex[:16].upper()}",
                business_id=business.id,
                settlement_id=settlement.id if settlement else None,
                payment_link=payment_link,
                feature=feature,
                status=status,
                currency="NGN",
                amount_minor=amount,
                fee_minor=fee,
                vat_fee_minor=vat,
                stamp_fee_minor=stamp,
                revenue_minor=revenue,
                settle_status=settle_status,
            )
        )


@pytest.fixture
def database(tmp_path) -> Generator[Database, None, None]:
    """File-backed SQLite database, one per test"""
    database = Database(f"sqlite:///{tmp_path / 'settlement.db'}").open()
    database.create_all()
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def db(database: Database) -> Generator[Session, None, None]:
    session = database.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(db: Session) -> LedgerFactory:
    return LedgerFactory(db)


@pytest.fixture
def payout_gateway() -> AsyncMock:
    """Payout provider that resolves every account and accepts every transfer"""
    gateway = AsyncMock()
    gateway.resolve_bank_account.side_effect = lambda bank_code, account_no, provider_name=None: ResolvedBankAccount(
        account_name="RESOLVED HOLDER",
        account_no=account_no,
        bank_code=bank_code,
        bank_name="Test Bank",
        platform_code=f"PLT-{account_no}",
    )
    gateway.execute_payout.return_value = PayoutResult(success=True, provider_reference="PO-TEST", message="ok")
    return gateway


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.send_event.return_value = None
    return notifier


@pytest.fixture
def scheduler() -> SettlementScheduler:
    return SettlementScheduler()


@pytest.fixture
def orchestrator(
    database: Database,
    payout_gateway: AsyncMock,
    scheduler: SettlementScheduler,
    notifier: AsyncMock,
) -> SettlementOrchestrator:
    return SettlementOrchestrator(
        database,
        payout_gateway,
        scheduler,
        notifier=notifier,
        clock=lambda: TODAY,
        funding_wallet_code=FUNDING_WALLET_CODE,
    )


@pytest.fixture
def client(database: Database, payout_gateway: AsyncMock, notifier: AsyncMock) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with test database and mocked collaborators"""
    app = create_app(
        database=database,
        payout_gateway=payout_gateway,
        notifier=notifier,
        clock=lambda: TODAY,
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def today() -> date:
    return TODAY
