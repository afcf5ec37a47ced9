"""Domain models - pure Python dataclasses representing settlement entities

All amounts are integers in the currency's minor unit (kobo, cents).
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from settlement_gateway.domain.enums import (
    LumpFailureKind,
    SettlementStatus,
    SettlementType,
    SplitType,
)


@dataclass(frozen=True)
class SettlementAmountBreakdown:
    """Grouped sums over a set of payment-link transactions"""

    gross: int = 0
    fee: int = 0
    vat: int = 0
    stamp: int = 0
    revenue: int = 0
    count: int = 0

    @property
    def net(self) -> int:
        """Payable amount: gross less every fee component, subtracted once"""
        return self.gross - (self.fee + self.vat + self.stamp)

    @property
    def provider_fee(self) -> int:
        """Part of the fee that is not platform revenue"""
        return self.fee - self.revenue


@dataclass(frozen=True)
class SettlementAnalyticsReport:
    """Per-business reporting figures for one settlement"""

    total_amount: int
    fee: int
    vat: int
    revenue: int
    provider_fee: int
    count: int
    amount: int  # currently due (or settled, when nothing is pending)


@dataclass(frozen=True)
class DueOverview:
    amount: int = 0
    businesses: int = 0


@dataclass(frozen=True)
class SettlementOverview:
    """Summary recomputed by the overview refresher"""

    businesses: int
    total_amount: int
    amount: int
    total_fee: int
    total_vat: int
    revenue: int
    due_today: DueOverview
    past_due: DueOverview


@dataclass(frozen=True)
class FundingWalletBalance:
    available: int
    settlement: int
    locked: int


@dataclass(frozen=True)
class RunOptions:
    """Parameters of a settlement run request"""

    run_type: SettlementType
    business_id: Optional[uuid.UUID] = None
    force_run: bool = False
    add_past: bool = False


@dataclass(frozen=True)
class PendingTransaction:
    """Pending payment-link transaction selected for a lump"""

    id: uuid.UUID
    reference: str
    payment_link: Optional[str]
    amount: int
    fee: int
    vat: int
    stamp: int
    revenue: int

    @property
    def net(self) -> int:
        return self.amount - (self.fee + self.vat + self.stamp)


@dataclass(frozen=True)
class PayoutDestination:
    account_no: str
    account_name: str
    bank_code: str
    bank_name: str = ""


@dataclass(frozen=True)
class SubaccountSplit:
    """Split configured on a payment link"""

    subaccount_id: uuid.UUID
    code: str
    payment_link: str
    destination: PayoutDestination
    split_type: SplitType
    split_value: Decimal


@dataclass
class SubaccountShare:
    """Amount owed to a sub-account out of one lump"""

    subaccount_id: uuid.UUID
    code: str
    payment_link: str
    destination: PayoutDestination
    split_type: SplitType
    split_value: Decimal
    amount: int = 0


@dataclass
class SettlementLump:
    """Grouped payout unit for one business within a settlement run"""

    business_id: uuid.UUID
    business_name: str
    amount: int
    gross: int = 0
    fee: int = 0
    vat: int = 0
    stamp: int = 0
    revenue: int = 0
    transaction_ids: List[uuid.UUID] = field(default_factory=list)
    payment_links: List[str] = field(default_factory=list)
    subaccounts: List[SubaccountShare] = field(default_factory=list)

    @property
    def shared_amount(self) -> int:
        return sum(share.amount for share in self.subaccounts)

    @property
    def amount_to_settle(self) -> int:
        return max(self.amount - self.shared_amount, 0)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view stored in settlement history"""
        return {
            "business": str(self.business_id),
            "business_name": self.business_name,
            "amount": self.amount,
            "total_amount": self.gross,
            "total_fee": self.fee,
            "total_vat": self.vat,
            "total_stamp": self.stamp,
            "total_revenue": self.revenue,
            "shared_amount": self.shared_amount,
            "amount_to_settle": self.amount_to_settle,
            "transactions": [str(t) for t in self.transaction_ids],
            "payment_links": list(self.payment_links),
            "subaccounts": [
                {
                    "subaccount": str(s.subaccount_id),
                    "code": s.code,
                    "payment_link": s.payment_link,
                    "account_no": s.destination.account_no,
                    "bank_code": s.destination.bank_code,
                    "split_type": s.split_type.value,
                    "split_value": str(s.split_value),
                    "amount": s.amount,
                }
                for s in self.subaccounts
            ],
        }


@dataclass
class LumpOutcome:
    """Result of paying out one lump"""

    business_id: uuid.UUID
    success: bool
    amount_settled: int = 0
    amount_shared: int = 0
    failure_kind: Optional[LumpFailureKind] = None
    message: str = ""


@dataclass
class RunSummary:
    """What a finished settlement run did"""

    settlement_id: uuid.UUID
    run_type: SettlementType
    status: SettlementStatus
    outcomes: List[LumpOutcome] = field(default_factory=list)
    history_id: Optional[uuid.UUID] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> List[LumpOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[LumpOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def amount_settled(self) -> int:
        return sum(o.amount_settled for o in self.outcomes)

    @property
    def amount_shared(self) -> int:
        return sum(o.amount_shared for o in self.outcomes)


@dataclass(frozen=True)
class PayoutRequest:
    amount: int
    currency: str
    destination: PayoutDestination
    reference: str
    narration: str


@dataclass(frozen=True)
class PayoutResult:
    success: bool
    provider_reference: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class ResolvedBankAccount:
    account_name: str
    account_no: str
    bank_code: str
    bank_name: str
    platform_code: str
