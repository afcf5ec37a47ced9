"""String enums shared by the domain, persistence and API layers"""

from enum import Enum


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESSFUL = "successful"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    PAID = "paid"
    UNRECONCILED = "unreconciled"  # payout sent, settlement writes not recorded


# Statuses that count towards settlement aggregates
SUCCESSFUL_STATUSES = (
    TransactionStatus.SUCCESSFUL,
    TransactionStatus.COMPLETED,
    TransactionStatus.PAID,
)


class TransactionFeature(str, Enum):
    PAYMENT_LINK = "payment-link"
    BANK_SETTLEMENT = "bank-settlement"
    BANK_TRANSFER = "bank-transfer"
    WALLET_TRANSFER = "wallet-transfer"
    WALLET_WITHDRAW = "wallet-withdraw"
    WALLET_BILL = "wallet-bill"
    WALLET_REFUND = "wallet-refund"


class SettleStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


class SettleDestination(str, Enum):
    PENDING = "pending"
    WALLET = "wallet"
    BANK = "bank"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class SettlementType(str, Enum):
    FULL = "full-settlement"
    BUSINESS = "business-settlement"


class SplitType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class DueBucket(str, Enum):
    TODAY = "today"
    PAST = "past"
    FUTURE = "future"


class LumpFailureKind(str, Enum):
    SUBACCOUNT_PAYOUT = "subaccount_payout"
    PAYOUT = "payout"
    BANK_RESOLUTION = "bank_resolution"
    PERSISTENCE = "persistence"
    UNEXPECTED = "unexpected"
