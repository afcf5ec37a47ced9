"""SQLAlchemy ORM models for the settlement ledger

Money columns hold integer minor units (``*_minor``).
"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Business(Base):
    """Merchant receiving settlements"""

    __tablename__ = "businesses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    currency = Column(Text, nullable=False, default="NGN")
    settle_into = Column(Text, nullable=False, default="bank")  # bank | wallet
    settlement_days = Column(Integer, nullable=False, default=0)
    next_payout = Column(Date, nullable=True)
    account_no = Column(Text, nullable=True)
    account_name = Column(Text, nullable=True)
    bank_code = Column(Text, nullable=True)
    bank_name = Column(Text, nullable=True)
    wallet_balance_minor = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    subaccounts = relationship("Subaccount", back_populates="business", cascade="all, delete-orphan")


class Subaccount(Base):
    """Split beneficiary attached to one of a business's payment links"""

    __tablename__ = "subaccounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(Text, nullable=False, unique=True)
    payment_link = Column(Text, nullable=False, index=True)
    account_no = Column(Text, nullable=False)
    account_name = Column(Text, nullable=False)
    bank_code = Column(Text, nullable=False)
    bank_name = Column(Text, nullable=True)
    split_type = Column(Text, nullable=False, default="percentage")  # percentage | flat
    split_value = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    business = relationship("Business", back_populates="subaccounts")


class Transaction(Base):
    """Monetary event; payment-link transactions feed settlements"""

    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reference = Column(Text, nullable=False, unique=True)
    merchant_reference = Column(Text, nullable=True)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    settlement_id = Column(Uuid, ForeignKey("settlements.id"), nullable=True, index=True)
    payment_link = Column(Text, nullable=True)
    feature = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    currency = Column(Text, nullable=False, default="NGN")
    amount_minor = Column(BigInteger, nullable=False, default=0)
    fee_minor = Column(BigInteger, nullable=False, default=0)
    vat_fee_minor = Column(BigInteger, nullable=False, default=0)
    stamp_fee_minor = Column(BigInteger, nullable=False, default=0)
    revenue_minor = Column(BigInteger, nullable=False, default=0)
    settle_status = Column(Text, nullable=False, default="pending")  # pending | settled
    settle_amount_minor = Column(BigInteger, nullable=False, default=0)
    settle_destination = Column(Text, nullable=False, default="pending")
    settled_at = Column(DateTime(timezone=True), nullable=True)
    provider_reference = Column(Text, nullable=True)
    narration = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Settlement(Base):
    """Settlement period and its running state"""

    __tablename__ = "settlements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    period_date = Column(Date, nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")
    is_running = Column(Boolean, nullable=False, default=False)
    is_settled = Column(Boolean, nullable=False, default=False)
    total_amount_minor = Column(BigInteger, nullable=False, default=0)

    # Overview
    overview_businesses = Column(Integer, nullable=False, default=0)
    overview_total_amount_minor = Column(BigInteger, nullable=False, default=0)
    overview_amount_minor = Column(BigInteger, nullable=False, default=0)
    overview_total_fee_minor = Column(BigInteger, nullable=False, default=0)
    overview_total_vat_minor = Column(BigInteger, nullable=False, default=0)
    overview_revenue_minor = Column(BigInteger, nullable=False, default=0)
    due_today_amount_minor = Column(BigInteger, nullable=False, default=0)
    due_today_businesses = Column(Integer, nullable=False, default=0)
    past_due_amount_minor = Column(BigInteger, nullable=False, default=0)
    past_due_businesses = Column(Integer, nullable=False, default=0)

    # Analytics
    settled_amount_minor = Column(BigInteger, nullable=False, default=0)
    settled_shared_minor = Column(BigInteger, nullable=False, default=0)

    settled_at = Column(DateTime(timezone=True), nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    members = relationship("SettlementMember", back_populates="settlement", cascade="all, delete-orphan")
    histories = relationship(
        "SettlementHistory",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementHistory.created_at",
    )


class SettlementMember(Base):
    """Business taking part in a settlement, with its payout date"""

    __tablename__ = "settlement_members"
    __table_args__ = (UniqueConstraint("settlement_id", "business_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    settlement_id = Column(Uuid, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    payout_date = Column(Date, nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)  # set once paid in this settlement

    settlement = relationship("Settlement", back_populates="members")
    business = relationship("Business")


class SettledSubaccount(Base):
    """Sub-account payout, keyed to the pending transactions it was computed from"""

    __tablename__ = "settled_subaccounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    settlement_id = Column(Uuid, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True)
    subaccount_id = Column(Uuid, ForeignKey("subaccounts.id"), nullable=False)
    amount_minor = Column(BigInteger, nullable=False, default=0)
    transaction_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SettlementHistory(Base):
    """Append-only record of one settlement run"""

    __tablename__ = "settlement_histories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    settlement_id = Column(Uuid, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True)
    run_type = Column(Text, nullable=False)
    amount_settled_minor = Column(BigInteger, nullable=False, default=0)
    amount_shared_minor = Column(BigInteger, nullable=False, default=0)
    currency = Column(Text, nullable=False, default="NGN")
    groups = Column(JSON, nullable=False)
    analytics = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    settlement = relationship("Settlement", back_populates="histories")


class FundingWallet(Base):
    """Platform treasury wallet that settlements are paid from"""

    __tablename__ = "funding_wallet"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(Text, nullable=False, unique=True)
    currency = Column(Text, nullable=False, default="NGN")
    available_minor = Column(BigInteger, nullable=False, default=0)
    settlement_minor = Column(BigInteger, nullable=False, default=0)
    locked_minor = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
