from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"
    savings = "savings"


class SemanticType(str, Enum):
    income = "income"
    expense = "expense"
    savings = "savings"


class WalletType(str, Enum):
    cash = "cash"
    mfs = "mfs"
    bank = "bank"
    credit_card = "credit_card"
    debit_card = "debit_card"
    virtual_card = "virtual_card"
    other = "other"


class AuditEntityType(str, Enum):
    wallet = "wallet"
    recurring = "recurring"
    transaction = "transaction"


class AuditChangeType(str, Enum):
    balance_change = "balance_change"
    recurring_created = "recurring_created"
    recurring_updated = "recurring_updated"
    recurring_deleted = "recurring_deleted"
    recurring_posted = "recurring_posted"
    transaction_created = "transaction_created"
    transaction_updated = "transaction_updated"
    transaction_deleted = "transaction_deleted"


class RecurrenceFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Wallet(Base, TimestampMixin):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[WalletType] = mapped_column(
        SAEnum(WalletType), nullable=False, default=WalletType.cash
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_savings_wallet: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )


class CustomCategory(Base, TimestampMixin):
    __tablename__ = "custom_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    semantic_type: Mapped[SemanticType] = mapped_column(
        SAEnum(SemanticType), nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "slug", name="uq_custom_category_user_slug"),
    )


class BudgetMonth(Base, TimestampMixin):
    __tablename__ = "budget_months"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    rollover_planned_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    rollover_actual_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="budget_month",
        order_by="Transaction.id",
        cascade="all, delete-orphan",
    )
    limits: Mapped[list["CategoryLimit"]] = relationship(
        "CategoryLimit",
        back_populates="budget_month",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )


class CategoryLimit(Base, TimestampMixin):
    __tablename__ = "category_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_month_id: Mapped[int] = mapped_column(
        ForeignKey("budget_months.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    budget_month: Mapped["BudgetMonth"] = relationship(
        "BudgetMonth", back_populates="limits"
    )

    __table_args__ = (
        UniqueConstraint(
            "budget_month_id", "category", name="uq_category_limit_month_category"
        ),
        CheckConstraint("limit_cents >= 0", name="ck_category_limit_positive"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    budget_month_id: Mapped[int] = mapped_column(
        ForeignKey("budget_months.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    planned_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actual_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    source_wallet_id: Mapped[Optional[int]] = mapped_column(ForeignKey("wallets.id"))
    destination_wallet_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("wallets.id")
    )
    linked_goal_id: Mapped[Optional[str]] = mapped_column(String(64))
    applied_kind: Mapped[Optional[str]] = mapped_column(String(20))
    origin_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_rules.id")
    )

    budget_month: Mapped["BudgetMonth"] = relationship(
        "BudgetMonth", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_budget_month", "budget_month_id"),
        Index("ix_transactions_origin_rule", "origin_rule_id", "date"),
        CheckConstraint("actual_cents >= 0", name="ck_transactions_actual_positive"),
    )


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    frequency: Mapped[RecurrenceFrequency] = mapped_column(
        SAEnum(RecurrenceFrequency), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_run_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_run_date: Mapped[Optional[date]] = mapped_column(Date)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    wallet_id: Mapped[Optional[int]] = mapped_column(ForeignKey("wallets.id"))

    __table_args__ = (
        Index("ix_recurring_user_active", "user_id", "active"),
        Index("ix_recurring_next_run", "next_run_date"),
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    change_type: Mapped[str] = mapped_column(String(40), nullable=False)
    details_json: Mapped[Optional[str]] = mapped_column(Text)
    amount_delta_cents: Mapped[Optional[int]] = mapped_column(Integer)
    previous_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    new_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_audit_user_timestamp", "user_id", "timestamp"),
        Index("ix_audit_entity_timestamp", "entity_id", "timestamp"),
        Index("ix_audit_user_type_timestamp", "user_id", "entity_type", "timestamp"),
    )


class RateCounter(Base):
    __tablename__ = "rate_counters"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
