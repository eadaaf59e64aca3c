import datetime as dt
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    BudgetMonth,
    RecurrenceFrequency,
    SemanticType,
    TransactionType,
    WalletType,
)

RecordId = Union[int, str]


class WalletRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RecordId
    name: str
    type: WalletType = WalletType.cash
    balance_cents: int = 0
    is_savings_wallet: bool = False


class TransactionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RecordId
    name: str
    planned_cents: int = 0
    actual_cents: int
    category: str
    type: Optional[TransactionType] = None
    date: dt.date
    occurred_at: Optional[dt.datetime] = None
    source_wallet_id: Optional[RecordId] = None
    destination_wallet_id: Optional[RecordId] = None
    linked_goal_id: Optional[str] = None
    origin_rule_id: Optional[int] = None


class BudgetMonthRecord(BaseModel):
    id: Optional[int] = None
    year: int
    month: int = Field(..., ge=1, le=12)
    rollover_planned_cents: int = 0
    rollover_actual_cents: int = 0
    category_limits: dict[str, int] = Field(default_factory=dict)
    transactions: list[TransactionRecord] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @classmethod
    def from_model(cls, budget: BudgetMonth) -> "BudgetMonthRecord":
        return cls(
            id=budget.id,
            year=budget.year,
            month=budget.month,
            rollover_planned_cents=budget.rollover_planned_cents,
            rollover_actual_cents=budget.rollover_actual_cents,
            category_limits={row.category: row.limit_cents for row in budget.limits},
            transactions=[
                TransactionRecord.model_validate(txn) for txn in budget.transactions
            ],
            created_at=budget.created_at,
            updated_at=budget.updated_at,
        )


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    planned_cents: int = Field(default=0, ge=0)
    actual_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    date: dt.date
    occurred_at: Optional[dt.datetime] = None
    source_wallet_id: Optional[int] = None
    destination_wallet_id: Optional[int] = None
    linked_goal_id: Optional[str] = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _check_transfer_wallets(self) -> "TransactionIn":
        if self.type == TransactionType.transfer:
            if self.destination_wallet_id is None:
                raise ValueError("Transfers require a destination wallet")
            if self.destination_wallet_id == self.source_wallet_id:
                raise ValueError("Transfer source and destination must differ")
        return self


class TransactionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    planned_cents: Optional[int] = Field(default=None, ge=0)
    actual_cents: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)


class BudgetUpdateIn(BaseModel):
    rollover_planned_cents: Optional[int] = None
    rollover_actual_cents: Optional[int] = None
    category_limits: Optional[dict[str, int]] = None

    @model_validator(mode="after")
    def _check_limits(self) -> "BudgetUpdateIn":
        for category, limit in (self.category_limits or {}).items():
            if limit < 0:
                raise ValueError(f"Limit for {category} must not be negative")
        return self


class LimitIn(BaseModel):
    limit_cents: int = Field(..., ge=0)


class CategoryIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    label: Optional[str] = Field(default=None, max_length=100)
    type: SemanticType = SemanticType.expense


class CategoryOut(BaseModel):
    id: str
    label: str
    type: SemanticType
    custom: bool = False


class RecurringRuleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    frequency: RecurrenceFrequency
    start_date: dt.date
    active: bool = True
    wallet_id: Optional[int] = None


class RecurringRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    frequency: Optional[RecurrenceFrequency] = None
    active: Optional[bool] = None
    wallet_id: Optional[int] = None


class RecurringRuleRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    amount_cents: int
    category: str
    type: Optional[TransactionType] = None
    frequency: RecurrenceFrequency
    start_date: dt.date
    next_run_date: dt.date
    last_run_date: Optional[dt.date] = None
    active: bool = True
    wallet_id: Optional[int] = None
