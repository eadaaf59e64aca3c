from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from classification import Classification, Classifier, WalletsArg
from periods import MonthKey
from taxonomy import CategoryTaxonomy


@dataclass(frozen=True)
class DailySeries:
    income: list[int] = field(default_factory=list)
    expenses: list[int] = field(default_factory=list)
    savings: list[int] = field(default_factory=list)
    balance: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[int]]:
        return {
            "income": list(self.income),
            "expenses": list(self.expenses),
            "savings": list(self.savings),
            "balance": list(self.balance),
        }


@dataclass(frozen=True)
class MonthlySummary:
    income: int = 0
    expenses: int = 0
    savings: int = 0
    balance: int = 0
    transfers: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    by_day: DailySeries = field(default_factory=DailySeries)

    def totals(self) -> dict[str, int]:
        return {
            "income": self.income,
            "expenses": self.expenses,
            "savings": self.savings,
            "balance": self.balance,
        }


def _category_key(raw: Optional[str], taxonomy: Optional[CategoryTaxonomy]) -> str:
    category = (raw or "").strip()
    if taxonomy is not None:
        known = taxonomy.get(category)
        if known is not None:
            return known.id
    return category


def _daily_series(
    classified: list[tuple[Any, Classification]], month: MonthKey
) -> DailySeries:
    days = month.days_in_month
    day_income = [0] * days
    day_expenses = [0] * days
    day_savings = [0] * days
    for txn, kind in classified:
        if not month.contains(txn.date):
            continue
        idx = txn.date.day - 1
        if kind == Classification.income:
            day_income[idx] += txn.actual_cents
        elif kind == Classification.expense:
            day_expenses[idx] += txn.actual_cents
        elif kind == Classification.savings:
            day_savings[idx] += txn.actual_cents

    income: list[int] = []
    expenses: list[int] = []
    savings: list[int] = []
    balance: list[int] = []
    running_income = running_expenses = running_savings = running_balance = 0
    for idx in range(days):
        running_income += day_income[idx]
        running_expenses += day_expenses[idx]
        running_savings += day_savings[idx]
        # starts from zero each month; rollover is reported separately
        running_balance = (
            running_balance + day_income[idx] - day_expenses[idx] - day_savings[idx]
        )
        income.append(running_income)
        expenses.append(running_expenses)
        savings.append(running_savings)
        balance.append(running_balance)
    return DailySeries(
        income=income, expenses=expenses, savings=savings, balance=balance
    )


def aggregate(
    transactions: Iterable[Any],
    wallets: WalletsArg = None,
    month: Optional[MonthKey] = None,
    *,
    taxonomy: Optional[CategoryTaxonomy] = None,
    classifier: Optional[Classifier] = None,
) -> MonthlySummary:
    """Reduce a month's transactions into totals, category buckets and daily series.

    ``by_day`` is only produced when ``month`` is given; transactions dated
    outside that month still count toward the totals.
    """
    classifier = classifier or Classifier(wallets, taxonomy)
    if taxonomy is None:
        taxonomy = classifier.taxonomy
    classified = [(txn, classifier(txn)) for txn in transactions]

    totals = {kind: 0 for kind in Classification}
    by_category: dict[str, int] = {}
    for txn, kind in classified:
        totals[kind] += txn.actual_cents
        if kind == Classification.expense:
            key = _category_key(txn.category, taxonomy)
            by_category[key] = by_category.get(key, 0) + txn.actual_cents

    income = totals[Classification.income]
    expenses = totals[Classification.expense]
    savings = totals[Classification.savings]
    return MonthlySummary(
        income=income,
        expenses=expenses,
        savings=savings,
        balance=income - expenses - savings,
        transfers=totals[Classification.transfer],
        by_category=dict(sorted(by_category.items())),
        by_day=_daily_series(classified, month) if month else DailySeries(),
    )


def category_breakdown(
    summary: MonthlySummary, taxonomy: Optional[CategoryTaxonomy] = None
) -> list[dict[str, object]]:
    breakdown = []
    total = 0
    for category, amount in summary.by_category.items():
        if amount <= 0:
            continue
        total += amount
        label = taxonomy.label(category) if taxonomy is not None else category
        breakdown.append(
            {"category": category, "name": label, "amount_cents": amount, "percent": 0}
        )
    breakdown.sort(key=lambda r: (-int(r["amount_cents"]), str(r["category"])))
    for item in breakdown:
        amount = int(item["amount_cents"])
        item["percent"] = (amount / total * 100) if total else 0
    return breakdown
