from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

from aggregation import MonthlySummary
from periods import MonthKey

Number = Union[int, float]


def round_half_up(value: float) -> int:
    """Round .5 toward positive infinity, matching the dashboard's rounding."""
    return int(math.floor(value + 0.5))


def trend(current: Number, previous: Number) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    # abs() keeps the direction of change when the previous value is negative
    return round_half_up(100 * (current - previous) / abs(previous))


def previous_month(key: MonthKey) -> MonthKey:
    return key.previous()


@dataclass(frozen=True)
class TrendSet:
    income: int = 0
    expenses: int = 0
    savings: int = 0
    balance: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "income": self.income,
            "expenses": self.expenses,
            "savings": self.savings,
            "balance": self.balance,
        }


def compare(current: MonthlySummary, previous: Optional[MonthlySummary]) -> TrendSet:
    previous = previous or MonthlySummary()
    return TrendSet(
        income=trend(current.income, previous.income),
        expenses=trend(current.expenses, previous.expenses),
        savings=trend(current.savings, previous.savings),
        balance=trend(current.balance, previous.balance),
    )


@dataclass(frozen=True)
class MonthOverview:
    month: MonthKey
    summary: MonthlySummary
    previous: MonthlySummary
    trends: TrendSet
    start_balance: int

    def as_dict(self) -> dict[str, object]:
        return {
            "year": self.month.year,
            "month": self.month.month,
            "month_name": self.month.name,
            "stats": {
                **self.summary.totals(),
                "transfers": self.summary.transfers,
                "start_balance": self.start_balance,
            },
            "trends": self.trends.as_dict(),
            "graphs": self.summary.by_day.as_dict(),
            "by_category": dict(self.summary.by_category),
        }


def overview(
    month: MonthKey,
    current: MonthlySummary,
    previous: Optional[MonthlySummary],
    *,
    rollover_actual_cents: Optional[int] = None,
) -> MonthOverview:
    """Bundle a month's summary with its prior-month trends.

    ``rollover_actual_cents`` is carried in from outside the engine and is only
    surfaced as ``start_balance``; it never feeds the month's flow balance.
    """
    previous = previous or MonthlySummary()
    return MonthOverview(
        month=month,
        summary=current,
        previous=previous,
        trends=compare(current, previous),
        start_balance=rollover_actual_cents or 0,
    )


def category_deltas(
    current: MonthlySummary,
    previous: Optional[MonthlySummary],
    *,
    limit: int = 8,
) -> dict[str, list[dict[str, object]]]:
    prev_totals = previous.by_category if previous else {}
    all_categories = set(current.by_category) | set(prev_totals)
    if not all_categories:
        return {"increases": [], "decreases": []}

    deltas: list[dict[str, object]] = []
    for category in sorted(all_categories):
        cur = current.by_category.get(category, 0)
        prev_amount = prev_totals.get(category, 0)
        deltas.append(
            {
                "category": category,
                "current_cents": cur,
                "previous_cents": prev_amount,
                "delta_cents": cur - prev_amount,
                "trend": trend(cur, prev_amount),
            }
        )

    increases = [
        d for d in sorted(deltas, key=lambda r: r["delta_cents"], reverse=True)
        if int(d["delta_cents"]) > 0
    ][:limit]
    decreases = [
        d for d in sorted(deltas, key=lambda r: r["delta_cents"])
        if int(d["delta_cents"]) < 0
    ][:limit]
    return {"increases": increases, "decreases": decreases}
