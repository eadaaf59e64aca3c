import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


@dataclass(frozen=True, order=True)
class MonthKey:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")

    @classmethod
    def from_date(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)

    @property
    def name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days_in_month)

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def add_months(self, count: int) -> "MonthKey":
        month_index = (self.year * 12) + (self.month - 1) + count
        return MonthKey(month_index // 12, (month_index % 12) + 1)

    def previous(self) -> "MonthKey":
        return self.add_months(-1)

    def next(self) -> "MonthKey":
        return self.add_months(1)

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def __str__(self) -> str:
        return f"{self.name} {self.year}"


def parse_month(value: Union[str, int]) -> int:
    """Accept a month number or an English month name (full or 3-letter)."""
    if isinstance(value, int):
        month = value
    else:
        raw = value.strip()
        if raw.isdigit():
            month = int(raw)
        else:
            lowered = raw.lower()
            matches = [
                idx + 1
                for idx, name in enumerate(MONTH_NAMES)
                if name.lower() == lowered or name[:3].lower() == lowered
            ]
            if not matches:
                raise ValueError(f"Unknown month: {value}")
            month = matches[0]
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {value}")
    return month


def resolve_month(
    month: Optional[Union[str, int]],
    year: Optional[Union[str, int]],
    *,
    today: Optional[date] = None,
) -> MonthKey:
    today = today or date.today()
    if month is None and year is None:
        return MonthKey.from_date(today)
    if month is None or year is None:
        raise ValueError("Month and year must be given together")
    return MonthKey(int(year), parse_month(month))
