from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from audit import AuditService
from database import Base
from errors import NotFoundError, ValidationError
from models import (
    AuditChangeType,
    RecurrenceFrequency,
    RecurringRule,
    Transaction,
    TransactionType,
    Wallet,
)
from periods import MonthKey
from recurrence import calculate_next_date
from schemas import RecurringRuleIn, RecurringRuleUpdate, TransactionIn
from services import BudgetService, RecurringRuleService, TransactionService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _rule(frequency: RecurrenceFrequency, start: date) -> RecurringRule:
    return RecurringRule(
        name="Rule",
        amount_cents=100,
        category="Rent",
        frequency=frequency,
        start_date=start,
        next_run_date=start,
    )


def test_calculate_next_date_per_frequency() -> None:
    start = date(2025, 1, 31)
    assert calculate_next_date(_rule(RecurrenceFrequency.daily, start), start) == date(
        2025, 2, 1
    )
    assert calculate_next_date(
        _rule(RecurrenceFrequency.weekly, start), start
    ) == date(2025, 2, 7)
    assert calculate_next_date(
        _rule(RecurrenceFrequency.yearly, start), start
    ) == date(2026, 1, 31)


def test_monthly_rule_snaps_to_month_end_and_recovers() -> None:
    rule = _rule(RecurrenceFrequency.monthly, date(2025, 1, 31))
    feb = calculate_next_date(rule, date(2025, 1, 31))
    assert feb == date(2025, 2, 28)
    assert calculate_next_date(rule, feb) == date(2025, 3, 31)

    leap = _rule(RecurrenceFrequency.yearly, date(2024, 2, 29))
    assert calculate_next_date(leap, date(2024, 2, 29)) == date(2025, 2, 28)


def test_catch_up_posts_each_missed_occurrence() -> None:
    with _session() as session:
        checking = Wallet(name="Checking", balance_cents=500_000)
        session.add(checking)
        session.commit()

        service = RecurringRuleService(session)
        rule = service.create(
            RecurringRuleIn(
                name="Rent",
                amount_cents=90_000,
                category="rent",
                frequency=RecurrenceFrequency.monthly,
                start_date=date(2025, 1, 31),
                wallet_id=checking.id,
            )
        )
        assert rule.category == "Rent"
        assert rule.next_run_date == date(2025, 1, 31)

        assert service.catch_up_all(date(2025, 3, 31)) == 3

        session.refresh(rule)
        assert rule.last_run_date == date(2025, 3, 31)
        assert rule.next_run_date == date(2025, 4, 30)

        posted = session.scalars(
            select(Transaction)
            .where(Transaction.origin_rule_id == rule.id)
            .order_by(Transaction.date)
        ).all()
        assert [t.date for t in posted] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
        ]
        assert {t.name for t in posted} == {"Rent"}

        february = BudgetService(session).require(MonthKey(2025, 2))
        assert [t.actual_cents for t in february.transactions] == [90_000]

        session.refresh(checking)
        assert checking.balance_cents == 500_000 - 3 * 90_000

        assert service.catch_up_all(date(2025, 3, 31)) == 0


def test_catch_up_skips_dates_already_posted() -> None:
    with _session() as session:
        service = RecurringRuleService(session)
        rule = service.create(
            RecurringRuleIn(
                name="Gym",
                amount_cents=3_000,
                category="Fitness",
                frequency=RecurrenceFrequency.weekly,
                start_date=date(2025, 3, 3),
            )
        )
        TransactionService(session).create(
            _manual_entry(rule, date(2025, 3, 3)), origin_rule_id=rule.id
        )

        assert service.catch_up_all(date(2025, 3, 10)) == 1
        dates = session.scalars(
            select(Transaction.date).where(Transaction.origin_rule_id == rule.id)
        ).all()
        assert sorted(dates) == [date(2025, 3, 3), date(2025, 3, 10)]


def _manual_entry(rule: RecurringRule, on: date) -> TransactionIn:
    return TransactionIn(
        name=rule.name,
        actual_cents=rule.amount_cents,
        category=rule.category,
        date=on,
    )


def test_inactive_rules_are_not_posted() -> None:
    with _session() as session:
        service = RecurringRuleService(session)
        rule = service.create(
            RecurringRuleIn(
                name="Paper",
                amount_cents=1_200,
                category="Subscriptions",
                frequency=RecurrenceFrequency.daily,
                start_date=date(2025, 3, 1),
                active=False,
            )
        )
        assert service.catch_up_all(date(2025, 3, 5)) == 0

        service.update(rule.id, RecurringRuleUpdate(active=True))
        assert service.catch_up_all(date(2025, 3, 5)) == 5


def test_recurring_income_credits_wallet() -> None:
    with _session() as session:
        checking = Wallet(name="Checking", balance_cents=0)
        session.add(checking)
        session.commit()

        service = RecurringRuleService(session)
        service.create(
            RecurringRuleIn(
                name="Salary",
                amount_cents=250_000,
                category="Paycheck",
                type=TransactionType.income,
                frequency=RecurrenceFrequency.monthly,
                start_date=date(2025, 3, 1),
                wallet_id=checking.id,
            )
        )
        assert service.catch_up_all(date(2025, 4, 15)) == 2
        session.refresh(checking)
        assert checking.balance_cents == 500_000


def test_recurring_lifecycle_is_audited() -> None:
    with _session() as session:
        service = RecurringRuleService(session)
        rule = service.create(
            RecurringRuleIn(
                name="Netflix",
                amount_cents=1_299,
                category="Subscriptions",
                frequency=RecurrenceFrequency.monthly,
                start_date=date(2025, 3, 5),
            )
        )
        service.update(rule.id, RecurringRuleUpdate(amount_cents=1_499))
        service.catch_up_all(date(2025, 3, 5))
        service.delete(rule.id)

        events = AuditService(session, 1).list(entity_type="recurring")
        assert [e.change_type for e in reversed(events)] == [
            AuditChangeType.recurring_created.value,
            AuditChangeType.recurring_updated.value,
            AuditChangeType.recurring_posted.value,
            AuditChangeType.recurring_deleted.value,
        ]
        posted = next(
            e for e in events if e.change_type == AuditChangeType.recurring_posted.value
        )
        assert posted.details.amount_cents == 1_499
        assert posted.details.next_run_date == "2025-04-05"

        survivors = session.scalars(select(Transaction)).all()
        assert len(survivors) == 1
        assert survivors[0].origin_rule_id is None
        assert service.list() == []


def test_rule_validation_and_lookup_errors() -> None:
    with _session() as session:
        service = RecurringRuleService(session)
        with pytest.raises(NotFoundError):
            service.get(42)
        with pytest.raises(NotFoundError):
            service.create(
                RecurringRuleIn(
                    name="Ghost",
                    amount_cents=100,
                    category="Rent",
                    frequency=RecurrenceFrequency.monthly,
                    start_date=date(2025, 3, 1),
                    wallet_id=99,
                )
            )
        with pytest.raises(ValidationError):
            service.create(
                RecurringRuleIn(
                    name="Sweep",
                    amount_cents=100,
                    category="Transfer",
                    type=TransactionType.transfer,
                    frequency=RecurrenceFrequency.monthly,
                    start_date=date(2025, 3, 1),
                )
            )
