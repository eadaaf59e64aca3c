import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import LedgerError
from models import (
    AuditChangeType,
    AuditEntityType,
    RecurrenceFrequency,
    RecurringRule,
    Transaction,
)

logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def calculate_next_date(rule: RecurringRule, from_date: date) -> date:
    """Next occurrence after ``from_date``.

    Monthly and yearly rules stay anchored to the start date's day and snap
    to the last day of shorter months (Jan 31 -> Feb 28 -> Mar 31).
    """
    if rule.frequency == RecurrenceFrequency.daily:
        return from_date + timedelta(days=1)
    if rule.frequency == RecurrenceFrequency.weekly:
        return from_date + timedelta(weeks=1)
    if rule.frequency == RecurrenceFrequency.monthly:
        return _add_months(from_date, 1, desired_day=rule.start_date.day)
    return _add_months(from_date, 12, desired_day=rule.start_date.day)


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def catch_up_rule(self, rule: RecurringRule, today: Optional[date] = None) -> int:
        today = today or local_today()
        iterations = 0
        posted_count = 0
        max_iterations = 365
        while rule.next_run_date <= today and iterations < max_iterations:
            occurrence_date = rule.next_run_date
            try:
                posted = self._post_occurrence(rule, occurrence_date)
            except LedgerError as exc:
                self.session.rollback()
                logger.warning(
                    "recurring_post_failed: rule=%s date=%s error=%s",
                    rule.id,
                    occurrence_date,
                    exc,
                )
                break
            if posted:
                posted_count += 1
            rule.last_run_date = occurrence_date
            rule.next_run_date = calculate_next_date(rule, occurrence_date)
            self.session.commit()
            iterations += 1
        return posted_count

    def post_due_rules(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringRule)
            .where(
                RecurringRule.active.is_(True),
                RecurringRule.next_run_date <= today,
            )
            .order_by(RecurringRule.next_run_date, RecurringRule.id)
        )
        rules = self.session.scalars(stmt).all()
        count = 0
        for rule in rules:
            count += self.catch_up_rule(rule, today)
        return count

    def _post_occurrence(self, rule: RecurringRule, occurrence_date: date) -> bool:
        from audit import RecurringDetails
        from schemas import TransactionIn
        from services import TransactionService

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == rule.user_id,
                Transaction.origin_rule_id == rule.id,
                Transaction.date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        service = TransactionService(self.session, rule.user_id)
        txn = service.create(
            TransactionIn(
                name=rule.name,
                actual_cents=rule.amount_cents,
                category=rule.category,
                type=rule.type,
                date=occurrence_date,
                source_wallet_id=rule.wallet_id,
            ),
            origin_rule_id=rule.id,
        )
        service.audit.record(
            AuditEntityType.recurring,
            rule.id,
            rule.name,
            AuditChangeType.recurring_posted,
            details=RecurringDetails(
                frequency=rule.frequency.value,
                amount_cents=rule.amount_cents,
                category=rule.category,
                next_run_date=calculate_next_date(rule, occurrence_date).isoformat(),
                transaction_id=str(txn.id),
            ),
            amount_delta_cents=rule.amount_cents,
        )
        logger.info(
            "recurring_posted: rule=%s date=%s transaction=%s",
            rule.id,
            occurrence_date,
            txn.id,
        )
        return True
