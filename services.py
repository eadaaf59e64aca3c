from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from aggregation import MonthlySummary, aggregate, category_breakdown
from audit import (
    AuditRecorder,
    RecurringDetails,
    SqlAuditSink,
    TransactionDetails,
    WalletDetails,
)
from classification import Classification, Classifier
from errors import NotFoundError, ValidationError
from limits import LimitReport, limit_report
from models import (
    AuditChangeType,
    AuditEntityType,
    BudgetMonth,
    CategoryLimit,
    CustomCategory,
    RecurringRule,
    Transaction,
    TransactionType,
    Wallet,
)
from periods import MonthKey
from schemas import (
    BudgetMonthRecord,
    BudgetUpdateIn,
    CategoryIn,
    RecurringRuleIn,
    RecurringRuleUpdate,
    TransactionIn,
    TransactionRecord,
    TransactionUpdate,
    WalletRecord,
)
from taxonomy import BUILTIN_CATEGORIES, CategoryDef, CategoryTaxonomy
from trends import MonthOverview, category_deltas, overview

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class WalletService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == self.user_id)
            .order_by(Wallet.name, Wallet.id)
        )
        return self.session.scalars(stmt).all()

    def records(self) -> list[WalletRecord]:
        return [WalletRecord.model_validate(w) for w in self.list_all()]

    def get(self, wallet_id: int) -> Wallet:
        wallet = self.session.get(Wallet, wallet_id)
        if not wallet or wallet.user_id != self.user_id:
            raise NotFoundError("Wallet not found")
        return wallet

    def adjust_balance(
        self,
        wallet_id: int,
        delta_cents: int,
        *,
        audit: AuditRecorder,
        reason: str,
        transaction_id: Optional[int] = None,
    ) -> Wallet:
        wallet = self.get(wallet_id)
        previous = wallet.balance_cents
        wallet.balance_cents = previous + delta_cents
        audit.record(
            AuditEntityType.wallet,
            wallet.id,
            wallet.name,
            AuditChangeType.balance_change,
            details=WalletDetails(
                wallet_type=wallet.type.value,
                is_savings_wallet=wallet.is_savings_wallet,
                reason=reason,
                transaction_id=str(transaction_id) if transaction_id else None,
            ),
            amount_delta_cents=delta_cents,
            previous_balance_cents=previous,
            new_balance_cents=wallet.balance_cents,
        )
        return wallet


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_custom(self, include_deleted: bool = False) -> list[CustomCategory]:
        stmt = (
            select(CustomCategory)
            .where(CustomCategory.user_id == self.user_id)
            .order_by(CustomCategory.label, CustomCategory.id)
        )
        if not include_deleted:
            stmt = stmt.where(CustomCategory.deleted_at.is_(None))
        return self.session.scalars(stmt).all()

    def taxonomy(self) -> CategoryTaxonomy:
        return CategoryTaxonomy(
            CategoryDef(c.slug, c.label, c.semantic_type, custom=True)
            for c in self.list_custom()
        )

    def _find_custom(self, slug: str, *, deleted: bool) -> Optional[CustomCategory]:
        stmt = select(CustomCategory).where(
            CustomCategory.user_id == self.user_id,
            func.lower(CustomCategory.slug) == slug.strip().lower(),
        )
        if deleted:
            stmt = stmt.where(CustomCategory.deleted_at.is_not(None))
        else:
            stmt = stmt.where(CustomCategory.deleted_at.is_(None))
        return self.session.scalar(stmt)

    def add_custom(self, data: CategoryIn) -> CustomCategory:
        slug = data.id.strip()
        label = (data.label or "").strip() or slug
        builtin = any(c.key == slug.casefold() for c in BUILTIN_CATEGORIES)
        if builtin or self._find_custom(slug, deleted=False):
            raise ValidationError(f'Category "{label}" already exists')

        category = self._find_custom(slug, deleted=True)
        if category:
            category.deleted_at = None
            category.slug = slug
            category.label = label
            category.semantic_type = data.type
        else:
            category = CustomCategory(
                user_id=self.user_id,
                slug=slug,
                label=label,
                semantic_type=data.type,
            )
            self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def remove_custom(self, category_id: str) -> None:
        """Soft-delete a custom category and clear its limit entries.

        Transactions keep their category string; the limit tracker hides the
        stale reference while aggregation keeps counting the spend.
        """
        category = self._find_custom(category_id, deleted=False)
        if not category:
            raise NotFoundError("Category not found")
        category.deleted_at = datetime.utcnow()
        month_ids = select(BudgetMonth.id).where(BudgetMonth.user_id == self.user_id)
        self.session.execute(
            delete(CategoryLimit).where(
                CategoryLimit.budget_month_id.in_(month_ids),
                func.lower(CategoryLimit.category) == category.slug.lower(),
            )
        )
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, key: MonthKey) -> Optional[BudgetMonth]:
        stmt = (
            select(BudgetMonth)
            .options(
                selectinload(BudgetMonth.transactions),
                selectinload(BudgetMonth.limits),
            )
            .where(
                BudgetMonth.user_id == self.user_id,
                BudgetMonth.year == key.year,
                BudgetMonth.month == key.month,
            )
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def require(self, key: MonthKey) -> BudgetMonth:
        budget = self.get(key)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _get_or_add(self, key: MonthKey) -> BudgetMonth:
        budget = self.get(key)
        if budget:
            return budget
        budget = BudgetMonth(
            user_id=self.user_id,
            year=key.year,
            month=key.month,
            rollover_planned_cents=0,
            rollover_actual_cents=0,
        )
        self.session.add(budget)
        self.session.flush()
        return budget

    def get_or_create(self, key: MonthKey) -> BudgetMonth:
        budget = self._get_or_add(key)
        self.session.commit()
        return budget

    def record(self, key: MonthKey) -> BudgetMonthRecord:
        return BudgetMonthRecord.from_model(self.get_or_create(key))

    def update(self, key: MonthKey, data: BudgetUpdateIn) -> BudgetMonth:
        budget = self._get_or_add(key)
        if data.rollover_planned_cents is not None:
            budget.rollover_planned_cents = data.rollover_planned_cents
        if data.rollover_actual_cents is not None:
            budget.rollover_actual_cents = data.rollover_actual_cents
        if data.category_limits is not None:
            wanted = {
                k.strip(): v for k, v in data.category_limits.items() if k.strip()
            }
            for row in list(budget.limits):
                if row.category not in wanted:
                    budget.limits.remove(row)
            existing = {row.category: row for row in budget.limits}
            for category, limit in wanted.items():
                if category in existing:
                    existing[category].limit_cents = limit
                else:
                    budget.limits.append(
                        CategoryLimit(category=category, limit_cents=limit)
                    )
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def set_limit(
        self, key: MonthKey, category: str, limit_cents: int
    ) -> CategoryLimit:
        if limit_cents < 0:
            raise ValidationError("Limit must not be negative")
        budget = self._get_or_add(key)
        for row in budget.limits:
            if row.category.casefold() == category.casefold():
                row.limit_cents = limit_cents
                self.session.commit()
                return row
        row = CategoryLimit(category=category.strip(), limit_cents=limit_cents)
        budget.limits.append(row)
        self.session.commit()
        return row

    def remove_limit(self, key: MonthKey, category: str) -> None:
        budget = self.require(key)
        for row in list(budget.limits):
            if row.category.casefold() == category.casefold():
                budget.limits.remove(row)
                self.session.commit()
                return
        raise NotFoundError("Limit not found")

    def _classifier(self) -> Classifier:
        return Classifier(
            WalletService(self.session, self.user_id).records(),
            CategoryService(self.session, self.user_id).taxonomy(),
        )

    def summary(
        self, key: MonthKey, *, classifier: Optional[Classifier] = None
    ) -> MonthlySummary:
        budget = self.get(key)
        if not budget:
            return MonthlySummary()
        classifier = classifier or self._classifier()
        return aggregate(budget.transactions, month=key, classifier=classifier)

    def overview(self, key: MonthKey) -> MonthOverview:
        budget = self.get_or_create(key)
        classifier = self._classifier()
        current = aggregate(budget.transactions, month=key, classifier=classifier)
        previous = self.summary(key.previous(), classifier=classifier)
        return overview(
            key,
            current,
            previous,
            rollover_actual_cents=budget.rollover_actual_cents,
        )

    def category_breakdown(self, key: MonthKey) -> list[dict[str, object]]:
        classifier = self._classifier()
        return category_breakdown(
            self.summary(key, classifier=classifier), classifier.taxonomy
        )

    def category_deltas(
        self, key: MonthKey, *, limit: int = 8
    ) -> dict[str, list[dict[str, object]]]:
        classifier = self._classifier()
        return category_deltas(
            self.summary(key, classifier=classifier),
            self.summary(key.previous(), classifier=classifier),
            limit=limit,
        )

    def limit_report(self, key: MonthKey) -> LimitReport:
        budget = self.get(key)
        classifier = self._classifier()
        if not budget:
            return limit_report({}, {}, classifier.taxonomy)
        summary = aggregate(budget.transactions, month=key, classifier=classifier)
        limits = {row.category: row.limit_cents for row in budget.limits}
        return limit_report(limits, summary.by_category, classifier.taxonomy)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.audit = AuditRecorder(SqlAuditSink(session, self.user_id))
        self.wallets = WalletService(session, self.user_id)

    def _classifier(self) -> Classifier:
        return Classifier(
            self.wallets.records(),
            CategoryService(self.session, self.user_id).taxonomy(),
        )

    def _posted_kind(self, txn: Transaction) -> Classification:
        if txn.applied_kind:
            return Classification(txn.applied_kind)
        return self._classifier()(txn)

    def _wallet_deltas(
        self, txn: Transaction, kind: Classification
    ) -> list[tuple[int, int]]:
        amount = txn.actual_cents
        deltas: list[tuple[int, int]] = []
        if kind == Classification.income:
            if txn.source_wallet_id is not None:
                deltas.append((txn.source_wallet_id, amount))
            return deltas
        if txn.source_wallet_id is not None:
            deltas.append((txn.source_wallet_id, -amount))
        moves_money = kind in (Classification.transfer, Classification.savings)
        if moves_money and txn.destination_wallet_id is not None:
            deltas.append((txn.destination_wallet_id, amount))
        return deltas

    def _apply_wallet_effects(
        self, txn: Transaction, *, reverse: bool, reason: str
    ) -> None:
        """Post or reverse a transaction against its wallets.

        Reversals use the classification stored at posting time, not the
        current taxonomy or wallet flags.
        """
        if reverse:
            sign = -1
            kind = self._posted_kind(txn)
        else:
            sign = 1
            kind = self._classifier()(txn)
            txn.applied_kind = kind.value
        for wallet_id, delta in self._wallet_deltas(txn, kind):
            if delta == 0:
                continue
            self.wallets.adjust_balance(
                wallet_id,
                sign * delta,
                audit=self.audit,
                reason=reason,
                transaction_id=txn.id,
            )

    def _details(
        self, txn: Transaction, reason: Optional[str] = None
    ) -> TransactionDetails:
        return TransactionDetails(
            category=txn.category,
            transaction_type=txn.type.value if txn.type else None,
            date=txn.date.isoformat(),
            budget_month=f"{txn.date.year:04d}-{txn.date.month:02d}",
            reason=reason,
        )

    def create(
        self, data: TransactionIn, *, origin_rule_id: Optional[int] = None
    ) -> Transaction:
        taxonomy = CategoryService(self.session, self.user_id).taxonomy()
        category = taxonomy.resolve(data.category)
        for wallet_id in (data.source_wallet_id, data.destination_wallet_id):
            if wallet_id is not None:
                self.wallets.get(wallet_id)

        budget = BudgetService(self.session, self.user_id)._get_or_add(
            MonthKey.from_date(data.date)
        )
        txn = Transaction(
            user_id=self.user_id,
            name=data.name.strip(),
            planned_cents=data.planned_cents,
            actual_cents=data.actual_cents,
            category=category,
            type=data.type,
            date=data.date,
            occurred_at=data.occurred_at,
            source_wallet_id=data.source_wallet_id,
            destination_wallet_id=data.destination_wallet_id,
            linked_goal_id=data.linked_goal_id,
            origin_rule_id=origin_rule_id,
        )
        budget.transactions.append(txn)
        self.session.flush()
        self._apply_wallet_effects(
            txn, reverse=False, reason=f"Transaction: {txn.name}"
        )
        self.audit.record(
            AuditEntityType.transaction,
            txn.id,
            txn.name,
            AuditChangeType.transaction_created,
            details=self._details(txn),
            amount_delta_cents=txn.actual_cents,
        )
        self.session.commit()
        self.session.refresh(txn)
        logger.info("transaction_created: id=%s month=%s", txn.id, budget.id)
        return txn

    def get(self, transaction_id: int, key: Optional[MonthKey] = None) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        if key is not None:
            budget = BudgetService(self.session, self.user_id).get(key)
            if not budget:
                raise NotFoundError("Budget not found")
            stmt = stmt.where(Transaction.budget_month_id == budget.id)
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list_for_month(self, key: MonthKey) -> list[Transaction]:
        budget = BudgetService(self.session, self.user_id).get(key)
        if not budget:
            return []
        return list(budget.transactions)

    def update(
        self,
        transaction_id: int,
        data: TransactionUpdate,
        key: Optional[MonthKey] = None,
    ) -> Transaction:
        txn = self.get(transaction_id, key)
        self._apply_wallet_effects(txn, reverse=True, reason=f"Edited: {txn.name}")
        if data.name is not None:
            txn.name = data.name.strip()
        if data.planned_cents is not None:
            txn.planned_cents = data.planned_cents
        if data.actual_cents is not None:
            txn.actual_cents = data.actual_cents
        if data.category is not None:
            taxonomy = CategoryService(self.session, self.user_id).taxonomy()
            txn.category = taxonomy.resolve(data.category)
        self._apply_wallet_effects(txn, reverse=False, reason=f"Edited: {txn.name}")
        self.audit.record(
            AuditEntityType.transaction,
            txn.id,
            txn.name,
            AuditChangeType.transaction_updated,
            details=self._details(txn),
            amount_delta_cents=txn.actual_cents,
        )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(
        self, transaction_id: int, key: Optional[MonthKey] = None
    ) -> TransactionRecord:
        txn = self.get(transaction_id, key)
        record = TransactionRecord.model_validate(txn)
        self._apply_wallet_effects(txn, reverse=True, reason=f"Deleted: {txn.name}")
        self.audit.record(
            AuditEntityType.transaction,
            txn.id,
            txn.name,
            AuditChangeType.transaction_deleted,
            details=self._details(txn, reason="deleted"),
            amount_delta_cents=-txn.actual_cents,
        )
        # delete-orphan cascade removes the row
        txn.budget_month.transactions.remove(txn)
        self.session.commit()
        logger.info("transaction_deleted: id=%s", transaction_id)
        return record


class RecurringRuleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.audit = AuditRecorder(SqlAuditSink(session, self.user_id))

    def get(self, rule_id: int) -> RecurringRule:
        rule = self.session.get(RecurringRule, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise NotFoundError("Recurring rule not found")
        return rule

    def list(self) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(RecurringRule.user_id == self.user_id)
            .order_by(RecurringRule.next_run_date, RecurringRule.id)
        )
        return self.session.scalars(stmt).all()

    def _details(self, rule: RecurringRule) -> RecurringDetails:
        return RecurringDetails(
            frequency=rule.frequency.value,
            amount_cents=rule.amount_cents,
            category=rule.category,
            next_run_date=rule.next_run_date.isoformat(),
        )

    def _resolve_category(self, category: str) -> str:
        return CategoryService(self.session, self.user_id).taxonomy().resolve(category)

    def create(self, data: RecurringRuleIn) -> RecurringRule:
        if data.type == TransactionType.transfer:
            raise ValidationError("Recurring transfers are not supported")
        if data.wallet_id is not None:
            WalletService(self.session, self.user_id).get(data.wallet_id)
        rule = RecurringRule(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            category=self._resolve_category(data.category),
            type=data.type,
            frequency=data.frequency,
            start_date=data.start_date,
            next_run_date=data.start_date,
            active=data.active,
            wallet_id=data.wallet_id,
        )
        self.session.add(rule)
        self.session.flush()
        self.audit.record(
            AuditEntityType.recurring,
            rule.id,
            rule.name,
            AuditChangeType.recurring_created,
            details=self._details(rule),
            amount_delta_cents=rule.amount_cents,
        )
        self.session.commit()
        self.session.refresh(rule)
        logger.info("recurring_created: id=%s frequency=%s", rule.id, rule.frequency)
        return rule

    def update(self, rule_id: int, data: RecurringRuleUpdate) -> RecurringRule:
        rule = self.get(rule_id)
        if data.name is not None:
            rule.name = data.name.strip()
        if data.amount_cents is not None:
            rule.amount_cents = data.amount_cents
        if data.category is not None:
            rule.category = self._resolve_category(data.category)
        if data.frequency is not None:
            rule.frequency = data.frequency
        if data.active is not None:
            rule.active = data.active
        if data.wallet_id is not None:
            WalletService(self.session, self.user_id).get(data.wallet_id)
            rule.wallet_id = data.wallet_id
        self.audit.record(
            AuditEntityType.recurring,
            rule.id,
            rule.name,
            AuditChangeType.recurring_updated,
            details=self._details(rule),
        )
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        """Delete a rule; transactions it already posted stay in the ledger."""
        rule = self.get(rule_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.origin_rule_id == rule.id)
            .values(origin_rule_id=None)
        )
        self.audit.record(
            AuditEntityType.recurring,
            rule.id,
            rule.name,
            AuditChangeType.recurring_deleted,
            details=self._details(rule),
        )
        self.session.delete(rule)
        self.session.commit()
        logger.info("recurring_deleted: id=%s", rule_id)

    def catch_up_all(self, today: Optional[date] = None) -> int:
        from recurrence import RecurringEngine

        engine = RecurringEngine(self.session)
        return engine.post_due_rules(today)
