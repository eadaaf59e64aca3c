from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar, Union

from pydantic import ValidationError as PydanticError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from aggregation import MonthlySummary, aggregate
from config import get_settings
from database import session_scope
from errors import LedgerError, NetworkFailure, NotFoundError, ValidationError
from limits import LimitReport, limit_report
from periods import MonthKey
from schemas import (
    BudgetMonthRecord,
    TransactionIn,
    TransactionRecord,
    TransactionUpdate,
    WalletRecord,
)
from services import BudgetService, TransactionService, WalletService
from taxonomy import CategoryTaxonomy
from trends import MonthOverview, overview

logger = logging.getLogger(__name__)

T = TypeVar("T")
CacheKey = tuple[int, int, int]


class MutationState(str, Enum):
    idle = "idle"
    pending = "pending"
    committed = "committed"
    rolled_back = "rolled_back"


class QueryGroup(str, Enum):
    budget = "budget"
    wallets = "wallets"
    goals = "goals"
    stats = "stats"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: str = "default"
    recoverable: bool = True


class LedgerRemote(Protocol):
    async def fetch_budget(self, user_id: int, key: MonthKey) -> BudgetMonthRecord: ...

    async def fetch_wallets(self, user_id: int) -> list[WalletRecord]: ...

    async def create_transaction(
        self, user_id: int, data: TransactionIn
    ) -> TransactionRecord: ...

    async def update_transaction(
        self, user_id: int, key: MonthKey, transaction_id: int, data: TransactionUpdate
    ) -> TransactionRecord: ...

    async def delete_transaction(
        self, user_id: int, key: MonthKey, transaction_id: int
    ) -> TransactionRecord: ...


class LedgerCache:
    """Client-side copy of budget months, keyed by (user, year, month)."""

    def __init__(self) -> None:
        self._months: dict[CacheKey, BudgetMonthRecord] = {}
        self._stale: set[QueryGroup] = set()
        self._stale_months: set[CacheKey] = set()
        self.wallets: list[WalletRecord] = []

    def get(self, key: CacheKey) -> Optional[BudgetMonthRecord]:
        return self._months.get(key)

    def put(self, key: CacheKey, record: BudgetMonthRecord) -> None:
        self._months[key] = record
        self._stale_months.discard(key)

    def keys(self) -> list[CacheKey]:
        return list(self._months)

    def snapshot(self) -> dict[CacheKey, BudgetMonthRecord]:
        return {key: rec.model_copy(deep=True) for key, rec in self._months.items()}

    def restore(self, snapshot: dict[CacheKey, BudgetMonthRecord]) -> None:
        for key, record in snapshot.items():
            self._months[key] = record.model_copy(deep=True)

    def invalidate(self, *groups: QueryGroup) -> None:
        self._stale.update(groups)
        if QueryGroup.budget in groups:
            self._stale_months.update(self._months)

    def is_stale(self, group: QueryGroup) -> bool:
        return group in self._stale

    def month_is_stale(self, key: CacheKey) -> bool:
        return key in self._stale_months

    def mark_fresh(self, group: QueryGroup) -> None:
        self._stale.discard(group)


@dataclass
class Mutation:
    kind: str
    target: CacheKey
    state: MutationState = MutationState.idle
    outcome: Optional[MutationState] = None
    provisional_id: Optional[str] = None
    result: Optional[TransactionRecord] = None
    error: Optional[str] = None
    history: list[MutationState] = field(default_factory=list)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def _move(self, state: MutationState) -> None:
        self.state = state
        self.history.append(state)

    async def wait(self) -> "Mutation":
        if self.task is not None:
            await self.task
        return self


ALL_GROUPS = (QueryGroup.budget, QueryGroup.wallets, QueryGroup.goals, QueryGroup.stats)


class LedgerClient:
    """Applies mutations to the cache immediately and settles them remotely.

    Every mutation snapshots all cached months when it turns pending. A failed
    remote write restores that snapshot wholesale, since other in-flight
    mutations may have touched the same months. Whatever the outcome, the
    budget, wallet, goal and stats groups are invalidated afterwards so the
    next fetch replaces the provisional state with the server's.
    """

    def __init__(
        self,
        remote: LedgerRemote,
        *,
        user_id: int = 1,
        cache: Optional[LedgerCache] = None,
        taxonomy: Optional[CategoryTaxonomy] = None,
        invalidation_delay_ms: Optional[int] = None,
        notify: Optional[Callable[[Notification], None]] = None,
    ) -> None:
        self.remote = remote
        self.user_id = user_id
        self.cache = cache or LedgerCache()
        self.taxonomy = taxonomy or CategoryTaxonomy()
        if invalidation_delay_ms is None:
            invalidation_delay_ms = get_settings().invalidation_delay_ms
        self.invalidation_delay = max(invalidation_delay_ms, 0) / 1000
        self.notifications: list[Notification] = []
        self._notify = notify
        self.active: Optional[CacheKey] = None

    def cache_key(self, key: MonthKey) -> CacheKey:
        return (self.user_id, key.year, key.month)

    # -- reads ---------------------------------------------------------------

    def select(self, key: MonthKey) -> CacheKey:
        self.active = self.cache_key(key)
        return self.active

    async def fetch_month(
        self, key: MonthKey, *, selection: Optional[CacheKey] = None
    ) -> Optional[BudgetMonthRecord]:
        """Fetch one month; drop the response if the selection moved meanwhile."""
        selection = selection or self.active
        record = await self.remote.fetch_budget(self.user_id, key)
        if selection != self.active:
            logger.debug(
                "stale_fetch_discarded: key=%s active=%s", selection, self.active
            )
            return None
        self.cache.put(self.cache_key(key), record)
        return record

    async def fetch_wallets(self) -> list[WalletRecord]:
        self.cache.wallets = await self.remote.fetch_wallets(self.user_id)
        self.cache.mark_fresh(QueryGroup.wallets)
        return self.cache.wallets

    async def load(self, key: MonthKey) -> Optional[MonthOverview]:
        selection = self.select(key)
        current, _previous, _wallets = await asyncio.gather(
            self.fetch_month(key, selection=selection),
            self.fetch_month(key.previous(), selection=selection),
            self.fetch_wallets(),
        )
        if current is None:
            return None
        self.cache.mark_fresh(QueryGroup.budget)
        self.cache.mark_fresh(QueryGroup.stats)
        return self.overview(key)

    def summary(self, key: MonthKey) -> MonthlySummary:
        record = self.cache.get(self.cache_key(key))
        if record is None:
            return MonthlySummary()
        return aggregate(
            record.transactions, self.cache.wallets, key, taxonomy=self.taxonomy
        )

    def overview(self, key: MonthKey) -> MonthOverview:
        record = self.cache.get(self.cache_key(key))
        return overview(
            key,
            self.summary(key),
            self.summary(key.previous()),
            rollover_actual_cents=record.rollover_actual_cents if record else 0,
        )

    def limit_report(self, key: MonthKey) -> LimitReport:
        record = self.cache.get(self.cache_key(key))
        limits = record.category_limits if record else {}
        return limit_report(limits, self.summary(key).by_category, self.taxonomy)

    # -- mutations -----------------------------------------------------------

    def create_transaction(self, data: Union[TransactionIn, dict[str, Any]]) -> Mutation:
        payload = _validated(TransactionIn, data)
        key = MonthKey.from_date(payload.date)
        mutation = Mutation(kind="create", target=self.cache_key(key))
        mutation.provisional_id = f"tmp-{uuid.uuid4().hex[:12]}"
        provisional = TransactionRecord(
            id=mutation.provisional_id,
            name=payload.name,
            planned_cents=payload.planned_cents,
            actual_cents=payload.actual_cents,
            category=payload.category,
            type=payload.type,
            date=payload.date,
            occurred_at=payload.occurred_at,
            source_wallet_id=payload.source_wallet_id,
            destination_wallet_id=payload.destination_wallet_id,
            linked_goal_id=payload.linked_goal_id,
        )

        def apply(cache: LedgerCache) -> None:
            record = cache.get(mutation.target)
            if record is not None:
                record.transactions.insert(0, provisional)

        return self._submit(
            mutation,
            apply,
            lambda: self.remote.create_transaction(self.user_id, payload),
            success=Notification(
                "Transaction added",
                "Your transaction has been successfully recorded.",
            ),
        )

    def update_transaction(
        self,
        key: MonthKey,
        transaction_id: int,
        data: Union[TransactionUpdate, dict[str, Any]],
    ) -> Mutation:
        payload = _validated(TransactionUpdate, data)
        mutation = Mutation(kind="update", target=self.cache_key(key))
        index = self._locate(mutation.target, transaction_id)
        changes = payload.model_dump(exclude_none=True)

        def apply(cache: LedgerCache) -> None:
            record = cache.get(mutation.target)
            if record is None or index is None:
                return
            current = record.transactions[index]
            record.transactions[index] = current.model_copy(update=changes)

        return self._submit(
            mutation,
            apply,
            lambda: self.remote.update_transaction(
                self.user_id, key, transaction_id, payload
            ),
        )

    def delete_transaction(self, key: MonthKey, transaction_id: int) -> Mutation:
        mutation = Mutation(kind="delete", target=self.cache_key(key))
        index = self._locate(mutation.target, transaction_id)

        def apply(cache: LedgerCache) -> None:
            record = cache.get(mutation.target)
            if record is not None and index is not None:
                del record.transactions[index]

        return self._submit(
            mutation,
            apply,
            lambda: self.remote.delete_transaction(self.user_id, key, transaction_id),
            success=Notification("Transaction deleted", "The transaction was removed."),
        )

    def _locate(self, target: CacheKey, transaction_id: object) -> Optional[int]:
        record = self.cache.get(target)
        if record is None:
            return None
        for idx, txn in enumerate(record.transactions):
            if str(txn.id) == str(transaction_id):
                return idx
        raise NotFoundError("Transaction not found")

    def _submit(
        self,
        mutation: Mutation,
        apply: Callable[[LedgerCache], None],
        write: Callable[[], Awaitable[TransactionRecord]],
        *,
        success: Optional[Notification] = None,
    ) -> Mutation:
        snapshot = self.cache.snapshot()
        mutation._move(MutationState.pending)
        apply(self.cache)
        mutation.task = asyncio.get_running_loop().create_task(
            self._settle(mutation, snapshot, write, success)
        )
        return mutation

    async def _settle(
        self,
        mutation: Mutation,
        snapshot: dict[CacheKey, BudgetMonthRecord],
        write: Callable[[], Awaitable[TransactionRecord]],
        success: Optional[Notification],
    ) -> None:
        try:
            mutation.result = await write()
        except Exception as exc:
            if not isinstance(exc, LedgerError):
                logger.exception("mutation_failed: kind=%s", mutation.kind)
            self.cache.restore(snapshot)
            mutation.error = str(exc) or exc.__class__.__name__
            mutation.outcome = MutationState.rolled_back
            mutation._move(MutationState.rolled_back)
            self._emit(Notification("Error", mutation.error, variant="destructive"))
        else:
            mutation.outcome = MutationState.committed
            mutation._move(MutationState.committed)
            if success is not None:
                self._emit(success)
        finally:
            if self.invalidation_delay:
                await asyncio.sleep(self.invalidation_delay)
            self.cache.invalidate(*ALL_GROUPS)
            mutation._move(MutationState.idle)

    def _emit(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self._notify is not None:
            self._notify(notification)


def _validated(model: type[T], data: Union[T, dict[str, Any]]) -> T:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticError as exc:
        raise ValidationError(str(exc)) from exc


class ServiceRemote:
    """``LedgerRemote`` backed by the local services, run off the event loop."""

    def __init__(
        self, factory: sessionmaker, *, timeout_secs: Optional[float] = None
    ) -> None:
        self.factory = factory
        if timeout_secs is None:
            timeout_secs = get_settings().remote_timeout_secs
        self.timeout_secs = timeout_secs

    def _run(self, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(self.factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            raise NetworkFailure("Ledger store unavailable") from exc

    async def _call(self, fn: Callable[[Session], T]) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run, fn), timeout=self.timeout_secs
            )
        except asyncio.TimeoutError as exc:
            raise NetworkFailure("Ledger store timed out") from exc

    async def fetch_budget(self, user_id: int, key: MonthKey) -> BudgetMonthRecord:
        return await self._call(lambda s: BudgetService(s, user_id).record(key))

    async def fetch_wallets(self, user_id: int) -> list[WalletRecord]:
        return await self._call(lambda s: WalletService(s, user_id).records())

    async def create_transaction(
        self, user_id: int, data: TransactionIn
    ) -> TransactionRecord:
        return await self._call(
            lambda s: TransactionRecord.model_validate(
                TransactionService(s, user_id).create(data)
            )
        )

    async def update_transaction(
        self, user_id: int, key: MonthKey, transaction_id: int, data: TransactionUpdate
    ) -> TransactionRecord:
        return await self._call(
            lambda s: TransactionRecord.model_validate(
                TransactionService(s, user_id).update(transaction_id, data, key)
            )
        )

    async def delete_transaction(
        self, user_id: int, key: MonthKey, transaction_id: int
    ) -> TransactionRecord:
        return await self._call(
            lambda s: TransactionService(s, user_id).delete(transaction_id, key)
        )
