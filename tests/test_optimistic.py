import asyncio
from datetime import date
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine, make_session_factory
from errors import NetworkFailure, NotFoundError, ValidationError
from models import Wallet
from optimistic import (
    LedgerClient,
    MutationState,
    QueryGroup,
    ServiceRemote,
)
from periods import MonthKey
from schemas import BudgetMonthRecord, TransactionRecord, WalletRecord

MARCH = MonthKey(2025, 3)


class FakeRemote:
    def __init__(self, fail_writes: bool = False) -> None:
        self.fail_writes = fail_writes
        self.gate: Optional[asyncio.Event] = None
        self.next_id = 100
        self.months = {
            (2025, 2): BudgetMonthRecord(id=1, year=2025, month=2),
            (2025, 3): BudgetMonthRecord(
                id=2,
                year=2025,
                month=3,
                rollover_actual_cents=700,
                category_limits={"Food": 1000},
                transactions=[
                    TransactionRecord(
                        id=1,
                        name="Salary",
                        actual_cents=5000,
                        category="Paycheck",
                        date=date(2025, 3, 1),
                    ),
                    TransactionRecord(
                        id=2,
                        name="Groceries",
                        actual_cents=800,
                        category="Food",
                        date=date(2025, 3, 2),
                    ),
                ],
            ),
        }

    async def fetch_budget(self, user_id, key):
        if self.gate is not None:
            await self.gate.wait()
        record = self.months.get((key.year, key.month))
        if record is None:
            record = BudgetMonthRecord(year=key.year, month=key.month)
        return record.model_copy(deep=True)

    async def fetch_wallets(self, user_id):
        return [WalletRecord(id=1, name="Checking", balance_cents=10_000)]

    async def _maybe_fail(self) -> None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise NetworkFailure("connection reset")

    async def create_transaction(self, user_id, data):
        await self._maybe_fail()
        self.next_id += 1
        record = TransactionRecord(id=self.next_id, **data.model_dump())
        self.months[(data.date.year, data.date.month)].transactions.append(record)
        return record

    async def update_transaction(self, user_id, key, transaction_id, data):
        await self._maybe_fail()
        month = self.months[(key.year, key.month)]
        for idx, txn in enumerate(month.transactions):
            if txn.id == transaction_id:
                month.transactions[idx] = txn.model_copy(
                    update=data.model_dump(exclude_none=True)
                )
                return month.transactions[idx]
        raise NotFoundError("Transaction not found")

    async def delete_transaction(self, user_id, key, transaction_id):
        await self._maybe_fail()
        month = self.months[(key.year, key.month)]
        for txn in list(month.transactions):
            if txn.id == transaction_id:
                month.transactions.remove(txn)
                return txn
        raise NotFoundError("Transaction not found")


def _new_txn(**overrides) -> dict:
    payload = {
        "name": "Coffee",
        "actual_cents": 450,
        "category": "Coffee & Drinks",
        "date": "2025-03-05",
    }
    payload.update(overrides)
    return payload


def test_failed_create_restores_cache_exactly() -> None:
    async def scenario() -> None:
        client = LedgerClient(FakeRemote(fail_writes=True), invalidation_delay_ms=0)
        await client.load(MARCH)
        before = client.cache.snapshot()

        mutation = client.create_transaction(_new_txn())
        assert mutation.state == MutationState.pending
        cached = client.cache.get(client.cache_key(MARCH))
        assert str(cached.transactions[0].id).startswith("tmp-")
        assert client.summary(MARCH).expenses == 800 + 450

        await mutation.wait()

        assert client.cache.snapshot() == before
        assert mutation.outcome == MutationState.rolled_back
        assert mutation.history == [
            MutationState.pending,
            MutationState.rolled_back,
            MutationState.idle,
        ]
        assert client.notifications[-1].variant == "destructive"
        assert client.notifications[-1].recoverable
        assert "connection reset" in mutation.error

    asyncio.run(scenario())


def test_overlapping_failures_are_repaired_by_refetch() -> None:
    async def scenario() -> None:
        client = LedgerClient(FakeRemote(fail_writes=True), invalidation_delay_ms=0)
        await client.load(MARCH)
        before = client.cache.snapshot()

        first = client.create_transaction(_new_txn(name="One"))
        second = client.delete_transaction(MARCH, 2)
        assert len(client.cache.get(client.cache_key(MARCH)).transactions) == 2

        await asyncio.gather(first.wait(), second.wait())
        assert first.outcome == MutationState.rolled_back
        assert second.outcome == MutationState.rolled_back
        # the later snapshot still holds the first provisional row
        assert client.cache.month_is_stale(client.cache_key(MARCH))

        await client.load(MARCH)
        assert client.cache.snapshot() == before

    asyncio.run(scenario())


def test_successful_create_commits_and_invalidates() -> None:
    async def scenario() -> None:
        remote = FakeRemote()
        seen = []
        client = LedgerClient(remote, invalidation_delay_ms=0, notify=seen.append)
        await client.load(MARCH)

        mutation = client.create_transaction(_new_txn())
        await mutation.wait()

        assert mutation.outcome == MutationState.committed
        assert mutation.state == MutationState.idle
        assert mutation.result.id == 101
        assert seen[-1].title == "Transaction added"
        for group in (QueryGroup.budget, QueryGroup.wallets, QueryGroup.stats):
            assert client.cache.is_stale(group)
        assert client.cache.month_is_stale(client.cache_key(MARCH))

        # provisional row stays until the refetch replaces it
        cached = client.cache.get(client.cache_key(MARCH))
        assert str(cached.transactions[0].id).startswith("tmp-")

        await client.load(MARCH)
        cached = client.cache.get(client.cache_key(MARCH))
        assert [t.id for t in cached.transactions] == [1, 2, 101]
        assert not client.cache.month_is_stale(client.cache_key(MARCH))
        assert not client.cache.is_stale(QueryGroup.budget)

    asyncio.run(scenario())


def test_invalid_payload_rejected_before_cache_is_touched() -> None:
    async def scenario() -> None:
        client = LedgerClient(FakeRemote(), invalidation_delay_ms=0)
        await client.load(MARCH)
        before = client.cache.snapshot()

        with pytest.raises(ValidationError):
            client.create_transaction({"name": "No amount", "date": "2025-03-05"})
        with pytest.raises(NotFoundError):
            client.delete_transaction(MARCH, 999)

        assert client.cache.snapshot() == before
        assert not client.cache.is_stale(QueryGroup.budget)

    asyncio.run(scenario())


def test_failed_update_rolls_back() -> None:
    async def scenario() -> None:
        client = LedgerClient(FakeRemote(fail_writes=True), invalidation_delay_ms=0)
        await client.load(MARCH)

        mutation = client.update_transaction(MARCH, 2, {"actual_cents": 1200})
        assert client.summary(MARCH).expenses == 1200
        assert client.limit_report(MARCH).cards[0].status.is_over_budget

        await mutation.wait()
        assert client.summary(MARCH).expenses == 800
        assert not client.limit_report(MARCH).cards[0].status.is_over_budget

    asyncio.run(scenario())


def test_stale_fetch_is_discarded() -> None:
    async def scenario() -> None:
        remote = FakeRemote()
        remote.gate = asyncio.Event()
        client = LedgerClient(remote, invalidation_delay_ms=0)

        pending = asyncio.create_task(client.load(MARCH))
        await asyncio.sleep(0)
        client.select(MonthKey(2025, 4))
        remote.gate.set()

        assert await pending is None
        assert client.cache.get(client.cache_key(MARCH)) is None

    asyncio.run(scenario())


def test_overview_from_cache() -> None:
    async def scenario() -> None:
        client = LedgerClient(FakeRemote(), invalidation_delay_ms=0)
        result = await client.load(MARCH)
        payload = result.as_dict()
        assert payload["stats"]["income"] == 5000
        assert payload["stats"]["expenses"] == 800
        assert payload["stats"]["start_balance"] == 700
        assert payload["trends"]["income"] == 100
        assert client.cache.wallets[0].name == "Checking"

    asyncio.run(scenario())


def _factory(path):
    engine = build_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    return make_session_factory(engine)


def test_service_remote_round_trip(tmp_path) -> None:
    factory = _factory(tmp_path / "ledger.db")
    with factory() as session:
        session.add(Wallet(name="Checking", balance_cents=10_000))
        session.commit()

    async def scenario() -> None:
        client = LedgerClient(
            ServiceRemote(factory, timeout_secs=5), invalidation_delay_ms=0
        )
        await client.load(MARCH)
        mutation = client.create_transaction(_new_txn(source_wallet_id=1))
        await mutation.wait()
        assert mutation.outcome == MutationState.committed

        await client.load(MARCH)
        cached = client.cache.get(client.cache_key(MARCH))
        assert [t.name for t in cached.transactions] == ["Coffee"]
        assert cached.transactions[0].category == "Coffee & Drinks"
        assert client.cache.wallets[0].balance_cents == 10_000 - 450

        removal = client.delete_transaction(MARCH, cached.transactions[0].id)
        await removal.wait()
        assert removal.outcome == MutationState.committed
        await client.load(MARCH)
        assert client.cache.get(client.cache_key(MARCH)).transactions == []

    asyncio.run(scenario())


def test_service_remote_maps_store_errors_to_network_failure() -> None:
    engine = create_engine("sqlite://")
    remote = ServiceRemote(sessionmaker(bind=engine), timeout_secs=5)

    with pytest.raises(NetworkFailure):
        asyncio.run(remote.fetch_wallets(1))
