from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import RateCounter


@dataclass
class Counter:
    count: int
    expires_at: datetime


class CounterStore(Protocol):
    def hit(self, key: str, window: timedelta, now: datetime) -> Counter: ...

    def purge(self, now: datetime) -> int: ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window: timedelta, now: datetime) -> Counter:
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or now > counter.expires_at:
                counter = Counter(count=0, expires_at=now + window)
                self._counters[key] = counter
            counter.count += 1
            return Counter(counter.count, counter.expires_at)

    def purge(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, c in self._counters.items() if c.expires_at < now]
            for key in expired:
                del self._counters[key]
            return len(expired)


class SqlCounterStore:
    def __init__(self, factory: sessionmaker) -> None:
        self.factory = factory

    def hit(self, key: str, window: timedelta, now: datetime) -> Counter:
        with session_scope(self.factory) as session:
            row = session.get(RateCounter, key)
            if row is None:
                row = RateCounter(key=key, count=0, expires_at=now + window)
                session.add(row)
            elif now > row.expires_at:
                row.count = 0
                row.expires_at = now + window
            row.count += 1
            return Counter(row.count, row.expires_at)

    def purge(self, now: datetime) -> int:
        with session_scope(self.factory) as session:
            result = session.execute(
                delete(RateCounter).where(RateCounter.expires_at < now)
            )
            return int(result.rowcount or 0)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    retry_after_secs: int

    @property
    def message(self) -> str:
        minutes = math.ceil(self.retry_after_secs / 60)
        return f"Too many requests. Please try again in {minutes} minutes."


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        *,
        window_secs: int = 15 * 60,
        max_hits: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.window = timedelta(seconds=window_secs)
        self.max_hits = max_hits
        self.clock = clock or datetime.utcnow

    def check(self, key: str) -> RateDecision:
        now = self.clock()
        counter = self.store.hit(key, self.window, now)
        if counter.count <= self.max_hits:
            return RateDecision(allowed=True, count=counter.count, retry_after_secs=0)
        retry_after = max(1, math.ceil((counter.expires_at - now).total_seconds()))
        return RateDecision(
            allowed=False, count=counter.count, retry_after_secs=retry_after
        )

    def purge_expired(self) -> int:
        return self.store.purge(self.clock())
