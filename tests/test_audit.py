import json
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from audit import (
    AuditRecorder,
    AuditService,
    GenericDetails,
    RecurringDetails,
    SqlAuditSink,
    TransactionDetails,
    WalletDetails,
    parse_details,
)
from database import Base
from models import AuditChangeType, AuditEntityType


class BrokenSink:
    def __init__(self) -> None:
        self.calls = 0

    def write(self, event) -> None:
        self.calls += 1
        raise RuntimeError("disk full")


def test_sink_failure_is_logged_not_raised(caplog) -> None:
    sink = BrokenSink()
    recorder = AuditRecorder(sink)

    with caplog.at_level(logging.ERROR, logger="audit"):
        result = recorder.record(
            AuditEntityType.wallet,
            3,
            "Checking",
            AuditChangeType.balance_change,
            amount_delta_cents=-100,
        )

    assert result is None
    assert sink.calls == 1
    assert "audit_write_failed" in caplog.text


def test_recorder_without_sink_returns_event() -> None:
    event = AuditRecorder(None).record(
        "recurring",
        4,
        "Rent",
        "recurring_created",
        details=RecurringDetails(frequency="monthly", amount_cents=90_000),
    )
    assert event.entity_type == "recurring"
    assert event.details.frequency == "monthly"
    assert event.details.amount_cents == 90_000


def test_parse_details_picks_variant_per_entity_type() -> None:
    wallet = parse_details("wallet", json.dumps({"reason": "Salary", "extra": 1}))
    assert isinstance(wallet, WalletDetails)
    assert wallet.reason == "Salary"

    txn = parse_details("transaction", {"category": "Food", "date": "2025-03-01"})
    assert isinstance(txn, TransactionDetails)
    assert txn.category == "Food"

    unknown = parse_details("budget", json.dumps({"limit": 10}))
    assert isinstance(unknown, GenericDetails)
    assert unknown.values == {"limit": "10"}

    text = parse_details("wallet", "not json")
    assert isinstance(text, GenericDetails)
    assert text.values == {"text": "not json"}

    assert parse_details("wallet", None) is None
    assert parse_details("wallet", "") is None


def test_sql_sink_round_trip_and_filters() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        recorder = AuditRecorder(SqlAuditSink(session, 1))
        recorder.record(
            AuditEntityType.wallet,
            1,
            "Checking",
            AuditChangeType.balance_change,
            details=WalletDetails(reason="Lunch"),
            amount_delta_cents=-1500,
            previous_balance_cents=10_000,
            new_balance_cents=8_500,
        )
        recorder.record(
            "budget",
            "2025-03",
            "March 2025",
            "limits_changed",
            details=GenericDetails(values={"Food": "30000"}),
        )
        session.commit()

        service = AuditService(session, 1)
        events = service.list()
        assert len(events) == 2

        wallet_events = service.list(entity_type="wallet", entity_id="1")
        assert len(wallet_events) == 1
        assert wallet_events[0].details == WalletDetails(reason="Lunch")
        assert wallet_events[0].new_balance_cents == 8_500

        budget_events = service.list(entity_type="budget")
        assert budget_events[0].details == GenericDetails(values={"Food": "30000"})

        assert AuditService(session, 2).list() == []
