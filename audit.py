from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticError
from sqlalchemy import select
from sqlalchemy.orm import Session

from models import AuditEntityType, AuditEvent

logger = logging.getLogger(__name__)


class WalletDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["wallet"] = "wallet"
    wallet_type: Optional[str] = None
    is_savings_wallet: Optional[bool] = None
    reason: Optional[str] = None
    transaction_id: Optional[str] = None


class RecurringDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["recurring"] = "recurring"
    frequency: Optional[str] = None
    amount_cents: Optional[int] = None
    category: Optional[str] = None
    next_run_date: Optional[str] = None
    transaction_id: Optional[str] = None


class TransactionDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["transaction"] = "transaction"
    category: Optional[str] = None
    transaction_type: Optional[str] = None
    date: Optional[str] = None
    budget_month: Optional[str] = None
    reason: Optional[str] = None


class GenericDetails(BaseModel):
    kind: Literal["generic"] = "generic"
    values: dict[str, str] = Field(default_factory=dict)


AuditDetails = Annotated[
    Union[WalletDetails, RecurringDetails, TransactionDetails, GenericDetails],
    Field(discriminator="kind"),
]

_DETAIL_MODELS: dict[str, type[BaseModel]] = {
    AuditEntityType.wallet.value: WalletDetails,
    AuditEntityType.recurring.value: RecurringDetails,
    AuditEntityType.transaction.value: TransactionDetails,
}


def _generic(payload: object) -> GenericDetails:
    if isinstance(payload, dict):
        return GenericDetails(values={str(k): str(v) for k, v in payload.items()})
    return GenericDetails(values={"text": str(payload)})


def parse_details(entity_type: str, raw: Union[str, dict, None]) -> Optional[BaseModel]:
    """Decode a stored details blob into the variant for its entity type."""
    if raw is None or raw == "":
        return None
    payload: object = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return _generic(raw)
    model = _DETAIL_MODELS.get(entity_type)
    if model is None or not isinstance(payload, dict):
        return _generic(payload)
    try:
        kind = model.model_fields["kind"].default
        return model.model_validate({**payload, "kind": kind})
    except PydanticError:
        return _generic(payload)


class AuditEventIn(BaseModel):
    entity_type: str
    entity_id: str
    entity_name: str
    change_type: str
    details: Optional[AuditDetails] = None
    amount_delta_cents: Optional[int] = None
    previous_balance_cents: Optional[int] = None
    new_balance_cents: Optional[int] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AuditEventOut(AuditEventIn):
    id: int
    user_id: int

    @classmethod
    def from_model(cls, row: AuditEvent) -> "AuditEventOut":
        return cls(
            id=row.id,
            user_id=row.user_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            entity_name=row.entity_name,
            change_type=row.change_type,
            details=parse_details(row.entity_type, row.details_json),
            amount_delta_cents=row.amount_delta_cents,
            previous_balance_cents=row.previous_balance_cents,
            new_balance_cents=row.new_balance_cents,
            timestamp=row.timestamp,
        )


class AuditSink(Protocol):
    def write(self, event: AuditEventIn) -> None: ...


class SqlAuditSink:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def write(self, event: AuditEventIn) -> None:
        details: Optional[str] = None
        if isinstance(event.details, GenericDetails):
            details = json.dumps(event.details.values)
        elif event.details is not None:
            details = event.details.model_dump_json(exclude={"kind"})
        # savepoint so a failed audit insert leaves the caller's work intact
        with self.session.begin_nested():
            self.session.add(
                AuditEvent(
                    user_id=self.user_id,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    entity_name=event.entity_name,
                    change_type=event.change_type,
                    details_json=details,
                    amount_delta_cents=event.amount_delta_cents,
                    previous_balance_cents=event.previous_balance_cents,
                    new_balance_cents=event.new_balance_cents,
                    timestamp=event.timestamp,
                )
            )


class AuditRecorder:
    """Fire-and-forget front for an audit sink; failures are only logged."""

    def __init__(self, sink: Optional[AuditSink]) -> None:
        self.sink = sink

    def record(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: object,
        entity_name: str,
        change_type: str,
        *,
        details: Optional[BaseModel] = None,
        amount_delta_cents: Optional[int] = None,
        previous_balance_cents: Optional[int] = None,
        new_balance_cents: Optional[int] = None,
    ) -> Optional[AuditEventIn]:
        entity_type_value = getattr(entity_type, "value", entity_type)
        event = AuditEventIn(
            entity_type=str(entity_type_value),
            entity_id=str(entity_id),
            entity_name=entity_name,
            change_type=str(getattr(change_type, "value", change_type)),
            details=details,
            amount_delta_cents=amount_delta_cents,
            previous_balance_cents=previous_balance_cents,
            new_balance_cents=new_balance_cents,
        )
        if self.sink is None:
            return event
        try:
            self.sink.write(event)
        except Exception:
            logger.exception(
                "audit_write_failed: entity_type=%s entity_id=%s change_type=%s",
                event.entity_type,
                event.entity_id,
                event.change_type,
            )
            return None
        return event


class AuditService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEventOut]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.user_id == self.user_id)
            .order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
            .limit(limit)
        )
        if entity_type:
            stmt = stmt.where(AuditEvent.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
        return [AuditEventOut.from_model(row) for row in self.session.scalars(stmt)]
