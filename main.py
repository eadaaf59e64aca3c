import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticError
from sqlalchemy.orm import Session

from audit import AuditService
from config import get_settings
from database import SessionLocal
from errors import NotFoundError, ValidationError
from periods import MonthKey, resolve_month
from ratelimit import InMemoryCounterStore, RateLimiter
from scheduler import SchedulerManager
from schemas import (
    BudgetMonthRecord,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    LimitIn,
    RecurringRuleIn,
    RecurringRuleRecord,
    RecurringRuleUpdate,
    TransactionIn,
    TransactionRecord,
    TransactionUpdate,
)
from services import (
    BudgetService,
    CategoryService,
    RecurringRuleService,
    TransactionService,
    WalletService,
    get_current_user_id,
)

app = FastAPI(title="Monthly Ledger")

settings = get_settings()
rate_limiter = RateLimiter(
    InMemoryCounterStore(),
    window_secs=settings.rate_limit_window_secs,
    max_hits=settings.rate_limit_max,
)
scheduler_manager = SchedulerManager(rate_limiter)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def enforce_rate_limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    decision = rate_limiter.check(client)
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail=decision.message,
            headers={"Retry-After": str(decision.retry_after_secs)},
        )


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(NotFoundError)
async def not_found_handler(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "message": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(_request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})


def month_from_request(request: Request) -> MonthKey:
    try:
        return resolve_month(
            request.query_params.get("month"), request.query_params.get("year")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _budget_payload(budget) -> dict:
    return BudgetMonthRecord.from_model(budget).model_dump(mode="json")


def _body(model, payload: dict):
    try:
        return model.model_validate(payload)
    except PydanticError as exc:
        raise HTTPException(status_code=400, detail="Missing required fields") from exc


@app.get("/api/budget")
def api_get_budget(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    budget = BudgetService(db).get_or_create(key)
    return {"success": True, "data": _budget_payload(budget)}


@app.put("/api/budget", dependencies=[Depends(enforce_rate_limit)])
async def api_update_budget(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    data = _body(BudgetUpdateIn, await request.json())
    budget = BudgetService(db).update(key, data)
    return {"success": True, "data": _budget_payload(budget)}


@app.get("/api/budget/overview")
def api_overview(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    return {"success": True, "data": BudgetService(db).overview(key).as_dict()}


@app.get("/api/budget/category-breakdown")
def api_category_breakdown(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    service = BudgetService(db)
    return {
        "success": True,
        "data": {
            "breakdown": service.category_breakdown(key),
            "deltas": service.category_deltas(key),
        },
    }


@app.get("/api/budget/limits")
def api_limits(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    report = BudgetService(db).limit_report(key)
    return {
        "success": True,
        "data": {
            "cards": [
                {
                    "category": card.category,
                    "label": card.label,
                    "limit_cents": card.limit_cents,
                    "spent_cents": card.spent_cents,
                    "remaining_cents": card.remaining_cents,
                    "percent": card.status.percent,
                    "is_unlimited": card.status.is_unlimited,
                    "is_over_budget": card.status.is_over_budget,
                    "is_at_limit": card.status.is_at_limit,
                }
                for card in report.cards
            ],
            "overall": {
                "limit_cents": report.total_limit_cents,
                "spent_cents": report.total_spent_cents,
                "percent": report.overall.percent,
                "is_over_budget": report.overall.is_over_budget,
            },
        },
    }


@app.put("/api/budget/limits/{category}", dependencies=[Depends(enforce_rate_limit)])
async def api_set_limit(
    category: str, request: Request, db: Session = Depends(get_db)
):
    key = month_from_request(request)
    data = _body(LimitIn, await request.json())
    row = BudgetService(db).set_limit(key, category, data.limit_cents)
    return {"success": True, "data": {row.category: row.limit_cents}}


@app.delete(
    "/api/budget/limits/{category}", dependencies=[Depends(enforce_rate_limit)]
)
def api_remove_limit(category: str, request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    BudgetService(db).remove_limit(key, category)
    return {"success": True}


@app.get("/api/budget/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    key = month_from_request(request)
    items = TransactionService(db).list_for_month(key)
    return {
        "success": True,
        "data": [
            TransactionRecord.model_validate(txn).model_dump(mode="json")
            for txn in items
        ],
    }


@app.post("/api/budget/transaction", dependencies=[Depends(enforce_rate_limit)])
async def api_add_transaction(request: Request, db: Session = Depends(get_db)):
    data = _body(TransactionIn, await request.json())
    txn = TransactionService(db).create(data)
    logging.info("api_add_transaction: id=%s date=%s", txn.id, txn.date)
    return {
        "success": True,
        "data": TransactionRecord.model_validate(txn).model_dump(mode="json"),
    }


def _transaction_id(request: Request) -> int:
    raw = request.query_params.get("id")
    if not raw or not raw.isdigit():
        raise HTTPException(status_code=400, detail="Missing required fields")
    return int(raw)


def _optional_month(request: Request) -> Optional[MonthKey]:
    if request.query_params.get("month") is None:
        return None
    return month_from_request(request)


@app.put("/api/budget/transaction", dependencies=[Depends(enforce_rate_limit)])
async def api_update_transaction(request: Request, db: Session = Depends(get_db)):
    transaction_id = _transaction_id(request)
    data = _body(TransactionUpdate, await request.json())
    txn = TransactionService(db).update(
        transaction_id, data, _optional_month(request)
    )
    return {
        "success": True,
        "data": TransactionRecord.model_validate(txn).model_dump(mode="json"),
    }


@app.delete("/api/budget/transaction", dependencies=[Depends(enforce_rate_limit)])
def api_delete_transaction(request: Request, db: Session = Depends(get_db)):
    transaction_id = _transaction_id(request)
    record = TransactionService(db).delete(transaction_id, _optional_month(request))
    return {"success": True, "data": record.model_dump(mode="json")}


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    taxonomy = CategoryService(db).taxonomy()
    return {
        "success": True,
        "data": [
            CategoryOut(
                id=c.id, label=c.label, type=c.semantic_type, custom=c.custom
            ).model_dump(mode="json")
            for c in taxonomy.all()
        ],
    }


@app.post("/api/categories", dependencies=[Depends(enforce_rate_limit)])
async def api_add_category(request: Request, db: Session = Depends(get_db)):
    data = _body(CategoryIn, await request.json())
    category = CategoryService(db).add_custom(data)
    return {
        "success": True,
        "data": CategoryOut(
            id=category.slug,
            label=category.label,
            type=category.semantic_type,
            custom=True,
        ).model_dump(mode="json"),
    }


@app.delete("/api/categories/{category_id}", dependencies=[Depends(enforce_rate_limit)])
def api_remove_category(category_id: str, db: Session = Depends(get_db)):
    CategoryService(db).remove_custom(category_id)
    return {"success": True}


@app.get("/api/recurring")
def api_recurring(db: Session = Depends(get_db)):
    rules = RecurringRuleService(db).list()
    return {
        "success": True,
        "data": [
            RecurringRuleRecord.model_validate(r).model_dump(mode="json")
            for r in rules
        ],
    }


@app.post("/api/recurring", dependencies=[Depends(enforce_rate_limit)])
async def api_add_recurring(request: Request, db: Session = Depends(get_db)):
    data = _body(RecurringRuleIn, await request.json())
    rule = RecurringRuleService(db).create(data)
    return {
        "success": True,
        "data": RecurringRuleRecord.model_validate(rule).model_dump(mode="json"),
    }


@app.put("/api/recurring/{rule_id}", dependencies=[Depends(enforce_rate_limit)])
async def api_update_recurring(
    rule_id: int, request: Request, db: Session = Depends(get_db)
):
    data = _body(RecurringRuleUpdate, await request.json())
    rule = RecurringRuleService(db).update(rule_id, data)
    return {
        "success": True,
        "data": RecurringRuleRecord.model_validate(rule).model_dump(mode="json"),
    }


@app.delete("/api/recurring/{rule_id}", dependencies=[Depends(enforce_rate_limit)])
def api_remove_recurring(rule_id: int, db: Session = Depends(get_db)):
    RecurringRuleService(db).delete(rule_id)
    return {"success": True}


@app.get("/api/wallets")
def api_wallets(db: Session = Depends(get_db)):
    return {
        "success": True,
        "data": [w.model_dump(mode="json") for w in WalletService(db).records()],
    }


@app.get("/api/audit")
def api_audit(request: Request, db: Session = Depends(get_db)):
    raw_limit = request.query_params.get("limit", "100")
    if not raw_limit.isdigit():
        raise HTTPException(status_code=400, detail="Invalid limit")
    limit = min(max(int(raw_limit), 1), 500)
    events = AuditService(db, get_current_user_id()).list(
        entity_type=request.query_params.get("entity_type"),
        entity_id=request.query_params.get("entity_id"),
        limit=limit,
    )
    return {"success": True, "data": [e.model_dump(mode="json") for e in events]}
