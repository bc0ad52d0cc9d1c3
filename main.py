import logging
from datetime import date
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from errors import (
    AggregationError,
    Conflict,
    NotFound,
    QuerySuperseded,
    ValidationFailed,
)
from models import Account, Category, SubCategory, Transaction, Widget
from schemas import (
    AccountIn,
    CategoryIn,
    RenameIn,
    TransactionIn,
    TransactionUpdate,
    WidgetIn,
    WidgetUpdate,
)
from services import (
    AccountService,
    CategoryService,
    ImportService,
    TransactionFilters,
    TransactionService,
    WidgetService,
)
from widget_config import parse_widget_config

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger Dashboard")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: database={get_settings().database_url}")


@app.exception_handler(ValidationFailed)
def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=422, content={"errors": exc.errors})


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, str] = {}
    for item in exc.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body",)]
        errors.setdefault(".".join(loc) or "__root__", item.get("msg", "Invalid"))
    return JSONResponse(status_code=422, content={"errors": errors})


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Conflict)
def conflict_handler(request: Request, exc: Conflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(QuerySuperseded)
def superseded_handler(request: Request, exc: QuerySuperseded):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(AggregationError)
def aggregation_error_handler(request: Request, exc: AggregationError):
    logger.warning(f"widget_query_failed: path={request.url.path} error={exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})


def account_out(account: Account) -> dict[str, Any]:
    return {"id": account.id, "name": account.name, "currency": account.currency}


def sub_category_out(sub: SubCategory) -> dict[str, Any]:
    return {
        "id": sub.id,
        "name": sub.name,
        "icon": sub.icon,
        "category_id": sub.category_id,
    }


def category_out(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "sub_categories": [sub_category_out(sub) for sub in category.sub_categories],
    }


def transaction_out(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "title": txn.title,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "payee": txn.payee,
        "is_temporary": txn.is_temporary,
        "amount_cents": txn.amount_cents,
        "balance_cents": txn.balance_cents,
        "order": txn.order,
        "category": txn.category.name if txn.category else None,
        "category_id": txn.category_id,
        "sub_category": txn.sub_category.name if txn.sub_category else None,
        "sub_category_id": txn.sub_category_id,
    }


def widget_out(widget: Widget) -> dict[str, Any]:
    return {
        "id": widget.id,
        "name": widget.name,
        "x": widget.x,
        "y": widget.y,
        "width": widget.width,
        "height": widget.height,
        "config": widget.config,
    }


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    return account_out(AccountService(db).create(data))


@app.patch("/api/accounts/{account_id}")
def api_rename_account(account_id: str, data: RenameIn, db: Session = Depends(get_db)):
    return account_out(AccountService(db).rename(account_id, data.name))


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: str, db: Session = Depends(get_db)):
    AccountService(db).delete(account_id)
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/categories")
def api_categories(account_id: str, db: Session = Depends(get_db)):
    return [category_out(c) for c in CategoryService(db).list_for_account(account_id)]


@app.post("/api/accounts/{account_id}/categories", status_code=201)
def api_create_category(
    account_id: str, data: CategoryIn, db: Session = Depends(get_db)
):
    return category_out(CategoryService(db).create(account_id, data))


@app.patch("/api/categories/{category_id}")
def api_rename_category(
    category_id: str, data: RenameIn, db: Session = Depends(get_db)
):
    return category_out(CategoryService(db).rename(category_id, data.name))


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: str, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return Response(status_code=204)


@app.post("/api/categories/{category_id}/subcategories", status_code=201)
def api_create_sub_category(
    category_id: str, data: CategoryIn, db: Session = Depends(get_db)
):
    return sub_category_out(CategoryService(db).create_sub(category_id, data))


@app.patch("/api/subcategories/{sub_category_id}")
def api_rename_sub_category(
    sub_category_id: str, data: RenameIn, db: Session = Depends(get_db)
):
    return sub_category_out(CategoryService(db).rename_sub(sub_category_id, data.name))


@app.delete("/api/subcategories/{sub_category_id}", status_code=204)
def api_delete_sub_category(sub_category_id: str, db: Session = Depends(get_db)):
    CategoryService(db).delete_sub(sub_category_id)
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/transactions")
def api_transactions(
    account_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    payee: Optional[str] = None,
    is_temporary: Optional[bool] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category: Optional[list[str]] = Query(default=None),
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    AccountService(db).get(account_id)
    page = max(page, 1)
    limit = min(max(limit, 1), 500)
    offset = (page - 1) * limit
    filters = TransactionFilters(
        title=title,
        description=description,
        payee=payee,
        is_temporary=is_temporary,
        min_amount=min_amount,
        max_amount=max_amount,
        start_date=start_date,
        end_date=end_date,
        category_ids=category,
    )
    items = TransactionService(db).list(
        account_id, filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    return {
        "items": [transaction_out(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/accounts/{account_id}/transactions/suggest")
def api_suggest_titles(account_id: str, q: str = "", db: Session = Depends(get_db)):
    return TransactionService(db).suggest_titles(account_id, q)


@app.post("/api/accounts/{account_id}/transactions", status_code=201)
def api_create_transaction(
    account_id: str, data: TransactionIn, db: Session = Depends(get_db)
):
    return transaction_out(TransactionService(db).create(account_id, data))


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: str, data: TransactionUpdate, db: Session = Depends(get_db)
):
    return transaction_out(TransactionService(db).update(transaction_id, data))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return Response(status_code=204)


@app.post("/api/accounts/{account_id}/recompute")
def api_recompute(account_id: str, db: Session = Depends(get_db)):
    changed = TransactionService(db).recompute(account_id)
    return {"changed": changed}


@app.post("/api/accounts/{account_id}/import")
def api_import(
    account_id: str, rows: list[TransactionIn], db: Session = Depends(get_db)
):
    count = ImportService(db).replace_transactions(account_id, rows)
    return {"imported": count}


@app.get("/api/accounts/{account_id}/widgets")
def api_widgets(account_id: str, db: Session = Depends(get_db)):
    return [widget_out(w) for w in WidgetService(db).list_for_account(account_id)]


@app.post("/api/accounts/{account_id}/widgets", status_code=201)
def api_create_widget(account_id: str, data: WidgetIn, db: Session = Depends(get_db)):
    return widget_out(WidgetService(db).create(account_id, data))


@app.patch("/api/widgets/{widget_id}")
def api_update_widget(
    widget_id: str, data: WidgetUpdate, db: Session = Depends(get_db)
):
    return widget_out(WidgetService(db).update(widget_id, data))


@app.delete("/api/widgets/{widget_id}", status_code=204)
def api_delete_widget(widget_id: str, db: Session = Depends(get_db)):
    WidgetService(db).delete(widget_id)
    return Response(status_code=204)


@app.get("/api/widgets/{widget_id}/data")
def api_widget_data(widget_id: str, db: Session = Depends(get_db)):
    service = WidgetService(db)
    widget = service.get(widget_id)
    return {
        "widget_id": widget.id,
        "type": widget.config.get("type"),
        "data": service.run(widget_id),
    }


@app.post("/api/accounts/{account_id}/widgets/preview")
def api_widget_preview(
    account_id: str,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    config = parse_widget_config(payload)
    return {
        "type": config.type,
        "data": WidgetService(db).preview(account_id, config),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
