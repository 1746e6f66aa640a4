import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from auth import current_user_id, issue_access_token
from cache import CacheCoordinator, create_cache
from config import get_settings
from database import get_session, session_scope
from errors import ErrorKind, ServiceError, ValidationError
from schemas import CategoryIn, ExpenseIn, ExpenseUpdate, SignupIn
from csv_utils import export_expenses
from services import (
    CategoryService,
    ExpenseFilters,
    ExpenseService,
    SummaryService,
    UserService,
    category_to_dict,
    expense_to_dict,
    seed_default_categories,
    user_to_dict,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expenses API")

ERROR_STATUS = {
    ErrorKind.validation: 400,
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
}


@lru_cache(maxsize=1)
def get_cache() -> CacheCoordinator:
    return create_cache()


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    with session_scope() as session:
        seed_default_categories(session, get_cache(), settings.default_categories)


def http_error(exc: ServiceError) -> HTTPException:
    return HTTPException(status_code=ERROR_STATUS.get(exc.kind, 500), detail=str(exc))


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise http_error(ValidationError(f"{name} must be an integer")) from exc


def filters_from_request(request: Request) -> ExpenseFilters:
    return ExpenseFilters(
        category_id=_int_param(request, "categoryId"),
        start=request.query_params.get("from") or None,
        end=request.query_params.get("to") or None,
    )


@app.post("/auth/signup", status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_session)):
    try:
        user = UserService(db).signup(payload.email, payload.password)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return {**user_to_dict(user), "accessToken": issue_access_token(user.id)}


@app.get("/categories")
def list_categories(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        return CategoryService(db, cache, user_id).list_all()
    except ServiceError as exc:
        raise http_error(exc) from exc


@app.post("/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        category = CategoryService(db, cache, user_id).create(payload.name)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return category_to_dict(category)


@app.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        category = CategoryService(db, cache, user_id).update(category_id, payload.name)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return category_to_dict(category)


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        CategoryService(db, cache, user_id).delete(category_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return {"deleted": True}


@app.get("/expenses")
def list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    filters = filters_from_request(request)
    try:
        items = ExpenseService(db, cache, user_id).list(filters)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return [expense_to_dict(expense) for expense in items]


@app.get("/expenses/export.csv")
def export_expenses_endpoint(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    filters = filters_from_request(request)
    try:
        items = ExpenseService(db, cache, user_id).list(filters)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return Response(
        content=export_expenses(items),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=expenses.csv"},
    )


@app.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        expense = ExpenseService(db, cache, user_id).create(payload)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return expense_to_dict(expense)


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        expense = ExpenseService(db, cache, user_id).update(expense_id, payload)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return expense_to_dict(expense)


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    try:
        ExpenseService(db, cache, user_id).delete(expense_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return {"deleted": True}


@app.get("/summary/monthly")
def monthly_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    year = _int_param(request, "year")
    month = _int_param(request, "month")
    try:
        return SummaryService(db, cache, user_id).monthly(year, month)
    except ServiceError as exc:
        raise http_error(exc) from exc


@app.get("/summary/categories")
def categories_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_session),
    cache: CacheCoordinator = Depends(get_cache),
):
    start = request.query_params.get("from")
    end = request.query_params.get("to")
    try:
        return SummaryService(db, cache, user_id).by_categories(start, end)
    except ServiceError as exc:
        raise http_error(exc) from exc
