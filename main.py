import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import Database
from schemas import DashboardOut, LoginIn, RecentTransactionOut, RegisterIn, TransactionOut
from services import (
    EmailAlreadyRegistered,
    InvalidAmount,
    InvalidCredentials,
    InvalidDate,
    InvalidInput,
    TransactionNotFound,
    TransactionService,
    Unauthenticated,
    UserNotFound,
    UserService,
    load_dashboard,
)
from sessions import PrincipalResolver, SessionCookieResolver, issue_session_token

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_AUTHENTICATED = "Not authenticated"

ERROR_RESPONSES: dict[type, tuple[int, str]] = {
    Unauthenticated: (401, NOT_AUTHENTICATED),
    InvalidInput: (400, "Invalid form data"),
    InvalidAmount: (400, "Amount must be a number"),
    InvalidDate: (400, "Invalid date"),
    UserNotFound: (404, "User not found"),
    TransactionNotFound: (404, "Not found"),
    EmailAlreadyRegistered: (409, "Email is already registered"),
    InvalidCredentials: (401, "Invalid email or password"),
}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def ledger_error_response(exc: ValueError) -> JSONResponse:
    status_code, message = ERROR_RESPONSES[type(exc)]
    return error_response(status_code, message)


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def current_principal(request: Request) -> Optional[str]:
    return request.app.state.principal_resolver.resolve(request)


async def read_json(request: Request) -> object:
    try:
        return await request.json()
    except ValueError:
        return None


@router.get("/")
async def root():
    return {"message": "Pocket Ledger API is running"}


@router.post("/api/transactions")
async def create_transaction(
    request: Request,
    db: Session = Depends(get_db),
    email: Optional[str] = Depends(current_principal),
):
    if not email:
        return error_response(401, NOT_AUTHENTICATED)
    payload = await read_json(request)
    try:
        TransactionService(db).create(email, payload)
    except tuple(ERROR_RESPONSES) as exc:
        return ledger_error_response(exc)
    except Exception:
        logger.exception("create_transaction_failed")
        return error_response(500, "Failed to add transaction")
    return JSONResponse({"ok": True}, status_code=201)


@router.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    email: Optional[str] = Depends(current_principal),
):
    if not email:
        return error_response(401, NOT_AUTHENTICATED)
    try:
        TransactionService(db).delete(email, transaction_id)
    except tuple(ERROR_RESPONSES) as exc:
        return ledger_error_response(exc)
    except Exception:
        logger.exception("delete_transaction_failed: transaction_id=%s", transaction_id)
        return error_response(500, "Failed to delete")
    return JSONResponse({"ok": True}, status_code=200)


@router.get("/api/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    email: Optional[str] = Depends(current_principal),
):
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = int(request.query_params.get("limit", "50"))
    except ValueError:
        return error_response(400, "Invalid paging parameters")
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    try:
        items = TransactionService(db).list(email, limit=limit + 1, offset=offset)
    except (Unauthenticated, UserNotFound) as exc:
        return ledger_error_response(exc)
    has_more = len(items) > limit
    items = items[:limit]
    return {
        "items": [
            TransactionOut(
                id=txn.id,
                note=txn.note,
                amount_cents=txn.amount_cents,
                occurred_at=txn.occurred_at,
                account_id=txn.account_id,
                kind=txn.kind,
            ).model_dump(mode="json", by_alias=True)
            for txn in items
        ],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@router.get("/api/dashboard")
def dashboard(
    db: Session = Depends(get_db),
    email: Optional[str] = Depends(current_principal),
):
    if not email:
        return error_response(401, NOT_AUTHENTICATED)
    data = load_dashboard(db, email)
    out = DashboardOut(
        total_balance_cents=data.total_balance_cents,
        month_spend_cents=data.month_spend_cents,
        month_income_cents=data.month_income_cents,
        recent=[
            RecentTransactionOut(
                id=txn.id,
                note=txn.note,
                amount_cents=txn.amount_cents,
                occurred_at=txn.occurred_at,
            )
            for txn in data.recent
        ],
        error=data.error,
    )
    body = out.model_dump(mode="json", by_alias=True)
    if body["error"] is None:
        del body["error"]
    return body


@router.post("/api/register")
async def register(request: Request, db: Session = Depends(get_db)):
    payload = await read_json(request)
    if payload is None:
        return error_response(400, "Invalid or missing JSON")
    try:
        data = RegisterIn.model_validate(payload)
    except ValidationError as exc:
        return error_response(400, ", ".join(err["msg"] for err in exc.errors()))
    try:
        UserService(db).register(data)
    except EmailAlreadyRegistered as exc:
        return ledger_error_response(exc)
    except Exception:
        logger.exception("register_failed")
        return error_response(500, "Server error. Please try again.")
    return JSONResponse({"ok": True}, status_code=201)


@router.post("/api/login")
async def login(request: Request, db: Session = Depends(get_db)):
    try:
        data = LoginIn.model_validate(await read_json(request))
    except ValidationError:
        return error_response(400, "Invalid form data")
    try:
        user = UserService(db).authenticate(data.email, data.password)
    except InvalidCredentials as exc:
        return ledger_error_response(exc)
    settings = get_settings()
    response = JSONResponse({"ok": True}, status_code=200)
    response.set_cookie(
        settings.session_cookie_name,
        issue_session_token(user.email),
        max_age=settings.session_max_age_secs,
        httponly=True,
        samesite="lax",
    )
    return response


@router.post("/api/logout")
async def logout():
    response = JSONResponse({"ok": True}, status_code=200)
    response.delete_cookie(get_settings().session_cookie_name)
    return response


def create_app(
    database: Optional[Database] = None,
    principal_resolver: Optional[PrincipalResolver] = None,
) -> FastAPI:
    store = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup: database=%s", store.engine.url.render_as_string())
        yield
        store.dispose()

    app = FastAPI(title="Pocket Ledger", lifespan=lifespan)
    app.state.database = store
    app.state.principal_resolver = principal_resolver or SessionCookieResolver()
    app.include_router(router)
    return app


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
