import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from auth import create_token, verify_token
from config import get_settings
from database import init_schema, session_scope
from models import TransactionType, User
from periods import resolve_period
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    AssetIn,
    AssetOut,
    AuthOut,
    BudgetIn,
    BudgetOut,
    CardPaymentIn,
    CardPaymentOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    ConfirmIn,
    CreditCardIn,
    CreditCardOut,
    DashboardOut,
    GoalIn,
    GoalOut,
    LoginIn,
    RecurrenceCreatedOut,
    RecurrenceDetailsOut,
    RecurrenceIn,
    RecurrenceOut,
    RecurrenceUpdate,
    RecurrenceUpdatedOut,
    RegisterIn,
    TransactionIn,
    TransactionOut,
    TransferIn,
    TransferOut,
    UserOut,
)
from services import (
    AccountService,
    AssetService,
    BudgetService,
    CategoryService,
    ConflictError,
    CreditCardService,
    GoalService,
    MetricsService,
    NotFoundError,
    RecurrenceService,
    TransactionService,
    TransferService,
    UserService,
)


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_schema()
    logger.info(f"startup: version={APP_VERSION}")
    yield


app = FastAPI(title="Finance Tracker", lifespan=lifespan)


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    with session_scope() as db:
        yield db


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> uuid.UUID:
    unauthorized = HTTPException(
        status_code=401,
        detail="Invalid or missing token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise unauthorized
    user_id = verify_token(credentials.credentials)
    if user_id is None or db.get(User, user_id) is None:
        raise unauthorized
    return user_id


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logging.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/api/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AuthOut(user=UserOut.model_validate(user), token=create_token(user.id))


@app.post("/api/auth/login", response_model=AuthOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data.username, data.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return AuthOut(user=UserOut.model_validate(user), token=create_token(user.id))


@app.get("/api/auth/me", response_model=UserOut)
def me(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return UserService(db).get(user_id)


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return AccountService(db, user_id).list_all()


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return AccountService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/accounts/transfer", response_model=TransferOut)
def transfer_between_accounts(
    data: TransferIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        result = TransferService(db, user_id).transfer(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransferOut(
        from_account=AccountOut.model_validate(result.from_account),
        to_account=AccountOut.model_validate(result.to_account),
        transactions=[TransactionOut.model_validate(t) for t in result.transactions],
    )


@app.put("/api/accounts/{account_id}", response_model=AccountOut)
def update_account(
    account_id: uuid.UUID,
    data: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return AccountService(db, user_id).update(account_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        AccountService(db, user_id).delete(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/credit-cards", response_model=list[CreditCardOut])
def list_credit_cards(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return CreditCardService(db, user_id).list_all()


@app.post("/api/credit-cards", response_model=CreditCardOut, status_code=201)
def create_credit_card(
    data: CreditCardIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return CreditCardService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/credit-cards/{card_id}/payment", response_model=CardPaymentOut)
def pay_credit_card(
    card_id: uuid.UUID,
    data: CardPaymentIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        result = TransferService(db, user_id).pay_card(card_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return CardPaymentOut(
        account=AccountOut.model_validate(result.account),
        credit_card=CreditCardOut.model_validate(result.credit_card),
        transactions=[TransactionOut.model_validate(t) for t in result.transactions],
    )


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[TransactionType] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return CategoryService(db, user_id).list_all(type)


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return CategoryService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: uuid.UUID,
    data: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return CategoryService(db, user_id).update(category_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        period = resolve_period(month, year)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionService(db, user_id).list(period, limit=limit)


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/transactions/pending", response_model=list[TransactionOut])
def list_pending_transactions(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return TransactionService(db, user_id).list_pending()


@app.put("/api/transactions/{transaction_id}/confirm", response_model=TransactionOut)
def confirm_transaction(
    transaction_id: uuid.UUID,
    data: Optional[ConfirmIn] = None,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    account_id = data.account_id if data else None
    try:
        return TransactionService(db, user_id).confirm(transaction_id, account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurrences", response_model=list[RecurrenceOut])
def list_recurrences(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return RecurrenceService(db, user_id).list_active()


@app.post("/api/recurrences", response_model=RecurrenceCreatedOut, status_code=201)
def create_recurrence(
    data: RecurrenceIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        result = RecurrenceService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return RecurrenceCreatedOut(
        recurrence=RecurrenceOut.model_validate(result.recurrence),
        transactions=[TransactionOut.model_validate(t) for t in result.transactions],
        total_value=result.total_value,
    )


@app.put("/api/recurrences/{recurrence_id}", response_model=RecurrenceUpdatedOut)
def update_recurrence(
    recurrence_id: uuid.UUID,
    data: RecurrenceUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        result = RecurrenceService(db, user_id).update(recurrence_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return RecurrenceUpdatedOut(
        recurrence=RecurrenceOut.model_validate(result.recurrence),
        updated_transactions=[
            TransactionOut.model_validate(t) for t in result.updated_transactions
        ],
    )


@app.delete("/api/recurrences/{recurrence_id}", status_code=204)
def delete_recurrence(
    recurrence_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        RecurrenceService(db, user_id).delete(recurrence_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get(
    "/api/recurrences/{recurrence_id}/details", response_model=RecurrenceDetailsOut
)
def recurrence_details(
    recurrence_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        details = RecurrenceService(db, user_id).details(recurrence_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return RecurrenceDetailsOut(
        recurrence=RecurrenceOut.model_validate(details.recurrence),
        pending_transactions=[
            TransactionOut.model_validate(t) for t in details.pending_transactions
        ],
        confirmed_transactions=[
            TransactionOut.model_validate(t) for t in details.confirmed_transactions
        ],
        total_pending_amount=details.total_pending_amount,
        total_confirmed_amount=details.total_confirmed_amount,
        installment_progress=details.installment_progress,
    )


@app.get("/api/budget/{month}/{year}", response_model=Optional[BudgetOut])
def get_budget(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=1970, le=3000),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return BudgetService(db, user_id).view(month, year)


@app.post("/api/budget", response_model=BudgetOut)
def save_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.upsert(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.describe(budget)


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return BudgetService(db, user_id).list_views()


@app.get("/api/goals", response_model=list[GoalOut])
def list_goals(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return GoalService(db, user_id).list_all()


@app.post("/api/goals", response_model=GoalOut, status_code=201)
def create_goal(
    data: GoalIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return GoalService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/assets", response_model=list[AssetOut])
def list_assets(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return AssetService(db, user_id).list_all()


@app.post("/api/assets", response_model=AssetOut, status_code=201)
def create_asset(
    data: AssetIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    try:
        return AssetService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/dashboard", response_model=DashboardOut)
def dashboard(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return MetricsService(db, user_id).dashboard()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
